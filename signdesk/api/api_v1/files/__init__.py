"""
Files Module Init
File: signdesk/api/api_v1/files/__init__.py
"""

from fastapi import APIRouter
from . import files

router = APIRouter()

router.include_router(files.router)
