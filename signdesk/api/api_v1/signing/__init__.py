"""
Signing Module Init
File: signdesk/api/api_v1/signing/__init__.py
"""

from fastapi import APIRouter
from . import signing

router = APIRouter()

# Public review and signing links
router.include_router(signing.router)
