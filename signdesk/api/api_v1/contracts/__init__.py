"""
Contracts Module Init
File: signdesk/api/api_v1/contracts/__init__.py
"""

from fastapi import APIRouter
from . import contracts

router = APIRouter()

# Administrator contract management
router.include_router(contracts.router)
