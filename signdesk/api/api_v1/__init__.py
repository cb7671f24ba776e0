"""
API v1
"""
from fastapi import APIRouter

from signdesk.api.api_v1 import contracts, files, signing

api_router = APIRouter()

# Token routes first so /review/{token} and /sign/{token} never reach /{contract_id}
api_router.include_router(signing.router)
api_router.include_router(contracts.router)
api_router.include_router(files.router)
