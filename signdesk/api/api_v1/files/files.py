# =====================================================
# FILE: signdesk/api/api_v1/files/files.py
# Time-limited document retrieval
# =====================================================

from fastapi import APIRouter, Depends, Query, Response
import logging

from signdesk.core.dependencies import get_storage
from signdesk.core.rate_limit import rate_limit
from signdesk.core.responses import error_response
from signdesk.core.results import StorageError
from signdesk.core.security import verify_signed_path
from signdesk.services.storage_service import StorageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


@router.get("/{path:path}", dependencies=[Depends(rate_limit("contract-view"))])
async def get_signed_file(
    path: str,
    expires: int = Query(...),
    signature: str = Query(...),
    storage: StorageService = Depends(get_storage)
):
    """Serve a stored document when its signed URL is valid and unexpired"""
    if not verify_signed_path(path, expires, signature):
        logger.warning(f"Rejected file URL for {path}")
        return error_response("Invalid or expired link", 403)

    try:
        content = storage.get_bytes(path)
    except StorageError as e:
        logger.warning(f"Signed URL for missing file {path}: {e}")
        return error_response("File not found", 404)

    media_type = "application/pdf" if path.endswith(".pdf") else "image/png"
    return Response(content=content, media_type=media_type)
