# =====================================================
# FILE: signdesk/api/api_v1/signing/signing.py
# Public token endpoints for reviewers and signers
# =====================================================

from fastapi import APIRouter, Depends
import logging

from signdesk.api.api_v1.signing.schemas import SignContractRequest
from signdesk.core.dependencies import get_client_info, get_lifecycle_engine
from signdesk.core.rate_limit import rate_limit
from signdesk.core.responses import result_response
from signdesk.services.lifecycle_engine import ClientInfo, LifecycleEngine
from signdesk.services.token_service import TokenRole

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contracts", tags=["signing"])


@router.get("/review/{token}", dependencies=[Depends(rate_limit("contract-review-view"))])
async def view_for_review(
    token: str,
    client: ClientInfo = Depends(get_client_info),
    engine: LifecycleEngine = Depends(get_lifecycle_engine)
):
    """Contract data for the review page; the first view marks it reviewed"""
    return result_response(await engine.view(token, TokenRole.REVIEWER, client))


@router.post("/review/{token}", dependencies=[Depends(rate_limit("contract-review-approve"))])
async def approve_review(
    token: str,
    client: ClientInfo = Depends(get_client_info),
    engine: LifecycleEngine = Depends(get_lifecycle_engine)
):
    """Reviewer approves and the agreement is forwarded to the signer"""
    return result_response(await engine.act(token, TokenRole.REVIEWER, None, client))


@router.get("/sign/{token}", dependencies=[Depends(rate_limit("contract-view"))])
async def view_for_signing(
    token: str,
    client: ClientInfo = Depends(get_client_info),
    engine: LifecycleEngine = Depends(get_lifecycle_engine)
):
    """Contract data for the signing page; the first view marks it viewed"""
    return result_response(await engine.view(token, TokenRole.SIGNER, client))


@router.post("/sign/{token}", dependencies=[Depends(rate_limit("contract-sign"))])
async def submit_signature(
    token: str,
    request: SignContractRequest,
    client: ClientInfo = Depends(get_client_info),
    engine: LifecycleEngine = Depends(get_lifecycle_engine)
):
    """Capture the signature and produce the signed agreement"""
    return result_response(await engine.act(token, TokenRole.SIGNER, request.model_dump(), client))
