# =====================================================
# FILE: signdesk/api/api_v1/contracts/contracts.py
# Administrator endpoints for subscription agreements
# =====================================================

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile, status
from typing import Optional
import logging

from signdesk.api.api_v1.contracts.schemas import (
    ContractCancelRequest, ContractCreateRequest, ContractUpdateRequest, DocumentKind
)
from signdesk.core.dependencies import (
    AdminPrincipal, get_client_info, get_contract_service, get_current_admin, get_lifecycle_engine
)
from signdesk.core.rate_limit import rate_limit
from signdesk.core.responses import failure_response, result_response, success_response
from signdesk.models.contract import ContractStatus
from signdesk.services.contract_service import ContractService
from signdesk.services.lifecycle_engine import ClientInfo, LifecycleEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contracts", tags=["contracts"])


@router.get("", dependencies=[Depends(rate_limit("admin-read"))])
async def list_contracts(
    status_filter: Optional[ContractStatus] = Query(None, alias="status"),
    company_id: Optional[int] = Query(None),
    admin: AdminPrincipal = Depends(get_current_admin),
    service: ContractService = Depends(get_contract_service)
):
    """List all contracts, newest first"""
    contracts = service.list_contracts(
        status=status_filter.value if status_filter else None,
        company_id=company_id,
    )
    return success_response({"contracts": contracts, "total": len(contracts)})


@router.post("", dependencies=[Depends(rate_limit("admin-write"))])
async def create_contract(
    request: ContractCreateRequest,
    admin: AdminPrincipal = Depends(get_current_admin),
    client: ClientInfo = Depends(get_client_info),
    service: ContractService = Depends(get_contract_service)
):
    """Create a draft and render its unsigned document"""
    result = service.create(request.model_dump(), actor=admin.email, ip_address=client.ip_address)
    return result_response(result, status_code=status.HTTP_201_CREATED)


@router.get("/{contract_id}", dependencies=[Depends(rate_limit("admin-read"))])
async def get_contract(
    contract_id: str,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: ContractService = Depends(get_contract_service)
):
    """Contract with its full audit trail"""
    return result_response(service.get(contract_id))


@router.put("/{contract_id}", dependencies=[Depends(rate_limit("admin-write"))])
async def update_contract(
    contract_id: str,
    request: ContractUpdateRequest,
    admin: AdminPrincipal = Depends(get_current_admin),
    service: ContractService = Depends(get_contract_service)
):
    """Edit a draft; the unsigned document is regenerated"""
    return result_response(service.update_draft(contract_id, request.model_dump(exclude_unset=True)))


@router.post("/{contract_id}/send", dependencies=[Depends(rate_limit("contract-send"))])
async def send_contract(
    contract_id: str,
    admin: AdminPrincipal = Depends(get_current_admin),
    client: ClientInfo = Depends(get_client_info),
    engine: LifecycleEngine = Depends(get_lifecycle_engine)
):
    """Send a draft to its reviewer or signer, or resend a fresh signing link"""
    result = await engine.send(contract_id, actor=admin.email, client=client)
    if not result.ok:
        logger.warning(f"Send of contract {contract_id} by {admin.email} refused: {result.message}")
    return result_response(result)


@router.post("/{contract_id}/cancel", dependencies=[Depends(rate_limit("admin-write"))])
async def cancel_contract(
    contract_id: str,
    request: Optional[ContractCancelRequest] = None,
    admin: AdminPrincipal = Depends(get_current_admin),
    client: ClientInfo = Depends(get_client_info),
    engine: LifecycleEngine = Depends(get_lifecycle_engine)
):
    """Cancel a contract that is not yet signed, expired or cancelled"""
    reason = request.reason if request else None
    return result_response(engine.cancel(contract_id, actor=admin.email, client=client, reason=reason))


@router.get("/{contract_id}/pdf", dependencies=[Depends(rate_limit("admin-read"))])
async def download_contract_pdf(
    contract_id: str,
    kind: DocumentKind = Query(DocumentKind.UNSIGNED),
    admin: AdminPrincipal = Depends(get_current_admin),
    service: ContractService = Depends(get_contract_service)
):
    """Stream the unsigned or signed PDF"""
    result = service.download(contract_id, kind.value)
    if not result.ok:
        return failure_response(result)
    return Response(
        content=result.data["content"],
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{result.data["filename"]}"'}
    )


@router.post("/{contract_id}/verify", dependencies=[Depends(rate_limit("admin-write"))])
async def verify_contract_document(
    contract_id: str,
    file: UploadFile = File(...),
    admin: AdminPrincipal = Depends(get_current_admin),
    service: ContractService = Depends(get_contract_service)
):
    """Check an uploaded PDF against the stored document digests"""
    content = await file.read()
    return result_response(service.verify_document(contract_id, content))
