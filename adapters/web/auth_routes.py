"""
FastAPI 인증 라우터

Microsoft 365 메일박스 연결을 위한 Authorization Code Flow 웹 인터페이스입니다.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.exceptions import CredentialNotFound, InvalidOAuthState, ProviderError
from adapters.db.database import get_db_session
from adapters.factory import get_adapter_factory
from adapters.logger import create_logger

router = APIRouter(prefix="/auth", tags=["authentication"])
logger = create_logger("auth_router")


@router.get("/start")
async def start_auth(
    business_id: str = Query(..., description="자격 증명을 연결할 비즈니스 ID"),
    shared_mailbox: bool = Query(False, description="공유 메일박스 권한 요청 여부"),
    session: AsyncSession = Depends(get_db_session),
):
    """인증 플로우를 시작하고 Microsoft 로그인 페이지로 리다이렉트합니다."""
    logger.info(f"인증 시작 요청: business={business_id}", shared_mailbox=shared_mailbox)

    auth_usecase = get_adapter_factory().create_authentication_usecase(session)
    auth_url, _ = await auth_usecase.start_authorization_code_flow(
        business_id,
        shared_mailbox=shared_mailbox,
    )
    return RedirectResponse(url=auth_url)


@router.get("/callback")
async def auth_callback(
    code: str = Query(None, description="인증 코드"),
    state: str = Query(None, description="상태 값"),
    error: str = Query(None, description="오류 코드"),
    error_description: str = Query(None, description="오류 설명"),
    session: AsyncSession = Depends(get_db_session),
):
    """Authorization Code Flow 콜백을 처리합니다."""
    if error:
        logger.error(f"인증 오류: {error} - {error_description}")
        raise HTTPException(status_code=400, detail=error_description or error)

    if not code or not state:
        logger.error("필수 파라미터 누락")
        raise HTTPException(status_code=400, detail="필수 파라미터가 누락되었습니다")

    auth_usecase = get_adapter_factory().create_authentication_usecase(session)
    try:
        credential = await auth_usecase.complete_authorization_code_flow(code=code, state=state)
    except InvalidOAuthState as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        logger.error(f"인증 콜백 처리 오류: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "credential_id": str(credential.id),
        "business_id": credential.business_id,
        "tenant_id": credential.tenant_id,
        "scopes": credential.scopes,
        "token_expires_at": credential.token_expires_at.isoformat(),
    }


@router.post("/credentials/{credential_id}/disconnect")
async def disconnect_credential(
    credential_id: UUID,
    session: AsyncSession = Depends(get_db_session),
):
    """자격 증명을 비활성화합니다."""
    auth_usecase = get_adapter_factory().create_authentication_usecase(session)
    try:
        await auth_usecase.disconnect(credential_id)
    except CredentialNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"credential_id": str(credential_id), "is_active": False}
