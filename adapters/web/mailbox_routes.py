"""
FastAPI 메일박스 라우터

메일박스 등록/조회/설정, 수동 동기화, 웹훅 구독, 메일 수동 연결 API입니다.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.exceptions import (
    CredentialNotFound,
    DuplicateMailbox,
    EmailNotFound,
    InvalidLinkTarget,
    MailboxNotFound,
    MailboxSyncAborted,
    MailSyncError,
)
from adapters.db.database import get_db_session
from adapters.factory import get_adapter_factory
from adapters.logger import create_logger

router = APIRouter(tags=["mailboxes"])
logger = create_logger("mailbox_router")


class AttachMailboxRequest(BaseModel):
    business_id: str
    mailbox_address: str
    sync_folders: Optional[List[str]] = None
    sync_inbound: bool = True
    sync_outbound: bool = True


class UpdateMailboxSettingsRequest(BaseModel):
    sync_inbound: Optional[bool] = None
    sync_outbound: Optional[bool] = None
    sync_folders: Optional[List[str]] = Field(None, min_length=1)


class LinkEmailRequest(BaseModel):
    business_id: str
    contact_id: Optional[str] = None
    company_id: Optional[str] = None
    deal_id: Optional[str] = None


def _error_status(error: MailSyncError) -> int:
    """도메인 예외를 HTTP 상태 코드로 변환합니다."""
    if isinstance(error, (MailboxNotFound, EmailNotFound)):
        return 404
    if isinstance(error, DuplicateMailbox):
        return 409
    if isinstance(error, (CredentialNotFound, InvalidLinkTarget)):
        return 400
    return 502


@router.post("/mailboxes", status_code=201)
async def attach_mailbox(
    request: AttachMailboxRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """메일박스를 등록합니다."""
    usecase = get_adapter_factory().create_mailbox_management_usecase(session)
    try:
        mailbox = await usecase.attach_mailbox(
            business_id=request.business_id,
            mailbox_address=request.mailbox_address,
            sync_folders=request.sync_folders,
            sync_inbound=request.sync_inbound,
            sync_outbound=request.sync_outbound,
        )
    except MailSyncError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))

    return mailbox.model_dump(mode="json")


@router.get("/mailboxes")
async def list_mailboxes(
    business_id: str = Query(..., description="비즈니스 ID"),
    session: AsyncSession = Depends(get_db_session),
):
    """비즈니스의 메일박스 목록을 조회합니다."""
    usecase = get_adapter_factory().create_mailbox_management_usecase(session)
    mailboxes = await usecase.list_mailboxes(business_id)
    return [mailbox.model_dump(mode="json") for mailbox in mailboxes]


@router.get("/mailboxes/{mailbox_id}")
async def get_mailbox(
    mailbox_id: UUID,
    session: AsyncSession = Depends(get_db_session),
):
    usecase = get_adapter_factory().create_mailbox_management_usecase(session)
    try:
        mailbox = await usecase.get_mailbox(mailbox_id)
    except MailSyncError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))

    return mailbox.model_dump(mode="json")


@router.put("/mailboxes/{mailbox_id}")
async def update_mailbox_settings(
    mailbox_id: UUID,
    request: UpdateMailboxSettingsRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """동기화 설정을 변경합니다."""
    usecase = get_adapter_factory().create_mailbox_management_usecase(session)
    try:
        mailbox = await usecase.update_mailbox_settings(
            mailbox_id,
            sync_inbound=request.sync_inbound,
            sync_outbound=request.sync_outbound,
            sync_folders=request.sync_folders,
        )
    except MailSyncError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))

    return mailbox.model_dump(mode="json")


@router.post("/mailboxes/{mailbox_id}/sync")
async def sync_mailbox(
    mailbox_id: UUID,
    session: AsyncSession = Depends(get_db_session),
):
    """메일박스를 즉시 동기화합니다."""
    usecase = get_adapter_factory().create_mail_sync_usecase(session)
    try:
        report = await usecase.sync_mailbox(mailbox_id)
    except MailboxSyncAborted as e:
        logger.error(f"동기화 중단: {e}", mailbox_id=mailbox_id)
        raise HTTPException(status_code=502, detail=str(e))
    except MailSyncError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))

    return report.model_dump(mode="json")


@router.post("/mailboxes/{mailbox_id}/subscription")
async def ensure_subscription(
    mailbox_id: UUID,
    session: AsyncSession = Depends(get_db_session),
):
    """웹훅 구독을 생성하거나 연장합니다."""
    usecase = get_adapter_factory().create_mailbox_management_usecase(session)
    try:
        mailbox = await usecase.ensure_subscription(mailbox_id)
    except MailSyncError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))

    return {
        "mailbox_id": str(mailbox.id),
        "webhook_subscription_id": mailbox.webhook_subscription_id,
        "webhook_expires_at": mailbox.webhook_expires_at.isoformat() if mailbox.webhook_expires_at else None,
    }


@router.post("/emails/{email_id}/link")
async def link_email(
    email_id: UUID,
    request: LinkEmailRequest,
    session: AsyncSession = Depends(get_db_session),
):
    """메일을 CRM 레코드에 수동으로 연결합니다."""
    usecase = get_adapter_factory().create_email_link_usecase(session)
    links = request.model_dump(exclude={"business_id"}, exclude_unset=True)
    try:
        email = await usecase.link_email(email_id, request.business_id, links)
    except MailSyncError as e:
        raise HTTPException(status_code=_error_status(e), detail=str(e))

    return email.model_dump(mode="json")
