"""
데이터베이스 Repository 어댑터

Core 레이어의 Repository 포트를 구현하는 SQLAlchemy 기반 어댑터들입니다.
SQLite 호환성을 위해 UUID를 문자열로 변환하여 처리합니다.
"""

from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, delete, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.domain.entities import (
    Credential,
    Email,
    EmailDirection,
    Mailbox,
    MailboxSyncStatus,
    ensure_utc,
    now_utc,
)
from core.domain.exceptions import (
    CredentialNotFound,
    DuplicateMailbox,
    EmailNotFound,
    MailboxNotFound,
)
from core.domain.ports import (
    CredentialRepositoryPort,
    EmailRepositoryPort,
    MailboxRepositoryPort,
)
from .models import CredentialModel, EmailModel, MailboxModel


class CredentialRepositoryAdapter(CredentialRepositoryPort):
    """자격 증명 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_model(self, credential_id: UUID) -> Optional[CredentialModel]:
        # 다른 세션에서 갱신된 토큰을 읽기 위해 항상 다시 적재
        stmt = (
            select(CredentialModel)
            .where(CredentialModel.id == str(credential_id))
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_id(self, credential_id: UUID) -> Optional[Credential]:
        """ID로 자격 증명을 조회합니다."""
        model = await self._get_model(credential_id)
        if model is None:
            return None
        return self._model_to_entity(model)

    async def get_active(self, business_id: str, tenant_id: Optional[str] = None) -> Optional[Credential]:
        """비즈니스의 활성 자격 증명을 조회합니다. 여러 개면 가장 최근 것을 반환합니다."""
        conditions = [
            CredentialModel.business_id == business_id,
            CredentialModel.is_active.is_(True),
        ]
        if tenant_id:
            conditions.append(CredentialModel.tenant_id == tenant_id)

        stmt = (
            select(CredentialModel)
            .where(and_(*conditions))
            .order_by(desc(CredentialModel.updated_at))
            .limit(1)
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None
        return self._model_to_entity(model)

    async def upsert(self, credential: Credential) -> Credential:
        """(business_id, tenant_id) 기준으로 자격 증명을 생성하거나 갱신합니다."""
        stmt = select(CredentialModel).where(
            and_(
                CredentialModel.business_id == credential.business_id,
                CredentialModel.tenant_id == credential.tenant_id,
            )
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            model = CredentialModel(
                id=str(credential.id),
                business_id=credential.business_id,
                tenant_id=credential.tenant_id,
                created_at=credential.created_at,
            )
            self.session.add(model)

        model.client_id = credential.client_id
        model.access_token = credential.access_token
        model.refresh_token = credential.refresh_token
        model.token_expires_at = credential.token_expires_at
        model.scopes = list(credential.scopes)
        model.is_active = True
        model.updated_at = now_utc()

        await self.session.commit()
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def update_tokens(
        self,
        credential_id: UUID,
        access_token: str,
        refresh_token: str,
        token_expires_at: datetime,
        scopes: List[str],
    ) -> Credential:
        """암호화된 토큰을 교체합니다."""
        model = await self._get_model(credential_id)
        if model is None:
            raise CredentialNotFound(credential_id)

        model.access_token = access_token
        model.refresh_token = refresh_token
        model.token_expires_at = token_expires_at
        model.scopes = list(scopes)
        model.updated_at = now_utc()

        await self.session.commit()
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def deactivate(self, credential_id: UUID) -> None:
        """자격 증명을 비활성화합니다."""
        model = await self._get_model(credential_id)
        if model is None:
            raise CredentialNotFound(credential_id)

        model.is_active = False
        model.updated_at = now_utc()
        await self.session.commit()

    def _model_to_entity(self, model: CredentialModel) -> Credential:
        """모델을 엔티티로 변환합니다."""
        return Credential(
            id=UUID(model.id),
            business_id=model.business_id,
            tenant_id=model.tenant_id,
            client_id=model.client_id,
            access_token=model.access_token,
            refresh_token=model.refresh_token,
            token_expires_at=ensure_utc(model.token_expires_at),
            scopes=model.scopes or [],
            is_active=bool(model.is_active),
            created_at=ensure_utc(model.created_at),
            updated_at=ensure_utc(model.updated_at),
        )


class MailboxRepositoryAdapter(MailboxRepositoryPort):
    """메일박스 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get_model(self, mailbox_id: UUID) -> MailboxModel:
        stmt = select(MailboxModel).where(MailboxModel.id == str(mailbox_id))
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()
        if model is None:
            raise MailboxNotFound(mailbox_id)
        return model

    async def create(self, mailbox: Mailbox) -> Mailbox:
        """메일박스를 생성합니다."""
        model = MailboxModel(
            id=str(mailbox.id),
            credential_id=str(mailbox.credential_id),
            business_id=mailbox.business_id,
            mailbox_address=mailbox.mailbox_address,
            sync_inbound=mailbox.sync_inbound,
            sync_outbound=mailbox.sync_outbound,
            sync_folders=list(mailbox.sync_folders),
            delta_sync_tokens=dict(mailbox.delta_sync_tokens),
            last_sync_at=mailbox.last_sync_at,
            sync_status=mailbox.sync_status.value,
            created_at=mailbox.created_at,
        )

        self.session.add(model)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise DuplicateMailbox(mailbox.mailbox_address) from e
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def get_by_id(self, mailbox_id: UUID) -> Optional[Mailbox]:
        """ID로 메일박스를 조회합니다."""
        stmt = select(MailboxModel).where(MailboxModel.id == str(mailbox_id))
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None
        return self._model_to_entity(model)

    async def get_by_subscription_id(self, subscription_id: str) -> Optional[Mailbox]:
        """웹훅 구독 ID로 메일박스를 조회합니다."""
        stmt = select(MailboxModel).where(MailboxModel.webhook_subscription_id == subscription_id)
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None
        return self._model_to_entity(model)

    async def get_by_address(self, business_id: str, mailbox_address: str) -> Optional[Mailbox]:
        """비즈니스 내 주소로 메일박스를 조회합니다."""
        stmt = select(MailboxModel).where(
            and_(
                MailboxModel.business_id == business_id,
                MailboxModel.mailbox_address == mailbox_address.strip().lower(),
            )
        )
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None
        return self._model_to_entity(model)

    async def list_by_business(self, business_id: str) -> List[Mailbox]:
        """비즈니스의 메일박스 목록을 조회합니다."""
        stmt = (
            select(MailboxModel)
            .where(MailboxModel.business_id == business_id)
            .order_by(MailboxModel.created_at)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_entity(model) for model in result.scalars().all()]

    async def list_syncable(self) -> List[Mailbox]:
        """활성 자격 증명에 연결된 메일박스 목록을 조회합니다."""
        stmt = (
            select(MailboxModel)
            .join(CredentialModel, MailboxModel.credential_id == CredentialModel.id)
            .where(CredentialModel.is_active.is_(True))
            .order_by(MailboxModel.created_at)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_entity(model) for model in result.scalars().all()]

    async def list_expiring_subscriptions(self, before: datetime) -> List[Mailbox]:
        """만료 시간이 before 이전인 웹훅 구독을 가진 메일박스 목록을 조회합니다."""
        stmt = (
            select(MailboxModel)
            .where(
                and_(
                    MailboxModel.webhook_subscription_id.is_not(None),
                    MailboxModel.webhook_expires_at < before,
                )
            )
            .order_by(MailboxModel.webhook_expires_at)
        )
        result = await self.session.execute(stmt)
        return [self._model_to_entity(model) for model in result.scalars().all()]

    async def update_sync_state(
        self,
        mailbox_id: UUID,
        sync_status: MailboxSyncStatus,
        last_sync_at: Optional[datetime] = None,
    ) -> None:
        """동기화 상태를 갱신합니다. last_sync_at은 주어진 경우에만 바뀝니다."""
        model = await self._get_model(mailbox_id)

        model.sync_status = sync_status.value
        if last_sync_at is not None:
            model.last_sync_at = last_sync_at
        model.updated_at = now_utc()

        await self.session.commit()

    async def update_settings(
        self,
        mailbox_id: UUID,
        sync_inbound: Optional[bool] = None,
        sync_outbound: Optional[bool] = None,
        sync_folders: Optional[List[str]] = None,
    ) -> Mailbox:
        """동기화 방향/폴더 설정을 변경합니다."""
        model = await self._get_model(mailbox_id)

        if sync_inbound is not None:
            model.sync_inbound = sync_inbound
        if sync_outbound is not None:
            model.sync_outbound = sync_outbound
        if sync_folders is not None:
            model.sync_folders = list(sync_folders)
        model.updated_at = now_utc()

        await self.session.commit()
        await self.session.refresh(model)

        return self._model_to_entity(model)

    async def set_delta_token(self, mailbox_id: UUID, folder_id: str, delta_token: str) -> None:
        """폴더 델타 링크를 저장합니다. 다른 폴더의 링크는 유지됩니다."""
        model = await self._get_model(mailbox_id)

        # JSON 컬럼은 새 객체를 할당해야 변경이 감지됨
        tokens = dict(model.delta_sync_tokens or {})
        tokens[folder_id] = delta_token
        model.delta_sync_tokens = tokens
        model.updated_at = now_utc()

        await self.session.commit()

    async def set_webhook_subscription(
        self,
        mailbox_id: UUID,
        subscription_id: Optional[str],
        expires_at: Optional[datetime],
    ) -> None:
        """웹훅 구독 정보를 저장합니다."""
        model = await self._get_model(mailbox_id)

        model.webhook_subscription_id = subscription_id
        model.webhook_expires_at = expires_at
        model.updated_at = now_utc()

        await self.session.commit()

    def _model_to_entity(self, model: MailboxModel) -> Mailbox:
        """모델을 엔티티로 변환합니다."""
        return Mailbox(
            id=UUID(model.id),
            credential_id=UUID(model.credential_id),
            business_id=model.business_id,
            mailbox_address=model.mailbox_address,
            sync_inbound=bool(model.sync_inbound),
            sync_outbound=bool(model.sync_outbound),
            sync_folders=model.sync_folders or [],
            delta_sync_tokens=model.delta_sync_tokens or {},
            last_sync_at=ensure_utc(model.last_sync_at),
            sync_status=MailboxSyncStatus(model.sync_status),
            webhook_subscription_id=model.webhook_subscription_id,
            webhook_expires_at=ensure_utc(model.webhook_expires_at),
            created_at=ensure_utc(model.created_at),
        )


class EmailRepositoryAdapter(EmailRepositoryPort):
    """메일 Repository 어댑터"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists_by_provider_id(self, provider_message_id: str) -> bool:
        """공급자 메시지 ID로 존재 여부를 확인합니다."""
        stmt = select(EmailModel.id).where(EmailModel.provider_message_id == provider_message_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def create_if_absent(self, email: Email) -> bool:
        """메일이 없을 때만 저장합니다.

        동시에 같은 메시지를 저장하려는 경우 유니크 제약 위반을 중복으로 처리합니다.

        Returns:
            bool: 새로 저장했으면 True, 이미 있으면 False
        """
        if await self.exists_by_provider_id(email.provider_message_id):
            return False

        model = EmailModel(
            id=str(email.id),
            provider_message_id=email.provider_message_id,
            provider_conversation_id=email.provider_conversation_id,
            mailbox_id=str(email.mailbox_id),
            business_id=email.business_id,
            direction=email.direction.value,
            subject=email.subject,
            body_preview=email.body_preview,
            body_html=email.body_html,
            from_address=email.from_address,
            from_name=email.from_name,
            to_addresses=list(email.to_addresses),
            cc_addresses=list(email.cc_addresses),
            sent_at=email.sent_at,
            received_at=email.received_at,
            has_attachments=email.has_attachments,
            contact_id=email.contact_id,
            company_id=email.company_id,
            deal_id=email.deal_id,
            auto_linked=email.auto_linked,
            created_at=email.created_at,
        )

        self.session.add(model)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            return False

        return True

    async def delete_by_provider_id(self, provider_message_id: str) -> int:
        """공급자 메시지 ID로 메일을 삭제합니다."""
        stmt = delete(EmailModel).where(EmailModel.provider_message_id == provider_message_id)
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount or 0

    async def get_by_id(self, email_id: UUID) -> Optional[Email]:
        """ID로 메일을 조회합니다."""
        stmt = select(EmailModel).where(EmailModel.id == str(email_id))
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            return None
        return self._model_to_entity(model)

    async def update_links(
        self,
        email_id: UUID,
        links: Dict[str, Optional[str]],
        auto_linked: bool,
    ) -> Email:
        """CRM 연결 정보를 갱신합니다. links에 포함된 키만 바뀝니다."""
        stmt = select(EmailModel).where(EmailModel.id == str(email_id))
        result = await self.session.execute(stmt)
        model = result.scalar_one_or_none()

        if model is None:
            raise EmailNotFound(email_id)

        for field in ("contact_id", "company_id", "deal_id"):
            if field in links:
                setattr(model, field, links[field])
        model.auto_linked = auto_linked

        await self.session.commit()
        await self.session.refresh(model)

        return self._model_to_entity(model)

    def _model_to_entity(self, model: EmailModel) -> Email:
        """모델을 엔티티로 변환합니다."""
        return Email(
            id=UUID(model.id),
            provider_message_id=model.provider_message_id,
            provider_conversation_id=model.provider_conversation_id,
            mailbox_id=UUID(model.mailbox_id),
            business_id=model.business_id,
            direction=EmailDirection(model.direction),
            subject=model.subject or "",
            body_preview=model.body_preview,
            body_html=model.body_html,
            from_address=model.from_address or "",
            from_name=model.from_name,
            to_addresses=model.to_addresses or [],
            cc_addresses=model.cc_addresses or [],
            sent_at=ensure_utc(model.sent_at),
            received_at=ensure_utc(model.received_at),
            has_attachments=bool(model.has_attachments),
            contact_id=model.contact_id,
            company_id=model.company_id,
            deal_id=model.deal_id,
            auto_linked=bool(model.auto_linked),
            created_at=ensure_utc(model.created_at),
        )
