"""
메일박스 관리 유즈케이스

메일박스 등록/조회/설정 변경, 웹훅 구독 생성/갱신, 수동 CRM 연결을 담당합니다.
"""

from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple
from uuid import UUID

from ..domain.entities import Email, Mailbox, ensure_utc, now_utc
from ..domain.exceptions import (
    CredentialNotFound,
    DuplicateMailbox,
    EmailNotFound,
    InvalidLinkTarget,
    MailboxNotFound,
    MailSyncError,
    ProviderError,
)
from ..domain.ports import (
    CredentialRepositoryPort,
    CrmDirectoryPort,
    EmailRepositoryPort,
    LoggerPort,
    MailboxRepositoryPort,
)
from .mail_sync import MailProviderFactory


WEBHOOK_PATH = "/webhooks/notifications"


class MailboxManagementUseCase:
    """메일박스 관리 유즈케이스"""

    def __init__(
        self,
        mailbox_repository: MailboxRepositoryPort,
        credential_repository: CredentialRepositoryPort,
        mail_provider_factory: MailProviderFactory,
        logger: LoggerPort,
        default_folders: Optional[List[str]] = None,
        webhook_base_url: str = "",
        webhook_client_state: Optional[str] = None,
        subscription_minutes: int = 4230,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.mailbox_repository = mailbox_repository
        self.credential_repository = credential_repository
        self.mail_provider_factory = mail_provider_factory
        self.logger = logger
        self.default_folders = default_folders or ["Inbox", "Sent Items"]
        self.webhook_base_url = webhook_base_url.rstrip("/")
        self.webhook_client_state = webhook_client_state
        self.subscription_minutes = subscription_minutes
        self.clock = clock

    async def attach_mailbox(
        self,
        business_id: str,
        mailbox_address: str,
        sync_folders: Optional[List[str]] = None,
        sync_inbound: bool = True,
        sync_outbound: bool = True,
    ) -> Mailbox:
        """
        비즈니스의 활성 자격 증명에 메일박스를 연결합니다.

        Args:
            business_id: 비즈니스 ID
            mailbox_address: 메일박스 이메일 주소
            sync_folders: 동기화할 폴더 이름 (기본값: 설정된 기본 폴더)
            sync_inbound: 수신 메일 동기화 여부
            sync_outbound: 발신 메일 동기화 여부

        Returns:
            생성된 메일박스

        Raises:
            CredentialNotFound: 활성 자격 증명이 없는 경우
            DuplicateMailbox: 이미 등록된 주소인 경우
        """
        self.logger.info(f"메일박스 등록 시작: {mailbox_address}", business_id=business_id)

        credential = await self.credential_repository.get_active(business_id)
        if credential is None:
            raise CredentialNotFound(f"business={business_id}")

        existing = await self.mailbox_repository.get_by_address(business_id, mailbox_address)
        if existing is not None:
            raise DuplicateMailbox(existing.mailbox_address)

        mailbox = Mailbox(
            credential_id=credential.id,
            business_id=business_id,
            mailbox_address=mailbox_address,
            sync_inbound=sync_inbound,
            sync_outbound=sync_outbound,
            sync_folders=sync_folders or list(self.default_folders),
        )
        created = await self.mailbox_repository.create(mailbox)

        self.logger.info(f"메일박스 등록 완료: {created.mailbox_address}", mailbox_id=created.id)
        return created

    async def get_mailbox(self, mailbox_id: UUID) -> Mailbox:
        """메일박스를 조회합니다."""
        mailbox = await self.mailbox_repository.get_by_id(mailbox_id)
        if mailbox is None:
            raise MailboxNotFound(mailbox_id)
        return mailbox

    async def list_mailboxes(self, business_id: str) -> List[Mailbox]:
        """비즈니스의 메일박스 목록을 조회합니다."""
        return await self.mailbox_repository.list_by_business(business_id)

    async def update_mailbox_settings(
        self,
        mailbox_id: UUID,
        sync_inbound: Optional[bool] = None,
        sync_outbound: Optional[bool] = None,
        sync_folders: Optional[List[str]] = None,
    ) -> Mailbox:
        """동기화 방향과 폴더 설정을 변경합니다."""
        await self.get_mailbox(mailbox_id)
        return await self.mailbox_repository.update_settings(
            mailbox_id,
            sync_inbound=sync_inbound,
            sync_outbound=sync_outbound,
            sync_folders=sync_folders,
        )

    def _subscription_expiry(self) -> datetime:
        return self.clock() + timedelta(minutes=self.subscription_minutes)

    async def ensure_subscription(self, mailbox_id: UUID) -> Mailbox:
        """
        메일박스의 웹훅 구독을 만들거나 연장합니다.

        기존 구독이 공급자에 없으면(404) 새로 생성합니다.

        Returns:
            구독 정보가 갱신된 메일박스
        """
        mailbox = await self.get_mailbox(mailbox_id)
        provider = self.mail_provider_factory(mailbox)
        expires_at = self._subscription_expiry()

        if mailbox.webhook_subscription_id:
            try:
                subscription = await provider.renew_subscription(mailbox.webhook_subscription_id, expires_at)
                self.logger.info("웹훅 구독 연장", mailbox_id=mailbox.id)
            except ProviderError as e:
                if e.status_code != 404:
                    raise
                self.logger.warning("기존 웹훅 구독이 없어 새로 생성", mailbox_id=mailbox.id)
                subscription = await self._create_subscription(provider, expires_at)
        else:
            subscription = await self._create_subscription(provider, expires_at)

        await self.mailbox_repository.set_webhook_subscription(
            mailbox.id,
            subscription.id,
            self._parse_expiry(subscription.expiration_date_time, expires_at),
        )
        return await self.get_mailbox(mailbox.id)

    async def _create_subscription(self, provider, expires_at: datetime):
        return await provider.create_subscription(
            notification_url=f"{self.webhook_base_url}{WEBHOOK_PATH}",
            expires_at=expires_at,
            client_state=self.webhook_client_state,
        )

    @staticmethod
    def _parse_expiry(value: str, fallback: datetime) -> datetime:
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            return fallback

    async def renew_expiring_subscriptions(self, within: timedelta = timedelta(hours=24)) -> Tuple[int, int]:
        """
        만료가 임박한 웹훅 구독을 모두 연장합니다.

        Args:
            within: 지금부터 이 기간 안에 만료되는 구독이 대상

        Returns:
            (연장 성공 수, 실패 수)
        """
        mailboxes = await self.mailbox_repository.list_expiring_subscriptions(self.clock() + within)
        renewed = 0
        failed = 0

        for mailbox in mailboxes:
            try:
                await self.ensure_subscription(mailbox.id)
                renewed += 1
            except MailSyncError as e:
                failed += 1
                self.logger.error(f"웹훅 구독 연장 실패: {e}", mailbox_id=mailbox.id)

        self.logger.info(f"웹훅 구독 연장 완료: 성공 {renewed}, 실패 {failed}")
        return renewed, failed


class EmailLinkUseCase:
    """메일 수동 CRM 연결 유즈케이스"""

    LINK_KINDS = {"contact_id": "contact", "company_id": "company", "deal_id": "deal"}

    def __init__(
        self,
        email_repository: EmailRepositoryPort,
        crm_directory: CrmDirectoryPort,
        logger: LoggerPort,
    ):
        self.email_repository = email_repository
        self.crm_directory = crm_directory
        self.logger = logger

    async def link_email(self, email_id: UUID, business_id: str, links: Dict[str, Optional[str]]) -> Email:
        """
        메일을 CRM 레코드에 수동으로 연결합니다. 자동 연결 표시는 해제됩니다.

        Args:
            email_id: 메일 ID
            business_id: 요청한 비즈니스 ID
            links: contact_id/company_id/deal_id 중 바꿀 항목 (None이면 연결 해제)

        Raises:
            EmailNotFound: 메일이 없거나 다른 비즈니스 소속인 경우
            InvalidLinkTarget: 대상 레코드가 없거나 다른 비즈니스 소속인 경우
        """
        email = await self.email_repository.get_by_id(email_id)
        if email is None or email.business_id != business_id:
            raise EmailNotFound(email_id)

        updates = {field: value for field, value in links.items() if field in self.LINK_KINDS}
        for field, record_id in updates.items():
            if record_id and not await self.crm_directory.record_exists(
                business_id, self.LINK_KINDS[field], record_id
            ):
                raise InvalidLinkTarget(f"{self.LINK_KINDS[field]}을(를) 찾을 수 없습니다: {record_id}")

        updated = await self.email_repository.update_links(email_id, updates, auto_linked=False)
        self.logger.info("메일 수동 연결", email_id=email_id, **{k: v for k, v in updates.items()})
        return updated
