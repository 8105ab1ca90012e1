"""
어댑터 팩토리

모든 어댑터들을 생성하고 의존성을 주입하는 팩토리 클래스입니다.
클린 아키텍처의 의존성 역전 원칙을 구현합니다.

DB 세션에 묶인 어댑터(리포지토리, 토큰 관리자)는 세션마다 새로 만들고,
로거/암호화/OAuth 클라이언트/토큰 잠금 테이블은 프로세스 전체에서 공유합니다.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.entities import Mailbox
from core.domain.ports import (
    CacheServicePort,
    ConfigPort,
    CredentialRepositoryPort,
    CrmDirectoryPort,
    EmailRepositoryPort,
    EncryptionServicePort,
    LoggerPort,
    MailboxRepositoryPort,
    MailProviderPort,
    OAuthProviderPort,
)
from core.usecases.authentication import AuthenticationUseCase
from core.usecases.auto_linker import AutoLinker
from core.usecases.mail_sync import MailboxSyncUseCase, MailProviderFactory, SyncEngine
from core.usecases.mailbox_management import EmailLinkUseCase, MailboxManagementUseCase
from core.usecases.token_lifecycle import TokenLifecycleManager, TokenLockTable
from core.usecases.webhook_ingestion import NotificationFailureTracker, WebhookIngestionUseCase

from .db.cache_repository import DatabaseCacheServiceAdapter
from .db.crm_directory import CrmDirectoryAdapter
from .db.database import DatabaseAdapter, get_database_adapter
from .db.repositories import (
    CredentialRepositoryAdapter,
    EmailRepositoryAdapter,
    MailboxRepositoryAdapter,
)
from .external.encryption_service import EncryptionServiceAdapter
from .external.graph_api_client import GraphApiClientAdapter
from .external.graph_mail_service import GraphMailService
from .external.oauth_client import MicrosoftOAuthClient
from .logger import LoggerAdapter
from config.adapters import get_config


class AdapterFactory:
    """어댑터 팩토리"""

    def __init__(
        self,
        config: Optional[ConfigPort] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            config: 설정 (기본값: 전역 설정)
            transport: 외부 HTTP 호출에 사용할 httpx 전송 계층 (테스트에서 MockTransport 주입)
        """
        self.config = config or get_config()
        self.transport = transport
        self._logger: Optional[LoggerPort] = None
        self._encryption_service: Optional[EncryptionServicePort] = None
        self._oauth_provider: Optional[OAuthProviderPort] = None
        self._failure_tracker: Optional[NotificationFailureTracker] = None
        self.token_locks = TokenLockTable()

    def create_logger(self) -> LoggerPort:
        """로거 어댑터를 생성합니다."""
        if self._logger is None:
            self._logger = LoggerAdapter(
                name="mailsync",
                level=self.config.get_log_level(),
                format_string=self.config.get_log_format(),
            )
        return self._logger

    def create_encryption_service(self) -> EncryptionServicePort:
        """암호화 서비스 어댑터를 생성합니다."""
        if self._encryption_service is None:
            self._encryption_service = EncryptionServiceAdapter(
                encryption_key=self.config.get_encryption_key(),
                logger=self.create_logger(),
            )
        return self._encryption_service

    def create_oauth_provider(self) -> OAuthProviderPort:
        """Microsoft OAuth 클라이언트를 생성합니다."""
        if self._oauth_provider is None:
            self._oauth_provider = MicrosoftOAuthClient(
                client_id=self.config.get_microsoft_client_id(),
                client_secret=self.config.get_microsoft_client_secret(),
                tenant_id=self.config.get_microsoft_tenant_id(),
                redirect_uri=self.config.get_oauth_redirect_uri(),
                scopes=self.config.get_oauth_scopes(),
                logger=self.create_logger(),
                timeout=self.config.get_http_timeout_seconds(),
                transport=self.transport,
            )
        return self._oauth_provider

    def create_failure_tracker(self) -> NotificationFailureTracker:
        """웹훅 알림 실패 기록기를 생성합니다."""
        if self._failure_tracker is None:
            self._failure_tracker = NotificationFailureTracker(self.create_logger())
        return self._failure_tracker

    def create_credential_repository(self, session: AsyncSession) -> CredentialRepositoryPort:
        return CredentialRepositoryAdapter(session)

    def create_mailbox_repository(self, session: AsyncSession) -> MailboxRepositoryPort:
        return MailboxRepositoryAdapter(session)

    def create_email_repository(self, session: AsyncSession) -> EmailRepositoryPort:
        return EmailRepositoryAdapter(session)

    def create_crm_directory(self, session: AsyncSession) -> CrmDirectoryPort:
        return CrmDirectoryAdapter(session)

    def create_cache_service(self, session: AsyncSession) -> CacheServicePort:
        """DB 기반 캐시 서비스를 생성합니다."""
        return DatabaseCacheServiceAdapter(session, self.create_logger())

    def create_token_manager(self, session: AsyncSession) -> TokenLifecycleManager:
        """세션에 묶인 토큰 관리자를 생성합니다. 잠금 테이블은 공유합니다."""
        return TokenLifecycleManager(
            credential_repository=self.create_credential_repository(session),
            oauth_provider=self.create_oauth_provider(),
            encryption_service=self.create_encryption_service(),
            lock_table=self.token_locks,
            logger=self.create_logger(),
            refresh_margin=timedelta(seconds=self.config.get_token_refresh_margin_seconds()),
        )

    def create_mail_provider_factory(self, session: AsyncSession) -> MailProviderFactory:
        """메일박스별 Graph 메일 서비스를 만드는 함수를 생성합니다."""
        token_manager = self.create_token_manager(session)
        logger = self.create_logger()

        def mail_provider_for(mailbox: Mailbox) -> MailProviderPort:
            client = GraphApiClientAdapter(
                token_provider=token_manager,
                credential_id=mailbox.credential_id,
                logger=logger,
                timeout=self.config.get_http_timeout_seconds(),
                transport=self.transport,
            )
            return GraphMailService(client, mailbox.mailbox_address, logger)

        return mail_provider_for

    def create_auto_linker(self, session: AsyncSession) -> AutoLinker:
        return AutoLinker(self.create_crm_directory(session), self.create_logger())

    def create_authentication_usecase(self, session: AsyncSession) -> AuthenticationUseCase:
        """인증 유즈케이스를 생성합니다."""
        return AuthenticationUseCase(
            credential_repository=self.create_credential_repository(session),
            oauth_provider=self.create_oauth_provider(),
            encryption_service=self.create_encryption_service(),
            cache_service=self.create_cache_service(session),
            logger=self.create_logger(),
            client_id=self.config.get_microsoft_client_id(),
            default_tenant_id=self.config.get_microsoft_tenant_id(),
        )

    def create_mail_sync_usecase(self, session: AsyncSession) -> MailboxSyncUseCase:
        """메일 동기화 유즈케이스를 생성합니다."""
        return MailboxSyncUseCase(
            mailbox_repository=self.create_mailbox_repository(session),
            email_repository=self.create_email_repository(session),
            auto_linker=self.create_auto_linker(session),
            mail_provider_factory=self.create_mail_provider_factory(session),
            logger=self.create_logger(),
            page_size=self.config.get_sync_page_size(),
            folder_timeout=self.config.get_sync_folder_timeout_seconds(),
        )

    def create_mailbox_management_usecase(self, session: AsyncSession) -> MailboxManagementUseCase:
        """메일박스 관리 유즈케이스를 생성합니다."""
        return MailboxManagementUseCase(
            mailbox_repository=self.create_mailbox_repository(session),
            credential_repository=self.create_credential_repository(session),
            mail_provider_factory=self.create_mail_provider_factory(session),
            logger=self.create_logger(),
            default_folders=self.config.get_sync_default_folders(),
            webhook_base_url=self.config.get_webhook_base_url(),
            webhook_client_state=self.config.get_webhook_client_state(),
            subscription_minutes=self.config.get_webhook_subscription_minutes(),
        )

    def create_email_link_usecase(self, session: AsyncSession) -> EmailLinkUseCase:
        """메일 수동 연결 유즈케이스를 생성합니다."""
        return EmailLinkUseCase(
            email_repository=self.create_email_repository(session),
            crm_directory=self.create_crm_directory(session),
            logger=self.create_logger(),
        )

    def create_webhook_usecase(self, session: AsyncSession) -> WebhookIngestionUseCase:
        """웹훅 알림 처리 유즈케이스를 생성합니다."""
        return WebhookIngestionUseCase(
            mailbox_repository=self.create_mailbox_repository(session),
            email_repository=self.create_email_repository(session),
            auto_linker=self.create_auto_linker(session),
            mail_provider_factory=self.create_mail_provider_factory(session),
            failure_tracker=self.create_failure_tracker(),
            logger=self.create_logger(),
            client_state=self.config.get_webhook_client_state(),
        )

    def create_sync_engine(self, database: Optional[DatabaseAdapter] = None) -> SyncEngine:
        """
        전체 메일박스 동기화 엔진을 생성합니다.

        메일박스마다 별도의 DB 세션을 열어 병렬 작업 간 세션을 공유하지 않습니다.
        """
        db = database or get_database_adapter()

        @asynccontextmanager
        async def sync_unit() -> AsyncIterator[MailboxSyncUseCase]:
            async with db.get_session() as session:
                yield self.create_mail_sync_usecase(session)

        return SyncEngine(
            unit_factory=sync_unit,
            logger=self.create_logger(),
            max_concurrency=self.config.get_sync_max_concurrency(),
        )

    def get_config(self) -> ConfigPort:
        """설정 객체를 반환합니다."""
        return self.config


# 전역 팩토리 인스턴스
_factory: Optional[AdapterFactory] = None


def get_adapter_factory() -> AdapterFactory:
    """전역 어댑터 팩토리 인스턴스를 반환합니다."""
    global _factory
    if _factory is None:
        _factory = AdapterFactory()
    return _factory


def set_adapter_factory(factory: Optional[AdapterFactory]) -> None:
    """전역 어댑터 팩토리를 교체합니다. (테스트용)"""
    global _factory
    _factory = factory
