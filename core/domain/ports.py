"""
포트 인터페이스 정의

클린 아키텍처의 핵심으로, Core 레이어와 외부 어댑터 간의 계약을 정의합니다.
모든 포트는 추상 기본 클래스(ABC)로 정의되어 구현을 강제합니다.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional
from uuid import UUID

from .entities import (
    Contact,
    Credential,
    Deal,
    DeltaResult,
    Email,
    Mailbox,
    MailboxSyncStatus,
    TokenSet,
)
from .graph_types import GraphMailFolder, GraphMessage, GraphSubscription


class CredentialRepositoryPort(ABC):
    """자격 증명 저장소 포트"""

    @abstractmethod
    async def get_by_id(self, credential_id: UUID) -> Optional[Credential]:
        """ID로 자격 증명 조회"""
        pass

    @abstractmethod
    async def get_active(self, business_id: str, tenant_id: Optional[str] = None) -> Optional[Credential]:
        """비즈니스(및 테넌트)의 활성 자격 증명 조회"""
        pass

    @abstractmethod
    async def upsert(self, credential: Credential) -> Credential:
        """(business_id, tenant_id) 기준으로 자격 증명 생성 또는 갱신"""
        pass

    @abstractmethod
    async def update_tokens(
        self,
        credential_id: UUID,
        access_token: str,
        refresh_token: str,
        token_expires_at: datetime,
        scopes: List[str],
    ) -> Credential:
        """암호화된 토큰 교체"""
        pass

    @abstractmethod
    async def deactivate(self, credential_id: UUID) -> None:
        """자격 증명 비활성화 (삭제하지 않음)"""
        pass


class MailboxRepositoryPort(ABC):
    """메일박스 저장소 포트"""

    @abstractmethod
    async def create(self, mailbox: Mailbox) -> Mailbox:
        """메일박스 생성"""
        pass

    @abstractmethod
    async def get_by_id(self, mailbox_id: UUID) -> Optional[Mailbox]:
        """ID로 메일박스 조회"""
        pass

    @abstractmethod
    async def get_by_subscription_id(self, subscription_id: str) -> Optional[Mailbox]:
        """웹훅 구독 ID로 메일박스 조회"""
        pass

    @abstractmethod
    async def get_by_address(self, business_id: str, mailbox_address: str) -> Optional[Mailbox]:
        """비즈니스 내 주소로 메일박스 조회"""
        pass

    @abstractmethod
    async def list_by_business(self, business_id: str) -> List[Mailbox]:
        """비즈니스의 메일박스 목록 조회"""
        pass

    @abstractmethod
    async def list_syncable(self) -> List[Mailbox]:
        """활성 자격 증명에 연결된 메일박스 목록 조회"""
        pass

    @abstractmethod
    async def list_expiring_subscriptions(self, before: datetime) -> List[Mailbox]:
        """만료가 임박한 웹훅 구독을 가진 메일박스 목록 조회"""
        pass

    @abstractmethod
    async def update_sync_state(
        self,
        mailbox_id: UUID,
        sync_status: MailboxSyncStatus,
        last_sync_at: Optional[datetime] = None,
    ) -> None:
        """동기화 상태 및 마지막 동기화 시간 갱신"""
        pass

    @abstractmethod
    async def update_settings(
        self,
        mailbox_id: UUID,
        sync_inbound: Optional[bool] = None,
        sync_outbound: Optional[bool] = None,
        sync_folders: Optional[List[str]] = None,
    ) -> Mailbox:
        """동기화 방향/폴더 설정 변경 (None인 항목은 유지)"""
        pass

    @abstractmethod
    async def set_delta_token(self, mailbox_id: UUID, folder_id: str, delta_token: str) -> None:
        """폴더 델타 링크 저장"""
        pass

    @abstractmethod
    async def set_webhook_subscription(
        self,
        mailbox_id: UUID,
        subscription_id: Optional[str],
        expires_at: Optional[datetime],
    ) -> None:
        """웹훅 구독 정보 저장"""
        pass


class EmailRepositoryPort(ABC):
    """메일 저장소 포트"""

    @abstractmethod
    async def exists_by_provider_id(self, provider_message_id: str) -> bool:
        """공급자 메시지 ID로 존재 여부 확인"""
        pass

    @abstractmethod
    async def create_if_absent(self, email: Email) -> bool:
        """없을 때만 저장. 저장했으면 True, 이미 있으면 False"""
        pass

    @abstractmethod
    async def delete_by_provider_id(self, provider_message_id: str) -> int:
        """공급자 메시지 ID로 삭제. 삭제된 행 수 반환"""
        pass

    @abstractmethod
    async def get_by_id(self, email_id: UUID) -> Optional[Email]:
        """ID로 메일 조회"""
        pass

    @abstractmethod
    async def update_links(
        self,
        email_id: UUID,
        links: Dict[str, Optional[str]],
        auto_linked: bool,
    ) -> Email:
        """CRM 연결 정보 갱신"""
        pass


class CrmDirectoryPort(ABC):
    """CRM 조회 포트 (연락처/회사/딜)"""

    @abstractmethod
    async def find_contact_by_address(self, business_id: str, address: str) -> Optional[Contact]:
        """이메일 주소로 연락처 조회 (대소문자 무시)"""
        pass

    @abstractmethod
    async def find_open_deals_for_contact(self, business_id: str, contact_id: str) -> List[Deal]:
        """연락처의 진행 중인 딜 조회"""
        pass

    @abstractmethod
    async def find_open_deals_for_company(self, business_id: str, company_id: str) -> List[Deal]:
        """회사의 진행 중인 딜 조회"""
        pass

    @abstractmethod
    async def record_exists(self, business_id: str, kind: str, record_id: str) -> bool:
        """비즈니스 내 레코드 존재 여부 (kind: contact, company, deal)"""
        pass


class OAuthProviderPort(ABC):
    """OAuth 2.0 토큰 엔드포인트 포트"""

    @abstractmethod
    def get_authorization_url(self, state: str, shared_mailbox: bool = False) -> str:
        """인증 URL 생성 (shared_mailbox이면 공유 메일박스 권한 포함)"""
        pass

    @abstractmethod
    async def exchange_code(self, code: str) -> TokenSet:
        """인증 코드를 토큰으로 교환"""
        pass

    @abstractmethod
    async def refresh(self, refresh_token: str) -> TokenSet:
        """리프레시 토큰으로 토큰 갱신"""
        pass


class AccessTokenProviderPort(ABC):
    """유효한 액세스 토큰 제공 포트"""

    @abstractmethod
    async def get_valid_access_token(
        self,
        credential_id: UUID,
        rejected_token: Optional[str] = None,
    ) -> str:
        """유효한 평문 액세스 토큰 조회 (필요 시 갱신)"""
        pass


class GraphApiClientPort(ABC):
    """인증된 Graph API 전송 포트"""

    @abstractmethod
    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict:
        """단일 요청"""
        pass

    @abstractmethod
    def paginate(self, endpoint: str, params: Optional[dict] = None) -> AsyncIterator[List[dict]]:
        """nextLink를 따라가는 페이지 시퀀스"""
        pass

    @abstractmethod
    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        max_items: Optional[int] = None,
    ) -> List[dict]:
        """모든 페이지를 하나의 목록으로 수집"""
        pass

    @abstractmethod
    async def delta_query(self, endpoint: str, delta_token: Optional[str] = None) -> DeltaResult:
        """델타 쿼리"""
        pass


class MailProviderPort(ABC):
    """메일박스 단위 Graph 메일 작업 포트"""

    @abstractmethod
    async def list_folders(self) -> List[GraphMailFolder]:
        """메일 폴더 목록 조회"""
        pass

    @abstractmethod
    async def list_recent_messages(
        self,
        folder_id: str,
        top: int,
        fields: Optional[List[str]] = None,
    ) -> List[GraphMessage]:
        """폴더의 최근 메시지 조회 (fields를 주면 해당 필드만)"""
        pass

    @abstractmethod
    async def get_message(self, message_id: str) -> GraphMessage:
        """단일 메시지 조회"""
        pass

    @abstractmethod
    async def delta_messages(
        self,
        folder_id: str,
        delta_token: Optional[str] = None,
        received_since: Optional[datetime] = None,
    ) -> DeltaResult:
        """폴더 메시지 델타 조회 (베이스라인은 received_since 이후 수신분으로 제한 가능)"""
        pass

    @abstractmethod
    async def create_subscription(
        self,
        notification_url: str,
        expires_at: datetime,
        client_state: Optional[str] = None,
    ) -> GraphSubscription:
        """웹훅 구독 생성"""
        pass

    @abstractmethod
    async def renew_subscription(self, subscription_id: str, expires_at: datetime) -> GraphSubscription:
        """웹훅 구독 만료 연장"""
        pass

    @abstractmethod
    async def delete_subscription(self, subscription_id: str) -> bool:
        """웹훅 구독 삭제"""
        pass


class EncryptionServicePort(ABC):
    """암호화 서비스 포트"""

    @abstractmethod
    async def encrypt(self, data: str) -> str:
        """데이터 암호화"""
        pass

    @abstractmethod
    async def decrypt(self, encrypted_data: str) -> str:
        """데이터 복호화"""
        pass


class CacheServicePort(ABC):
    """캐시 서비스 포트"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """캐시에서 값 조회"""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, expire: Optional[int] = None) -> bool:
        """캐시에 값 저장"""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """캐시에서 값 삭제"""
        pass


class LoggerPort(ABC):
    """로거 포트"""

    @abstractmethod
    def info(self, message: str, **kwargs) -> None:
        """정보 로그"""
        pass

    @abstractmethod
    def warning(self, message: str, **kwargs) -> None:
        """경고 로그"""
        pass

    @abstractmethod
    def error(self, message: str, **kwargs) -> None:
        """오류 로그"""
        pass

    @abstractmethod
    def debug(self, message: str, **kwargs) -> None:
        """디버그 로그"""
        pass


class ConfigPort(ABC):
    """설정 포트"""

    # 환경 설정
    @abstractmethod
    def get_environment(self) -> str:
        """환경 조회 (development, production, testing)"""
        pass

    @abstractmethod
    def is_debug(self) -> bool:
        """디버그 모드 여부"""
        pass

    # 데이터베이스 설정
    @abstractmethod
    def get_database_url(self) -> str:
        """데이터베이스 URL 조회"""
        pass

    @abstractmethod
    def get_cache_ttl(self) -> int:
        """캐시 기본 TTL(초) 조회"""
        pass

    # Microsoft OAuth 설정
    @abstractmethod
    def get_microsoft_client_id(self) -> str:
        pass

    @abstractmethod
    def get_microsoft_client_secret(self) -> str:
        pass

    @abstractmethod
    def get_microsoft_tenant_id(self) -> str:
        pass

    @abstractmethod
    def get_oauth_redirect_uri(self) -> str:
        pass

    @abstractmethod
    def get_oauth_scopes(self) -> List[str]:
        pass

    # 보안 설정
    @abstractmethod
    def get_encryption_key(self) -> str:
        """암호화 키 조회"""
        pass

    @abstractmethod
    def get_token_refresh_margin_seconds(self) -> int:
        """토큰 갱신 안전 여유 시간(초) 조회"""
        pass

    # 웹훅 설정
    @abstractmethod
    def get_webhook_base_url(self) -> str:
        """웹훅 베이스 URL 조회"""
        pass

    @abstractmethod
    def get_webhook_client_state(self) -> Optional[str]:
        """웹훅 clientState 시크릿 조회"""
        pass

    @abstractmethod
    def get_webhook_subscription_minutes(self) -> int:
        """웹훅 구독 유효 시간(분) 조회"""
        pass

    # 로깅 설정
    @abstractmethod
    def get_log_level(self) -> str:
        """로그 레벨 조회"""
        pass

    @abstractmethod
    def get_log_format(self) -> str:
        """로그 포맷 조회"""
        pass

    # 웹 서버 설정
    @abstractmethod
    def get_web_host(self) -> str:
        pass

    @abstractmethod
    def get_web_port(self) -> int:
        pass

    # 동기화 설정
    @abstractmethod
    def get_sync_page_size(self) -> int:
        """전체 동기화 시 폴더별 최근 메시지 수 조회"""
        pass

    @abstractmethod
    def get_sync_folder_timeout_seconds(self) -> float:
        """폴더 동기화 제한 시간(초) 조회"""
        pass

    @abstractmethod
    def get_sync_max_concurrency(self) -> int:
        """동시 동기화 메일박스 수 조회"""
        pass

    @abstractmethod
    def get_sync_default_folders(self) -> List[str]:
        """기본 동기화 폴더 목록 조회"""
        pass

    @abstractmethod
    def get_http_timeout_seconds(self) -> float:
        """HTTP 요청 제한 시간(초) 조회"""
        pass
