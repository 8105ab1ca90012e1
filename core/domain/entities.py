"""
도메인 엔티티 정의

메일박스 동기화의 핵심 개념을 나타내는 엔티티들을 정의합니다.
모든 엔티티는 Pydantic 모델을 기반으로 하여 타입 안정성을 보장합니다.
시간 값은 모두 UTC 기준의 timezone-aware datetime으로 다룹니다.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator


def now_utc() -> datetime:
    """현재 UTC 시간을 반환합니다."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """naive datetime은 UTC로 간주하고, aware datetime은 UTC로 변환합니다."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class EmailDirection(str, Enum):
    """메일 방향"""
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


class MailboxSyncStatus(str, Enum):
    """메일박스 동기화 상태"""
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"


class FolderSyncState(str, Enum):
    """폴더 단위 동기화 상태 (IDLE -> SYNCING -> IDLE/ERROR)"""
    IDLE = "IDLE"
    SYNCING = "SYNCING"
    ERROR = "ERROR"


class SyncMode(str, Enum):
    """동기화 방식"""
    FULL = "full"
    DELTA = "delta"


class NotificationChangeType(str, Enum):
    """웹훅 알림 변경 타입"""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


CLOSED_DEAL_STAGES = ("CLOSED_WON", "CLOSED_LOST")


class Credential(BaseModel):
    """OAuth 자격 증명 엔티티 (토큰은 항상 암호화된 상태로 보관)"""

    id: UUID = Field(default_factory=uuid4, description="자격 증명 ID")
    business_id: str = Field(..., description="소유 비즈니스 ID")
    tenant_id: str = Field(..., description="Azure AD 테넌트 ID")
    client_id: str = Field(..., description="Azure 애플리케이션 클라이언트 ID")
    access_token: str = Field(..., description="암호화된 액세스 토큰", repr=False)
    refresh_token: str = Field(..., description="암호화된 리프레시 토큰", repr=False)
    token_expires_at: datetime = Field(..., description="액세스 토큰 만료 시간")
    scopes: List[str] = Field(default_factory=list, description="권한 범위")
    is_active: bool = Field(default=True, description="활성 여부")
    created_at: datetime = Field(default_factory=now_utc, description="생성 시간")
    updated_at: datetime = Field(default_factory=now_utc, description="수정 시간")

    @field_validator("token_expires_at", "created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v)

    def is_near_expiry(self, margin: timedelta, now: Optional[datetime] = None) -> bool:
        """만료 시간이 안전 여유 시간 이내인지 확인"""
        current = ensure_utc(now) if now else now_utc()
        return current + margin >= self.token_expires_at


class Mailbox(BaseModel):
    """동기화 대상 메일박스 엔티티"""

    id: UUID = Field(default_factory=uuid4, description="메일박스 ID")
    credential_id: UUID = Field(..., description="자격 증명 ID")
    business_id: str = Field(..., description="비즈니스 ID")
    mailbox_address: str = Field(..., description="메일박스 이메일 주소")
    sync_inbound: bool = Field(default=True, description="수신 메일 동기화 여부")
    sync_outbound: bool = Field(default=True, description="발신 메일 동기화 여부")
    sync_folders: List[str] = Field(
        default_factory=lambda: ["Inbox", "Sent Items"],
        description="동기화할 폴더 표시 이름 목록",
    )
    delta_sync_tokens: Dict[str, str] = Field(
        default_factory=dict,
        description="폴더 ID별 델타 링크 (불투명 값)",
    )
    last_sync_at: Optional[datetime] = Field(None, description="마지막 성공 동기화 시간")
    sync_status: MailboxSyncStatus = Field(default=MailboxSyncStatus.ACTIVE, description="동기화 상태")
    webhook_subscription_id: Optional[str] = Field(None, description="웹훅 구독 ID")
    webhook_expires_at: Optional[datetime] = Field(None, description="웹훅 구독 만료 시간")
    created_at: datetime = Field(default_factory=now_utc, description="생성 시간")

    @field_validator("mailbox_address")
    @classmethod
    def validate_mailbox_address(cls, v):
        """이메일 형식 검증"""
        if "@" not in v:
            raise ValueError("유효한 이메일 주소가 아닙니다")
        return v.strip().lower()

    @field_validator("last_sync_at", "webhook_expires_at", "created_at")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v)

    def accepts(self, direction: EmailDirection) -> bool:
        """메일 방향이 동기화 설정에 포함되는지 확인"""
        if direction == EmailDirection.INBOUND:
            return self.sync_inbound
        return self.sync_outbound

    def delta_token_for(self, folder_id: str) -> Optional[str]:
        """폴더의 델타 링크 조회"""
        return self.delta_sync_tokens.get(folder_id)


class NormalizedEmail(BaseModel):
    """공급자 메시지를 정규화한 메일 표현 (Message Processor 출력)"""

    provider_message_id: str = Field(..., description="공급자 메시지 ID")
    provider_conversation_id: Optional[str] = Field(None, description="공급자 대화 ID")
    direction: EmailDirection = Field(..., description="메일 방향")
    subject: str = Field(default="", description="제목")
    body_preview: Optional[str] = Field(None, description="본문 미리보기 (평문)")
    body_html: Optional[str] = Field(None, description="HTML 본문")
    from_address: str = Field(default="", description="발신자 주소")
    from_name: Optional[str] = Field(None, description="발신자 이름")
    to_addresses: List[str] = Field(default_factory=list, description="수신자 주소 목록")
    cc_addresses: List[str] = Field(default_factory=list, description="참조 주소 목록")
    sent_at: Optional[datetime] = Field(None, description="발송 시간 (UTC)")
    received_at: Optional[datetime] = Field(None, description="수신 시간 (UTC)")
    has_attachments: bool = Field(default=False, description="첨부파일 여부")

    def participants(self) -> List[str]:
        """발신자, 수신자, 참조 순서로 중복 없는 소문자 주소 목록을 반환합니다."""
        seen = set()
        result = []
        for address in [self.from_address, *self.to_addresses, *self.cc_addresses]:
            if not address:
                continue
            key = address.strip().lower()
            if key and key not in seen:
                seen.add(key)
                result.append(key)
        return result


class LinkResult(BaseModel):
    """자동 연결 결과"""

    contact_id: Optional[str] = None
    company_id: Optional[str] = None
    deal_id: Optional[str] = None

    @property
    def auto_linked(self) -> bool:
        return bool(self.contact_id or self.company_id or self.deal_id)


class Email(BaseModel):
    """CRM에 저장되는 메일 엔티티"""

    id: UUID = Field(default_factory=uuid4, description="내부 메일 ID")
    provider_message_id: str = Field(..., description="공급자 메시지 ID (멱등성 키)")
    provider_conversation_id: Optional[str] = Field(None, description="공급자 대화 ID")
    mailbox_id: UUID = Field(..., description="메일박스 ID")
    business_id: str = Field(..., description="비즈니스 ID")
    direction: EmailDirection = Field(..., description="메일 방향")
    subject: str = Field(default="", description="제목")
    body_preview: Optional[str] = Field(None, description="본문 미리보기")
    body_html: Optional[str] = Field(None, description="HTML 본문")
    from_address: str = Field(default="", description="발신자 주소")
    from_name: Optional[str] = Field(None, description="발신자 이름")
    to_addresses: List[str] = Field(default_factory=list, description="수신자 목록")
    cc_addresses: List[str] = Field(default_factory=list, description="참조 목록")
    sent_at: Optional[datetime] = Field(None, description="발송 시간")
    received_at: Optional[datetime] = Field(None, description="수신 시간")
    has_attachments: bool = Field(default=False, description="첨부파일 여부")
    contact_id: Optional[str] = Field(None, description="연결된 연락처 ID")
    company_id: Optional[str] = Field(None, description="연결된 회사 ID")
    deal_id: Optional[str] = Field(None, description="연결된 딜 ID")
    auto_linked: bool = Field(default=False, description="자동 연결 여부")
    created_at: datetime = Field(default_factory=now_utc, description="생성 시간")

    @field_validator("sent_at", "received_at", "created_at")
    @classmethod
    def normalize_timestamps(cls, v):
        return ensure_utc(v)

    @classmethod
    def from_normalized(
        cls,
        normalized: NormalizedEmail,
        mailbox: Mailbox,
        links: LinkResult,
    ) -> "Email":
        """정규화된 메일과 자동 연결 결과로 엔티티를 생성합니다."""
        return cls(
            mailbox_id=mailbox.id,
            business_id=mailbox.business_id,
            contact_id=links.contact_id,
            company_id=links.company_id,
            deal_id=links.deal_id,
            auto_linked=links.auto_linked,
            **normalized.model_dump(),
        )


class Contact(BaseModel):
    """CRM 연락처 (조회 전용)"""

    id: str
    business_id: str
    email: Optional[str] = None
    company_id: Optional[str] = None


class Deal(BaseModel):
    """CRM 딜 (조회 전용)"""

    id: str
    business_id: str
    contact_id: Optional[str] = None
    company_id: Optional[str] = None
    stage: str = "LEAD"

    def is_open(self) -> bool:
        """진행 중인 딜인지 확인"""
        return self.stage not in CLOSED_DEAL_STAGES


class TokenSet(BaseModel):
    """토큰 엔드포인트 응답을 정리한 평문 토큰 묶음 (저장 금지)"""

    access_token: str = Field(..., repr=False)
    refresh_token: Optional[str] = Field(None, repr=False)
    expires_at: datetime
    scopes: List[str] = Field(default_factory=list)
    tenant_id: Optional[str] = None


class DeltaResult(BaseModel):
    """델타 쿼리 결과"""

    items: List[dict] = Field(default_factory=list, description="생성/변경된 항목")
    deleted_ids: List[str] = Field(default_factory=list, description="삭제된 항목 ID")
    delta_link: str = Field(..., description="다음 동기화에 사용할 델타 링크")


class FolderSyncResult(BaseModel):
    """폴더 동기화 결과"""

    folder_id: str
    folder_name: str
    mode: SyncMode
    state: FolderSyncState = FolderSyncState.IDLE
    imported: int = 0
    skipped: int = 0
    deleted: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state == FolderSyncState.IDLE and self.error is None


class MailboxSyncReport(BaseModel):
    """메일박스 동기화 결과 보고서"""

    mailbox_id: UUID
    started_at: datetime = Field(default_factory=now_utc)
    completed_at: Optional[datetime] = None
    folders: List[FolderSyncResult] = Field(default_factory=list)
    sync_status: MailboxSyncStatus = MailboxSyncStatus.ACTIVE
    error: Optional[str] = None

    @property
    def imported(self) -> int:
        return sum(folder.imported for folder in self.folders)

    @property
    def skipped(self) -> int:
        return sum(folder.skipped for folder in self.folders)

    @property
    def deleted(self) -> int:
        return sum(folder.deleted for folder in self.folders)

    @property
    def failed_folders(self) -> List[str]:
        return [folder.folder_name for folder in self.folders if not folder.succeeded]

    def is_complete_success(self) -> bool:
        """모든 폴더가 성공했는지 확인"""
        return self.error is None and all(folder.succeeded for folder in self.folders)

    def summary(self) -> dict:
        """API/CLI 출력용 요약"""
        return {
            "mailbox_id": str(self.mailbox_id),
            "sync_status": self.sync_status.value,
            "imported": self.imported,
            "skipped": self.skipped,
            "deleted": self.deleted,
            "folders": [folder.folder_name for folder in self.folders],
            "failed_folders": self.failed_folders,
            "error": self.error,
        }
