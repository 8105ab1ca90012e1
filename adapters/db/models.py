"""
SQLAlchemy 데이터베이스 모델

도메인 엔티티와 매핑되는 데이터베이스 테이블 모델을 정의합니다.
SQLite 호환성을 위해 UUID는 String으로, 배열/맵은 JSON으로 처리합니다.
시간 값은 UTC로 저장하며, 읽을 때 어댑터에서 timezone-aware로 복원합니다.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from core.domain.entities import now_utc

Base = declarative_base()


class CredentialModel(Base):
    """OAuth 자격 증명 테이블 모델 (토큰은 암호화된 값)"""

    __tablename__ = "email_credentials"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String(64), nullable=False, index=True)
    tenant_id = Column(String(255), nullable=False)
    client_id = Column(String(255), nullable=False)
    access_token = Column(Text, nullable=False)  # 암호화된 값
    refresh_token = Column(Text, nullable=False)  # 암호화된 값
    token_expires_at = Column(DateTime(timezone=True), nullable=False)
    scopes = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    __table_args__ = (
        UniqueConstraint("business_id", "tenant_id", name="uq_credentials_business_tenant"),
    )

    # 관계 설정
    mailboxes = relationship("MailboxModel", back_populates="credential")


class MailboxModel(Base):
    """메일박스 테이블 모델"""

    __tablename__ = "mailboxes"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    credential_id = Column(String(36), ForeignKey("email_credentials.id"), nullable=False, index=True)
    business_id = Column(String(64), nullable=False, index=True)
    mailbox_address = Column(String(255), nullable=False)
    sync_inbound = Column(Boolean, default=True)
    sync_outbound = Column(Boolean, default=True)
    sync_folders = Column(JSON, nullable=False, default=list)
    delta_sync_tokens = Column(JSON, nullable=False, default=dict)  # 폴더 ID -> 델타 링크
    last_sync_at = Column(DateTime(timezone=True))
    sync_status = Column(String(20), nullable=False, default="ACTIVE", index=True)
    webhook_subscription_id = Column(String(255), unique=True, index=True)
    webhook_expires_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)

    __table_args__ = (
        UniqueConstraint("business_id", "mailbox_address", name="uq_mailboxes_business_address"),
    )

    # 관계 설정
    credential = relationship("CredentialModel", back_populates="mailboxes")
    emails = relationship("EmailModel", back_populates="mailbox")


class EmailModel(Base):
    """메일 테이블 모델"""

    __tablename__ = "emails"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    provider_message_id = Column(String(512), unique=True, nullable=False, index=True)
    provider_conversation_id = Column(String(512), index=True)
    mailbox_id = Column(String(36), ForeignKey("mailboxes.id"), nullable=False, index=True)
    business_id = Column(String(64), nullable=False, index=True)
    direction = Column(String(20), nullable=False)
    subject = Column(Text, default="")
    body_preview = Column(Text)
    body_html = Column(Text)
    from_address = Column(String(255), index=True)
    from_name = Column(String(255))
    to_addresses = Column(JSON, default=list)  # 문자열 배열을 JSON으로 저장
    cc_addresses = Column(JSON, default=list)
    sent_at = Column(DateTime(timezone=True))
    received_at = Column(DateTime(timezone=True), index=True)
    has_attachments = Column(Boolean, default=False)
    contact_id = Column(String(64), index=True)
    company_id = Column(String(64), index=True)
    deal_id = Column(String(64), index=True)
    auto_linked = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), default=now_utc)

    __table_args__ = (
        Index("idx_emails_mailbox_received", "mailbox_id", "received_at"),
        Index("idx_emails_business_contact", "business_id", "contact_id"),
    )

    # 관계 설정
    mailbox = relationship("MailboxModel", back_populates="emails")


class CompanyModel(Base):
    """CRM 회사 테이블 모델"""

    __tablename__ = "companies"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ContactModel(Base):
    """CRM 연락처 테이블 모델"""

    __tablename__ = "contacts"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String(64), nullable=False, index=True)
    email = Column(String(255), index=True)
    name = Column(String(255))
    company_id = Column(String(64), ForeignKey("companies.id"), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_contacts_business_email", "business_id", "email"),
    )


class DealModel(Base):
    """CRM 딜 테이블 모델"""

    __tablename__ = "deals"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    business_id = Column(String(64), nullable=False, index=True)
    title = Column(String(255))
    stage = Column(String(50), nullable=False, default="LEAD", index=True)
    contact_id = Column(String(64), ForeignKey("contacts.id"), index=True)
    company_id = Column(String(64), ForeignKey("companies.id"), index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class CacheModel(Base):
    """캐시 테이블 모델 (OAuth state 보관)"""

    __tablename__ = "cache"

    key = Column(String(255), primary_key=True, index=True)
    value = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=now_utc)
    updated_at = Column(DateTime(timezone=True), default=now_utc, onupdate=now_utc)
