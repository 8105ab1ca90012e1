"""
설정 어댑터

환경 변수와 .env 파일에서 메일박스 동기화 설정을 읽어오는 Pydantic Settings 어댑터입니다.
"""

import os
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.domain.ports import ConfigPort


DEFAULT_OAUTH_SCOPES = [
    "Mail.Read",
    "Mail.ReadWrite",
    "Mail.Send",
    "User.Read",
    "offline_access",
]


class BaseConfig(BaseSettings, ConfigPort):
    """기본 설정 클래스"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # 환경 설정
    environment: str = Field(default="development")
    debug: bool = Field(default=False)

    # 데이터베이스 설정
    database_url: str = Field(...)

    # 캐시 설정 (데이터베이스 기반, OAuth state 보관용)
    cache_ttl: int = Field(default=600)

    # Microsoft OAuth 설정
    microsoft_client_id: str = Field(...)
    microsoft_client_secret: str = Field(...)
    microsoft_tenant_id: str = Field(default="common")
    oauth_redirect_uri: str = Field(default="http://localhost:5000/auth/callback")
    oauth_scopes: List[str] = Field(default_factory=lambda: list(DEFAULT_OAUTH_SCOPES))

    # 보안 설정
    encryption_key: str = Field(...)
    token_refresh_margin_seconds: int = Field(default=120)

    # 웹훅 설정
    webhook_base_url: str = Field(default="http://localhost:5000")
    webhook_client_state: Optional[str] = Field(default=None)
    webhook_subscription_minutes: int = Field(default=4230)

    # 로깅 설정
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # 웹 서버 설정
    web_host: str = Field(default="0.0.0.0")
    web_port: int = Field(default=5000)

    # 메일 동기화 설정
    sync_page_size: int = Field(default=100)
    sync_folder_timeout_seconds: float = Field(default=300.0)
    sync_max_concurrency: int = Field(default=4)
    sync_default_folders: List[str] = Field(default_factory=lambda: ["Inbox", "Sent Items"])
    http_timeout_seconds: float = Field(default=30.0)

    @field_validator("encryption_key")
    @classmethod
    def validate_encryption_key(cls, v):
        """암호화 키 검증"""
        if len(v) < 16:
            raise ValueError("암호화 키는 최소 16자 이상이어야 합니다")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """로그 레벨 검증"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"로그 레벨은 {valid_levels} 중 하나여야 합니다")
        return v.upper()

    @field_validator("webhook_subscription_minutes")
    @classmethod
    def validate_subscription_minutes(cls, v):
        """메일 리소스 구독은 최대 4230분까지 허용됩니다."""
        if not 1 <= v <= 4230:
            raise ValueError("웹훅 구독 시간은 1~4230분 사이여야 합니다")
        return v

    @field_validator("sync_max_concurrency", "sync_page_size")
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("1 이상의 값이어야 합니다")
        return v

    # ConfigPort 인터페이스 구현
    def get_environment(self) -> str:
        return self.environment

    def is_debug(self) -> bool:
        return self.debug

    def get_database_url(self) -> str:
        return self.database_url

    def get_cache_ttl(self) -> int:
        return self.cache_ttl

    def get_microsoft_client_id(self) -> str:
        return self.microsoft_client_id

    def get_microsoft_client_secret(self) -> str:
        return self.microsoft_client_secret

    def get_microsoft_tenant_id(self) -> str:
        return self.microsoft_tenant_id

    def get_oauth_redirect_uri(self) -> str:
        return self.oauth_redirect_uri

    def get_oauth_scopes(self) -> List[str]:
        return list(self.oauth_scopes)

    def get_encryption_key(self) -> str:
        return self.encryption_key

    def get_token_refresh_margin_seconds(self) -> int:
        return self.token_refresh_margin_seconds

    def get_webhook_base_url(self) -> str:
        return self.webhook_base_url.rstrip("/")

    def get_webhook_client_state(self) -> Optional[str]:
        return self.webhook_client_state

    def get_webhook_subscription_minutes(self) -> int:
        return self.webhook_subscription_minutes

    def get_log_level(self) -> str:
        return self.log_level

    def get_log_format(self) -> str:
        return self.log_format

    def get_web_host(self) -> str:
        return self.web_host

    def get_web_port(self) -> int:
        return self.web_port

    def get_sync_page_size(self) -> int:
        return self.sync_page_size

    def get_sync_folder_timeout_seconds(self) -> float:
        return self.sync_folder_timeout_seconds

    def get_sync_max_concurrency(self) -> int:
        return self.sync_max_concurrency

    def get_sync_default_folders(self) -> List[str]:
        return list(self.sync_default_folders)

    def get_http_timeout_seconds(self) -> float:
        return self.http_timeout_seconds

    def get_oauth_config(self) -> dict:
        """OAuth 설정 조회 (시크릿 제외)"""
        return {
            "client_id": self.microsoft_client_id,
            "tenant_id": self.microsoft_tenant_id,
            "redirect_uri": self.oauth_redirect_uri,
            "scopes": self.get_oauth_scopes(),
        }

    def get_sync_config(self) -> dict:
        """동기화 설정 조회"""
        return {
            "page_size": self.sync_page_size,
            "folder_timeout_seconds": self.sync_folder_timeout_seconds,
            "max_concurrency": self.sync_max_concurrency,
            "default_folders": self.get_sync_default_folders(),
        }


class DevelopmentConfig(BaseConfig):
    """개발 환경 설정"""

    environment: str = "development"
    debug: bool = True
    log_level: str = "DEBUG"

    # 개발용 기본값들 (실제 사용 시 .env 파일에서 설정)
    database_url: str = Field(default="sqlite+aiosqlite:///./dev_mailsync.db")
    microsoft_client_id: str = Field(default="dev_client_id")
    microsoft_client_secret: str = Field(default="dev_client_secret")
    encryption_key: str = Field(default="dev_encryption_key_32_bytes_long")


class ProductionConfig(BaseConfig):
    """운영 환경 설정"""

    environment: str = "production"
    debug: bool = False
    log_level: str = "INFO"

    @field_validator("database_url")
    @classmethod
    def validate_production_database_url(cls, v):
        """운영 환경에서는 PostgreSQL이 필수"""
        if not v or v.startswith("sqlite"):
            raise ValueError("운영 환경에서는 PostgreSQL 데이터베이스가 필요합니다")
        return v

    @field_validator("microsoft_client_secret", "encryption_key")
    @classmethod
    def validate_production_secrets(cls, v):
        """운영 환경에서는 모든 시크릿이 필수"""
        if not v or v.startswith("dev_") or v.startswith("test_"):
            raise ValueError("운영 환경에서는 실제 시크릿 값이 필요합니다")
        return v


class TestingConfig(BaseConfig):
    """테스트 환경 설정"""

    environment: str = "testing"
    debug: bool = True
    log_level: str = "WARNING"

    database_url: str = Field(default="sqlite+aiosqlite:///:memory:")
    microsoft_client_id: str = "test_client_id"
    microsoft_client_secret: str = "test_client_secret"
    microsoft_tenant_id: str = "test_tenant_id"
    encryption_key: str = "test_encryption_key_32_bytes_long"
    webhook_base_url: str = "https://mailsync.test"
    webhook_client_state: Optional[str] = "test_client_state"


class ConfigAdapter:
    """설정 어댑터 팩토리"""

    @staticmethod
    def create_config() -> ConfigPort:
        """환경에 따른 설정 객체를 생성합니다."""
        environment = os.getenv("ENVIRONMENT", "development").lower()

        if environment == "production":
            return ProductionConfig()
        elif environment == "testing":
            return TestingConfig()
        else:
            return DevelopmentConfig()


# 전역 설정 인스턴스
_config: Optional[ConfigPort] = None


def get_config() -> ConfigPort:
    """전역 설정 인스턴스를 반환합니다."""
    global _config
    if _config is None:
        _config = ConfigAdapter.create_config()
    return _config


def initialize_config() -> ConfigPort:
    """설정을 초기화합니다."""
    global _config
    _config = ConfigAdapter.create_config()
    return _config
