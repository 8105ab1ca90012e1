"""
인증 유즈케이스

Microsoft 365 OAuth 2.0 Authorization Code Flow로 메일박스 접근 자격 증명을 연결합니다.
- 인증 시작: state 생성 후 캐시에 비즈니스 ID와 함께 저장
- 인증 완료: state 검증, 코드 교환, 토큰 암호화 후 (비즈니스, 테넌트) 단위로 저장
"""

import secrets
from typing import Tuple
from uuid import UUID

from ..domain.entities import Credential
from ..domain.exceptions import InvalidOAuthState, ProviderError
from ..domain.ports import (
    CacheServicePort,
    CredentialRepositoryPort,
    EncryptionServicePort,
    LoggerPort,
    OAuthProviderPort,
)


STATE_CACHE_PREFIX = "oauth_state:"


class AuthenticationUseCase:
    """인증 유즈케이스"""

    def __init__(
        self,
        credential_repository: CredentialRepositoryPort,
        oauth_provider: OAuthProviderPort,
        encryption_service: EncryptionServicePort,
        cache_service: CacheServicePort,
        logger: LoggerPort,
        client_id: str,
        default_tenant_id: str = "common",
        state_ttl: int = 600,
    ):
        self.credential_repository = credential_repository
        self.oauth_provider = oauth_provider
        self.encryption_service = encryption_service
        self.cache_service = cache_service
        self.logger = logger
        self.client_id = client_id
        self.default_tenant_id = default_tenant_id
        self.state_ttl = state_ttl

    async def start_authorization_code_flow(
        self,
        business_id: str,
        shared_mailbox: bool = False,
    ) -> Tuple[str, str]:
        """
        Authorization Code Flow 인증을 시작합니다.

        Args:
            business_id: 자격 증명을 연결할 비즈니스 ID
            shared_mailbox: 공유 메일박스 권한까지 요청할지 여부

        Returns:
            (authorization_url, state) 튜플
        """
        self.logger.info(f"Authorization Code Flow 시작: business={business_id}")

        state = secrets.token_urlsafe(32)
        await self.cache_service.set(
            f"{STATE_CACHE_PREFIX}{state}",
            business_id,
            expire=self.state_ttl,
        )

        authorization_url = self.oauth_provider.get_authorization_url(state, shared_mailbox=shared_mailbox)
        return authorization_url, state

    async def complete_authorization_code_flow(self, code: str, state: str) -> Credential:
        """
        Authorization Code Flow 인증을 완료합니다.

        Args:
            code: 인증 코드
            state: 인증 시작 시 발급한 state

        Returns:
            저장된 자격 증명 (토큰은 암호화된 상태)

        Raises:
            InvalidOAuthState: state가 없거나 만료된 경우
            ProviderError: 토큰 교환에 실패했거나 리프레시 토큰이 없는 경우
        """
        cache_key = f"{STATE_CACHE_PREFIX}{state}"
        business_id = await self.cache_service.get(cache_key)
        if not business_id:
            raise InvalidOAuthState("유효하지 않거나 만료된 state입니다")

        # state는 한 번만 사용
        await self.cache_service.delete(cache_key)

        token_set = await self.oauth_provider.exchange_code(code)
        if not token_set.refresh_token:
            raise ProviderError(
                status_code=0,
                message="리프레시 토큰이 발급되지 않았습니다 (offline_access 권한 확인)",
            )

        tenant_id = token_set.tenant_id or self.default_tenant_id
        credential = Credential(
            business_id=business_id,
            tenant_id=tenant_id,
            client_id=self.client_id,
            access_token=await self.encryption_service.encrypt(token_set.access_token),
            refresh_token=await self.encryption_service.encrypt(token_set.refresh_token),
            token_expires_at=token_set.expires_at,
            scopes=token_set.scopes,
        )

        saved = await self.credential_repository.upsert(credential)
        self.logger.info(
            f"자격 증명 연결 완료: business={business_id}, tenant={tenant_id}",
            credential_id=saved.id,
        )
        return saved

    async def disconnect(self, credential_id: UUID) -> None:
        """자격 증명을 비활성화합니다. 연결된 메일박스는 다음 동기화에서 중단됩니다."""
        await self.credential_repository.deactivate(credential_id)
        self.logger.info("자격 증명 비활성화", credential_id=credential_id)
