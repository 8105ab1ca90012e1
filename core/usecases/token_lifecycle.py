"""
토큰 수명 주기 유즈케이스

저장된 자격 증명에서 유효한 액세스 토큰을 꺼내고, 만료가 임박했거나
공급자가 토큰을 거부한 경우 리프레시 토큰으로 갱신합니다.
갱신은 자격 증명 단위 잠금으로 직렬화되어 동시 호출에도 한 번만 수행됩니다.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
from uuid import UUID

from ..domain.entities import Credential, now_utc
from ..domain.exceptions import (
    CredentialInactive,
    CredentialNotFound,
    ProviderError,
    RefreshFailed,
    TokenDecryptionError,
)
from ..domain.ports import (
    AccessTokenProviderPort,
    CredentialRepositoryPort,
    EncryptionServicePort,
    LoggerPort,
    OAuthProviderPort,
)


class TokenLockTable:
    """자격 증명 ID별 asyncio.Lock 보관소 (프로세스 전역 상태 대신 주입해서 공유)"""

    def __init__(self):
        self._locks: Dict[UUID, asyncio.Lock] = {}

    def lock_for(self, credential_id: UUID) -> asyncio.Lock:
        lock = self._locks.get(credential_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[credential_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)


class TokenLifecycleManager(AccessTokenProviderPort):
    """토큰 수명 주기 관리자"""

    def __init__(
        self,
        credential_repository: CredentialRepositoryPort,
        oauth_provider: OAuthProviderPort,
        encryption_service: EncryptionServicePort,
        lock_table: TokenLockTable,
        logger: LoggerPort,
        refresh_margin: timedelta = timedelta(seconds=120),
        clock: Callable[[], datetime] = now_utc,
    ):
        self.credential_repository = credential_repository
        self.oauth_provider = oauth_provider
        self.encryption_service = encryption_service
        self.lock_table = lock_table
        self.logger = logger
        self.refresh_margin = refresh_margin
        self.clock = clock

    async def get_valid_access_token(
        self,
        credential_id: UUID,
        rejected_token: Optional[str] = None,
    ) -> str:
        """
        유효한 평문 액세스 토큰을 반환합니다.

        Args:
            credential_id: 자격 증명 ID
            rejected_token: 공급자가 방금 거부한 액세스 토큰. 현재 저장된 토큰과 같으면
                만료 시간과 관계없이 갱신합니다.

        Returns:
            평문 액세스 토큰

        Raises:
            CredentialNotFound: 자격 증명이 없는 경우
            CredentialInactive: 비활성화된 자격 증명인 경우
            RefreshFailed: 갱신에 실패한 경우 (자격 증명은 비활성화됨)
        """
        credential = await self._load(credential_id)
        access_token = await self.encryption_service.decrypt(credential.access_token)

        if not self._needs_refresh(credential, access_token, rejected_token):
            return access_token

        async with self.lock_table.lock_for(credential_id):
            # 잠금을 기다리는 동안 다른 호출이 이미 갱신했을 수 있음
            credential = await self._load(credential_id)
            access_token = await self.encryption_service.decrypt(credential.access_token)

            if not self._needs_refresh(credential, access_token, rejected_token):
                self.logger.debug("다른 호출에서 갱신된 토큰 재사용", credential_id=credential_id)
                return access_token

            return await self._refresh(credential)

    async def _load(self, credential_id: UUID) -> Credential:
        credential = await self.credential_repository.get_by_id(credential_id)
        if credential is None:
            raise CredentialNotFound(credential_id)
        if not credential.is_active:
            raise CredentialInactive(credential_id)
        return credential

    def _needs_refresh(
        self,
        credential: Credential,
        access_token: str,
        rejected_token: Optional[str],
    ) -> bool:
        if rejected_token is not None and rejected_token == access_token:
            return True
        return credential.is_near_expiry(self.refresh_margin, self.clock())

    async def _refresh(self, credential: Credential) -> str:
        """리프레시 토큰으로 갱신하고 암호화해서 저장합니다."""
        self.logger.info("액세스 토큰 갱신 시작", credential_id=credential.id)

        try:
            refresh_token = await self.encryption_service.decrypt(credential.refresh_token)
            token_set = await self.oauth_provider.refresh(refresh_token)
        except (ProviderError, TokenDecryptionError) as e:
            await self.credential_repository.deactivate(credential.id)
            self.logger.error(
                f"토큰 갱신 실패, 자격 증명 비활성화: {e}",
                credential_id=credential.id,
            )
            raise RefreshFailed(credential.id, e) from e

        await self.credential_repository.update_tokens(
            credential.id,
            access_token=await self.encryption_service.encrypt(token_set.access_token),
            refresh_token=await self.encryption_service.encrypt(token_set.refresh_token or refresh_token),
            token_expires_at=token_set.expires_at,
            scopes=token_set.scopes or credential.scopes,
        )

        self.logger.info(
            f"액세스 토큰 갱신 완료, 만료: {token_set.expires_at.isoformat()}",
            credential_id=credential.id,
        )
        return token_set.access_token
