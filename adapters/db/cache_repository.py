"""
데이터베이스 기반 캐시 Repository 어댑터

Redis 대신 데이터베이스를 사용하여 캐시 기능을 제공합니다.
OAuth 인증 state(비즈니스 ID 바인딩) 저장에 사용됩니다.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy import and_, delete, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.domain.entities import now_utc
from core.domain.ports import CacheServicePort, LoggerPort
from .models import CacheModel


class DatabaseCacheServiceAdapter(CacheServicePort):
    """데이터베이스 기반 캐시 서비스 어댑터"""

    def __init__(self, session: AsyncSession, logger: LoggerPort):
        self.session = session
        self.logger = logger

    async def get(self, key: str) -> Optional[str]:
        """캐시에서 값을 조회합니다. 만료된 값은 없는 것으로 취급합니다."""
        stmt = select(CacheModel).where(
            and_(
                CacheModel.key == key,
                or_(CacheModel.expires_at.is_(None), CacheModel.expires_at > now_utc()),
            )
        )
        result = await self.session.execute(stmt)
        cache_model = result.scalar_one_or_none()

        if cache_model:
            self.logger.debug(f"캐시 조회 성공: {key}")
            return cache_model.value

        self.logger.debug(f"캐시 키 없음 또는 만료: {key}")
        await self._cleanup_expired()
        return None

    async def set(self, key: str, value: str, expire: Optional[int] = None) -> bool:
        """캐시에 값을 저장합니다."""
        expires_at = now_utc() + timedelta(seconds=expire) if expire else None

        try:
            stmt = select(CacheModel).where(CacheModel.key == key)
            result = await self.session.execute(stmt)
            existing_cache = result.scalar_one_or_none()

            if existing_cache:
                existing_cache.value = value
                existing_cache.expires_at = expires_at
            else:
                self.session.add(CacheModel(key=key, value=value, expires_at=expires_at))

            await self.session.commit()

        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"캐시 저장 실패: {key}, 오류: {str(e)}")
            return False

        self.logger.debug(f"캐시 저장 성공: {key}, 만료시간: {expire}초")
        return True

    async def delete(self, key: str) -> bool:
        """캐시에서 값을 삭제합니다."""
        result = await self.session.execute(delete(CacheModel).where(CacheModel.key == key))
        await self.session.commit()
        return result.rowcount > 0

    async def _cleanup_expired(self) -> None:
        """만료된 캐시를 정리합니다."""
        result = await self.session.execute(
            delete(CacheModel).where(CacheModel.expires_at <= now_utc())
        )
        await self.session.commit()

        if result.rowcount > 0:
            self.logger.debug(f"만료된 캐시 {result.rowcount}개 삭제")
