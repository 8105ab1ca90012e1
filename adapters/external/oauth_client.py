"""
Microsoft OAuth 클라이언트 어댑터

Microsoft ID 플랫폼 토큰 엔드포인트와 통신합니다.
인증 코드 플로우(authorization code)와 리프레시 토큰 갱신만 지원합니다.
"""

import base64
import json
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from urllib.parse import urlencode

import httpx

from core.domain.entities import TokenSet, now_utc
from core.domain.exceptions import ProviderError
from core.domain.graph_types import GraphTokenResponse, parse_graph
from core.domain.ports import LoggerPort, OAuthProviderPort


AUTHORITY_URL = "https://login.microsoftonline.com"

SHARED_MAILBOX_SCOPES = [
    "Mail.Read.Shared",
    "Mail.ReadWrite.Shared",
    "Mail.Send.Shared",
]


def decode_tenant_id(token: Optional[str]) -> Optional[str]:
    """JWT 페이로드의 tid 클레임을 읽습니다. 서명은 검증하지 않습니다."""
    if not token or token.count(".") < 2:
        return None

    payload_segment = token.split(".")[1]
    padded = payload_segment + "=" * (-len(payload_segment) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(padded.encode()))
    except (ValueError, json.JSONDecodeError):
        return None

    if not isinstance(claims, dict):
        return None
    return claims.get("tid")


class MicrosoftOAuthClient(OAuthProviderPort):
    """Microsoft OAuth 2.0 클라이언트 어댑터"""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        tenant_id: str,
        redirect_uri: str,
        scopes: List[str],
        logger: LoggerPort,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.tenant_id = tenant_id
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self.logger = logger
        self.timeout = timeout
        self.transport = transport
        self.clock = clock

    @property
    def token_url(self) -> str:
        return f"{AUTHORITY_URL}/{self.tenant_id}/oauth2/v2.0/token"

    def get_authorization_url(self, state: str, shared_mailbox: bool = False) -> str:
        """인증 URL을 생성합니다. 모든 권한 범위가 부여되도록 동의 화면을 강제합니다."""
        scopes = SHARED_MAILBOX_SCOPES + self.scopes if shared_mailbox else self.scopes

        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "response_mode": "query",
            "scope": " ".join(scopes),
            "state": state,
            "prompt": "consent",
        }

        return f"{AUTHORITY_URL}/{self.tenant_id}/oauth2/v2.0/authorize?{urlencode(params)}"

    async def _post_token(self, data: dict, operation: str) -> GraphTokenResponse:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    self.token_url,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.HTTPError as e:
            self.logger.error(f"{operation} 통신 실패: {type(e).__name__}")
            raise ProviderError(status_code=0, message=str(e) or type(e).__name__) from e

        if response.status_code != 200:
            try:
                error = response.json()
                message = error.get("error_description") or error.get("error") or response.text
            except ValueError:
                message = response.text
            self.logger.error(f"{operation} 실패: {response.status_code}")
            raise ProviderError(status_code=response.status_code, message=message)

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(status_code=response.status_code, message="JSON이 아닌 토큰 응답") from e

        return parse_graph(GraphTokenResponse, payload)

    def _to_token_set(self, token: GraphTokenResponse, fallback_refresh_token: Optional[str] = None) -> TokenSet:
        return TokenSet(
            access_token=token.access_token,
            refresh_token=token.refresh_token or fallback_refresh_token,
            expires_at=self.clock() + timedelta(seconds=token.expires_in),
            scopes=token.scope.split(" ") if token.scope else [],
            tenant_id=decode_tenant_id(token.access_token),
        )

    async def exchange_code(self, code: str) -> TokenSet:
        """인증 코드를 토큰으로 교환합니다."""
        self.logger.debug(f"토큰 교환: client_id={self.client_id}, tenant_id={self.tenant_id}")

        token = await self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
            "토큰 교환",
        )

        self.logger.debug("토큰 교환 성공")
        return self._to_token_set(token)

    async def refresh(self, refresh_token: str) -> TokenSet:
        """리프레시 토큰으로 토큰을 갱신합니다. 새 리프레시 토큰이 없으면 기존 값을 유지합니다."""
        self.logger.debug(f"토큰 갱신: client_id={self.client_id}, tenant_id={self.tenant_id}")

        token = await self._post_token(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            },
            "토큰 갱신",
        )

        self.logger.debug("토큰 갱신 성공")
        return self._to_token_set(token, fallback_refresh_token=refresh_token)
