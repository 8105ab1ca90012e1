"""
Microsoft Graph API 클라이언트 어댑터

자격 증명 하나에 묶인 인증된 Graph 전송 계층입니다.
- Bearer 토큰 주입 (토큰 수명 주기 관리자에서 조회)
- 401 응답 시 토큰 강제 갱신 후 한 번만 재시도
- @odata.nextLink 페이지네이션
- 델타 쿼리 (@removed 항목 분리, 마지막 페이지의 @odata.deltaLink 반환)
"""

from enum import Enum
from typing import AsyncIterator, List, Optional
from uuid import UUID

import httpx

from core.domain.entities import DeltaResult
from core.domain.exceptions import AuthenticationFailed, ProviderError
from core.domain.ports import AccessTokenProviderPort, GraphApiClientPort, LoggerPort


GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"


class RequestAttempt(Enum):
    """요청 시도 상태. FIRST에서 401이면 RETRIED_AFTER_REFRESH로 한 번만 전이합니다."""
    FIRST = "first"
    RETRIED_AFTER_REFRESH = "retried_after_refresh"


class GraphApiClientAdapter(GraphApiClientPort):
    """Microsoft Graph API 클라이언트 어댑터"""

    def __init__(
        self,
        token_provider: AccessTokenProviderPort,
        credential_id: UUID,
        logger: LoggerPort,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        base_url: str = GRAPH_BASE_URL,
    ):
        self.token_provider = token_provider
        self.credential_id = credential_id
        self.logger = logger
        self.timeout = timeout
        self.transport = transport
        self.base_url = base_url.rstrip("/")

    def _build_url(self, endpoint: str) -> str:
        """상대 경로는 Graph 베이스 URL에 붙이고, 절대 URL(next/delta 링크)은 그대로 사용합니다."""
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def _send(
        self,
        method: str,
        url: str,
        access_token: str,
        body: Optional[dict],
        params: Optional[dict],
    ) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.request(method, url, headers=headers, json=body, params=params)
        except httpx.HTTPError as e:
            self.logger.error(f"Graph API 통신 실패: {method} {url} - {type(e).__name__}")
            raise ProviderError(status_code=0, message=str(e) or type(e).__name__) from e

    def _parse_response(self, response: httpx.Response) -> dict:
        """응답을 검사하고 JSON 객체로 변환합니다."""
        if response.is_success and (response.status_code == 204 or not response.content):
            return {}

        if not response.is_success:
            message = response.text
            try:
                payload = response.json()
                message = payload.get("error", {}).get("message") or message
            except (ValueError, AttributeError):
                pass
            raise ProviderError(status_code=response.status_code, message=message)

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(status_code=response.status_code, message="JSON이 아닌 응답") from e

        if not isinstance(payload, dict):
            raise ProviderError(status_code=response.status_code, message="객체가 아닌 JSON 응답")
        return payload

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict:
        """인증된 Graph API 요청을 보냅니다.

        Args:
            endpoint: Graph 상대 경로 또는 절대 URL
            method: HTTP 메서드
            body: JSON 본문
            params: 쿼리 파라미터 (절대 URL에는 이미 포함되어 있으므로 생략)

        Returns:
            dict: 응답 JSON 객체 (204이면 빈 dict)

        Raises:
            AuthenticationFailed: 토큰 갱신 후 재시도에서도 401인 경우
            ProviderError: 그 외 2xx가 아닌 응답 또는 통신 실패
        """
        url = self._build_url(endpoint)
        attempt = RequestAttempt.FIRST
        rejected_token: Optional[str] = None

        while True:
            access_token = await self.token_provider.get_valid_access_token(
                self.credential_id, rejected_token=rejected_token
            )
            response = await self._send(method, url, access_token, body, params)

            if response.status_code != 401:
                return self._parse_response(response)

            if attempt is RequestAttempt.FIRST:
                self.logger.warning(
                    "Graph API 401 응답, 토큰 갱신 후 재시도",
                    credential_id=self.credential_id,
                    method=method,
                )
                attempt = RequestAttempt.RETRIED_AFTER_REFRESH
                rejected_token = access_token
                continue

            self.logger.error("토큰 갱신 후에도 Graph API 401 응답", credential_id=self.credential_id)
            raise AuthenticationFailed(f"Graph API 인증 실패: {method} {endpoint}")

    async def paginate(self, endpoint: str, params: Optional[dict] = None) -> AsyncIterator[List[dict]]:
        """@odata.nextLink를 따라가며 페이지 단위로 항목 목록을 반환합니다."""
        url: Optional[str] = endpoint
        page_params = params

        while url:
            data = await self.request(url, params=page_params)
            items = data.get("value", [])
            if not isinstance(items, list):
                raise ProviderError(status_code=0, message="value가 목록이 아닌 페이지 응답")

            yield items

            url = data.get("@odata.nextLink")
            # nextLink에는 쿼리가 이미 포함되어 있음
            page_params = None

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        max_items: Optional[int] = None,
    ) -> List[dict]:
        """모든 페이지를 하나의 목록으로 수집합니다. max_items에 도달하면 중단합니다."""
        results: List[dict] = []

        async for page in self.paginate(endpoint, params):
            results.extend(page)
            if max_items is not None and len(results) >= max_items:
                return results[:max_items]

        return results

    async def delta_query(self, endpoint: str, delta_token: Optional[str] = None) -> DeltaResult:
        """델타 쿼리를 수행합니다.

        Args:
            endpoint: 델타 엔드포인트 (베이스라인 호출에 사용)
            delta_token: 이전 동기화의 델타 링크. 있으면 그대로 재생합니다.

        Returns:
            DeltaResult: 변경 항목, 삭제된 ID, 새 델타 링크

        Raises:
            ProviderError: 마지막 페이지에 델타 링크가 없는 경우
        """
        url: Optional[str] = delta_token or endpoint
        items: List[dict] = []
        deleted_ids: List[str] = []

        while True:
            data = await self.request(url)

            for item in data.get("value", []):
                if "@removed" in item:
                    if item.get("id"):
                        deleted_ids.append(item["id"])
                else:
                    items.append(item)

            next_link = data.get("@odata.nextLink")
            if next_link:
                url = next_link
                continue

            delta_link = data.get("@odata.deltaLink")
            if not delta_link:
                raise ProviderError(status_code=0, message="델타 응답에 deltaLink가 없습니다")

            self.logger.debug(
                f"델타 쿼리 완료: {len(items)}개 변경, {len(deleted_ids)}개 삭제",
                credential_id=self.credential_id,
            )
            return DeltaResult(items=items, deleted_ids=deleted_ids, delta_link=delta_link)
