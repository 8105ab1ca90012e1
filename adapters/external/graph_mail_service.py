"""
Graph 메일 서비스 어댑터

메일박스 하나에 대한 폴더/메시지/델타/구독 작업을 GraphApiClientPort 위에 구현합니다.
응답은 graph_types의 Pydantic 구조체로 검증합니다.
"""

from datetime import datetime
from typing import List, Optional
from urllib.parse import urlencode

from core.domain.entities import DeltaResult, ensure_utc
from core.domain.graph_types import (
    GraphMailFolder,
    GraphMessage,
    GraphSubscription,
    GraphSubscriptionRequest,
    parse_graph,
)
from core.domain.ports import GraphApiClientPort, LoggerPort, MailProviderPort


FOLDER_FIELDS = "id,displayName,parentFolderId,childFolderCount,unreadItemCount,totalItemCount"
MESSAGE_FIELDS = (
    "id,conversationId,subject,bodyPreview,body,from,toRecipients,ccRecipients,"
    "hasAttachments,sentDateTime,receivedDateTime,isRead,isDraft,internetMessageId,parentFolderId"
)
SUBSCRIPTION_CHANGE_TYPES = "created,updated,deleted"

# Graph 목록 API의 $top 상한
MAX_PAGE_SIZE = 100


def format_graph_datetime(value: datetime) -> str:
    """Graph가 받는 ISO 8601 UTC 문자열로 변환합니다."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def format_filter_datetime(value: datetime) -> str:
    """$filter 비교용 UTC 문자열. 초 미만은 버리므로 ge 비교 범위가 줄지 않습니다."""
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


class GraphMailService(MailProviderPort):
    """메일박스 단위 Graph 메일 서비스"""

    def __init__(self, client: GraphApiClientPort, mailbox_address: str, logger: LoggerPort):
        self.client = client
        self.mailbox_address = mailbox_address
        self.logger = logger

    @property
    def user_path(self) -> str:
        return f"/users/{self.mailbox_address}"

    async def list_folders(self) -> List[GraphMailFolder]:
        """메일 폴더 목록을 조회합니다."""
        items = await self.client.get_all_pages(
            f"{self.user_path}/mailFolders",
            params={"$select": FOLDER_FIELDS, "$top": MAX_PAGE_SIZE},
        )
        return [parse_graph(GraphMailFolder, item) for item in items]

    async def list_recent_messages(
        self,
        folder_id: str,
        top: int,
        fields: Optional[List[str]] = None,
    ) -> List[GraphMessage]:
        """폴더의 최근 메시지를 수신 시간 역순으로 최대 top개 조회합니다."""
        items = await self.client.get_all_pages(
            f"{self.user_path}/mailFolders/{folder_id}/messages",
            params={
                "$select": ",".join(fields) if fields else MESSAGE_FIELDS,
                "$orderby": "receivedDateTime desc",
                "$top": min(top, MAX_PAGE_SIZE),
            },
            max_items=top,
        )
        return [parse_graph(GraphMessage, item) for item in items]

    async def get_message(self, message_id: str) -> GraphMessage:
        """단일 메시지를 조회합니다."""
        payload = await self.client.request(
            f"{self.user_path}/messages/{message_id}",
            params={"$select": MESSAGE_FIELDS},
        )
        return parse_graph(GraphMessage, payload)

    async def delta_messages(
        self,
        folder_id: str,
        delta_token: Optional[str] = None,
        received_since: Optional[datetime] = None,
    ) -> DeltaResult:
        """
        폴더 메시지 델타를 조회합니다. 항목은 GraphMessage로 검증된 dict로 반환됩니다.

        received_since는 베이스라인 호출에만 적용됩니다. Graph는 필터를 델타 링크에
        담아 두므로 이후 재생에서도 같은 범위가 유지됩니다.
        """
        query = {"$select": MESSAGE_FIELDS}
        if received_since is not None:
            query["$filter"] = f"receivedDateTime ge {format_filter_datetime(received_since)}"
        endpoint = f"{self.user_path}/mailFolders/{folder_id}/messages/delta?{urlencode(query)}"

        result = await self.client.delta_query(endpoint, delta_token)

        # 형식 검증만 수행하고 원본 dict는 유지
        for item in result.items:
            parse_graph(GraphMessage, item)
        return result

    async def create_subscription(
        self,
        notification_url: str,
        expires_at: datetime,
        client_state: Optional[str] = None,
    ) -> GraphSubscription:
        """메일박스 메시지 변경 알림 구독을 생성합니다."""
        request = GraphSubscriptionRequest(
            change_type=SUBSCRIPTION_CHANGE_TYPES,
            notification_url=notification_url,
            resource=f"users/{self.mailbox_address}/messages",
            expiration_date_time=format_graph_datetime(expires_at),
            client_state=client_state,
        )

        payload = await self.client.request(
            "/subscriptions",
            method="POST",
            body=request.model_dump(by_alias=True, exclude_none=True),
        )
        subscription = parse_graph(GraphSubscription, payload)

        self.logger.info(
            f"웹훅 구독 생성: {subscription.id}",
            mailbox=self.mailbox_address,
        )
        return subscription

    async def renew_subscription(self, subscription_id: str, expires_at: datetime) -> GraphSubscription:
        """웹훅 구독 만료 시간을 연장합니다."""
        payload = await self.client.request(
            f"/subscriptions/{subscription_id}",
            method="PATCH",
            body={"expirationDateTime": format_graph_datetime(expires_at)},
        )
        return parse_graph(GraphSubscription, payload)

    async def delete_subscription(self, subscription_id: str) -> bool:
        """웹훅 구독을 삭제합니다."""
        await self.client.request(f"/subscriptions/{subscription_id}", method="DELETE")
        self.logger.info(f"웹훅 구독 삭제: {subscription_id}", mailbox=self.mailbox_address)
        return True
