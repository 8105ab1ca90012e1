"""
Microsoft Graph 응답/요청 구조체

공급자 엔드포인트별 페이로드를 명시적인 Pydantic 모델로 정의합니다.
역직렬화 경계에서 검증하며, 형식이 맞지 않는 응답은 ProviderError로 처리합니다.
"""

from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .exceptions import ProviderError


class GraphModel(BaseModel):
    """Graph 페이로드 공통 설정 (camelCase 별칭, 알 수 없는 필드 무시)"""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GraphEmailAddress(GraphModel):
    address: Optional[str] = None
    name: Optional[str] = None


class GraphRecipient(GraphModel):
    email_address: GraphEmailAddress = Field(default_factory=GraphEmailAddress, alias="emailAddress")


class GraphItemBody(GraphModel):
    content_type: str = Field(default="text", alias="contentType")
    content: Optional[str] = None


class GraphMessage(GraphModel):
    """메시지 리소스"""

    id: str
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    subject: Optional[str] = None
    body_preview: Optional[str] = Field(None, alias="bodyPreview")
    body: Optional[GraphItemBody] = None
    from_: Optional[GraphRecipient] = Field(None, alias="from")
    to_recipients: List[GraphRecipient] = Field(default_factory=list, alias="toRecipients")
    cc_recipients: List[GraphRecipient] = Field(default_factory=list, alias="ccRecipients")
    has_attachments: bool = Field(default=False, alias="hasAttachments")
    sent_date_time: Optional[str] = Field(None, alias="sentDateTime")
    received_date_time: Optional[str] = Field(None, alias="receivedDateTime")
    is_read: Optional[bool] = Field(None, alias="isRead")
    is_draft: Optional[bool] = Field(None, alias="isDraft")
    internet_message_id: Optional[str] = Field(None, alias="internetMessageId")
    parent_folder_id: Optional[str] = Field(None, alias="parentFolderId")


class GraphMailFolder(GraphModel):
    """메일 폴더 리소스"""

    id: str
    display_name: str = Field(..., alias="displayName")
    parent_folder_id: Optional[str] = Field(None, alias="parentFolderId")
    child_folder_count: int = Field(default=0, alias="childFolderCount")
    unread_item_count: int = Field(default=0, alias="unreadItemCount")
    total_item_count: int = Field(default=0, alias="totalItemCount")


class GraphSubscription(GraphModel):
    """웹훅 구독 리소스"""

    id: str
    resource: str
    change_type: str = Field(..., alias="changeType")
    notification_url: Optional[str] = Field(None, alias="notificationUrl")
    expiration_date_time: str = Field(..., alias="expirationDateTime")
    client_state: Optional[str] = Field(None, alias="clientState")


class GraphSubscriptionRequest(GraphModel):
    """웹훅 구독 생성 요청"""

    change_type: str = Field(..., alias="changeType")
    notification_url: str = Field(..., alias="notificationUrl")
    resource: str
    expiration_date_time: str = Field(..., alias="expirationDateTime")
    client_state: Optional[str] = Field(None, alias="clientState")


class GraphResourceData(GraphModel):
    id: Optional[str] = None
    odata_type: Optional[str] = Field(None, alias="@odata.type")
    odata_id: Optional[str] = Field(None, alias="@odata.id")


class GraphNotification(GraphModel):
    """변경 알림 항목"""

    subscription_id: str = Field(..., alias="subscriptionId")
    change_type: str = Field(..., alias="changeType")
    resource: str = ""
    resource_data: Optional[GraphResourceData] = Field(None, alias="resourceData")
    client_state: Optional[str] = Field(None, alias="clientState")
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    subscription_expiration_date_time: Optional[str] = Field(
        None, alias="subscriptionExpirationDateTime"
    )


class GraphNotificationPayload(GraphModel):
    """변경 알림 본문. 항목은 GraphNotification으로 하나씩 검증합니다."""

    value: List[Any] = Field(default_factory=list)


class GraphTokenResponse(GraphModel):
    """토큰 엔드포인트 응답"""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int = 3600
    scope: Optional[str] = None
    token_type: str = "Bearer"


class GraphUserProfile(GraphModel):
    id: Optional[str] = None
    mail: Optional[str] = None
    user_principal_name: Optional[str] = Field(None, alias="userPrincipalName")


T = TypeVar("T", bound=BaseModel)


def parse_graph(model: Type[T], payload: object) -> T:
    """Graph 응답을 모델로 검증합니다. 실패하면 ProviderError를 발생시킵니다."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise ProviderError(
            status_code=0,
            message=f"{model.__name__} 응답 형식 오류: {e.error_count()}개 필드",
        ) from e
