"""
웹훅 수신 유즈케이스

Microsoft Graph 변경 알림을 처리합니다.
- created: 메시지를 조회하여 없을 때만 저장
- deleted: 로컬 메일 삭제
- updated: 처리하지 않음

개별 알림 처리 오류는 호출자에게 전파하지 않고 NotificationFailureTracker에 기록합니다.
"""

import re
from collections import defaultdict
from typing import Dict, List, Optional

from ..domain.entities import NotificationChangeType
from ..domain.exceptions import NotificationProcessingFailed, ProviderError
from ..domain.graph_types import GraphNotification, GraphNotificationPayload, parse_graph
from ..domain.ports import EmailRepositoryPort, LoggerPort, MailboxRepositoryPort
from .auto_linker import AutoLinker
from .mail_sync import MailProviderFactory, MessageImporter


_RESOURCE_MESSAGE_ID = re.compile(r"Messages/([^/]+)", re.IGNORECASE)


def extract_message_id(notification: GraphNotification) -> Optional[str]:
    """resource 경로(Messages/{id}) 또는 resourceData.id에서 메시지 ID를 꺼냅니다."""
    match = _RESOURCE_MESSAGE_ID.search(notification.resource or "")
    if match:
        return match.group(1)
    if notification.resource_data and notification.resource_data.id:
        return notification.resource_data.id
    return None


class NotificationFailureTracker:
    """처리하지 못한 알림을 기록하는 단일 로그 지점 (구독 ID별 실패 횟수 유지)"""

    def __init__(self, logger: LoggerPort):
        self.logger = logger
        self._failures: Dict[str, int] = defaultdict(int)

    def record(self, failure: NotificationProcessingFailed) -> None:
        key = failure.subscription_id or "unknown"
        self._failures[key] += 1
        self.logger.error(
            str(failure),
            subscription_id=key,
            cause=type(failure.cause).__name__,
            failure_count=self._failures[key],
        )

    def failure_count(self, subscription_id: str) -> int:
        return self._failures.get(subscription_id, 0)

    def snapshot(self) -> Dict[str, int]:
        return dict(self._failures)


def parse_notifications(
    payload: object,
    failure_tracker: Optional[NotificationFailureTracker] = None,
) -> List[GraphNotification]:
    """
    알림 본문을 항목별로 검증합니다.

    Args:
        payload: 요청 본문 ({"value": [...]})
        failure_tracker: 형식이 잘못된 항목을 기록할 곳. 없으면 첫 오류를 그대로 발생시킵니다.

    Returns:
        검증된 알림 목록 (잘못된 항목은 제외)

    Raises:
        ProviderError: 본문 자체가 value 목록을 가진 객체가 아닌 경우
    """
    entries = parse_graph(GraphNotificationPayload, payload).value
    notifications: List[GraphNotification] = []

    for entry in entries:
        try:
            notifications.append(parse_graph(GraphNotification, entry))
        except ProviderError as e:
            if failure_tracker is None:
                raise
            subscription_id = entry.get("subscriptionId") if isinstance(entry, dict) else None
            failure_tracker.record(
                NotificationProcessingFailed(
                    subscription_id if isinstance(subscription_id, str) else None, e
                )
            )

    return notifications


class WebhookIngestionUseCase:
    """웹훅 알림 처리 유즈케이스"""

    def __init__(
        self,
        mailbox_repository: MailboxRepositoryPort,
        email_repository: EmailRepositoryPort,
        auto_linker: AutoLinker,
        mail_provider_factory: MailProviderFactory,
        failure_tracker: NotificationFailureTracker,
        logger: LoggerPort,
        client_state: Optional[str] = None,
    ):
        self.mailbox_repository = mailbox_repository
        self.email_repository = email_repository
        self.mail_provider_factory = mail_provider_factory
        self.failure_tracker = failure_tracker
        self.logger = logger
        self.client_state = client_state
        self.importer = MessageImporter(email_repository, auto_linker, logger)

    async def process_notifications(self, notifications: List[GraphNotification]) -> int:
        """
        알림 목록을 순서대로 처리합니다. 재시도는 하지 않습니다.

        Args:
            notifications: 검증된 알림 목록

        Returns:
            오류 없이 처리된 알림 수
        """
        processed = 0

        for notification in notifications:
            try:
                await self._process(notification)
                processed += 1
            except Exception as e:
                # 알림 하나의 실패가 나머지 처리나 응답에 영향을 주지 않도록 기록만 함
                self.failure_tracker.record(
                    NotificationProcessingFailed(notification.subscription_id, e)
                )

        return processed

    async def _process(self, notification: GraphNotification) -> None:
        if self.client_state and notification.client_state != self.client_state:
            raise ValueError("clientState가 일치하지 않습니다")

        mailbox = await self.mailbox_repository.get_by_subscription_id(notification.subscription_id)
        if mailbox is None:
            self.logger.warning(
                "구독에 해당하는 메일박스가 없습니다",
                subscription_id=notification.subscription_id,
            )
            return

        message_id = extract_message_id(notification)
        if not message_id:
            raise ProviderError(status_code=0, message=f"알림에서 메시지 ID를 찾을 수 없습니다: {notification.resource}")

        change_type = notification.change_type.lower()

        if change_type == NotificationChangeType.CREATED.value:
            provider = self.mail_provider_factory(mailbox)
            message = await provider.get_message(message_id)
            created = await self.importer.import_message(mailbox, message)
            self.logger.info(
                "알림 메시지 저장" if created else "이미 저장된 알림 메시지",
                mailbox_id=mailbox.id,
                provider_message_id=message_id,
            )

        elif change_type == NotificationChangeType.DELETED.value:
            deleted = await self.email_repository.delete_by_provider_id(message_id)
            self.logger.info(
                f"알림으로 메일 삭제: {deleted}건",
                mailbox_id=mailbox.id,
                provider_message_id=message_id,
            )

        else:
            self.logger.debug(f"처리하지 않는 변경 타입: {change_type}", mailbox_id=mailbox.id)
