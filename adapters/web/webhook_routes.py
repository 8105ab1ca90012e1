"""
FastAPI 웹훅 라우터

Microsoft Graph 변경 알림 엔드포인트입니다.
- 구독 검증 요청(validationToken)은 토큰을 그대로 평문으로 돌려줍니다.
- 알림은 항상 202로 즉시 응답하고 실제 처리는 백그라운드에서 수행합니다.
"""

from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Query, Request, Response
from fastapi.responses import PlainTextResponse

from core.domain.exceptions import NotificationProcessingFailed, ProviderError
from core.domain.graph_types import GraphNotification
from core.usecases.webhook_ingestion import parse_notifications
from adapters.db.database import get_database_adapter
from adapters.factory import get_adapter_factory
from adapters.logger import create_logger

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = create_logger("webhook_router")


async def process_notifications_in_background(notifications: List[GraphNotification]) -> None:
    """응답과 분리된 자체 DB 세션으로 알림을 처리합니다."""
    factory = get_adapter_factory()
    async with get_database_adapter().get_session() as session:
        usecase = factory.create_webhook_usecase(session)
        processed = await usecase.process_notifications(notifications)

    logger.info(f"웹훅 알림 처리 완료: {processed}/{len(notifications)}")


@router.get("/notifications")
async def validate_subscription(
    validation_token: Optional[str] = Query(None, alias="validationToken"),
):
    """구독 생성 시 Graph가 보내는 검증 요청에 응답합니다."""
    if validation_token is None:
        return Response(status_code=400)
    return PlainTextResponse(content=validation_token, status_code=200)


@router.post("/notifications")
async def receive_notifications(
    request: Request,
    background_tasks: BackgroundTasks,
    validation_token: Optional[str] = Query(None, alias="validationToken"),
):
    """변경 알림을 수신합니다. 본문 형식과 관계없이 202를 반환합니다."""
    if validation_token is not None:
        return PlainTextResponse(content=validation_token, status_code=200)

    failure_tracker = get_adapter_factory().create_failure_tracker()
    try:
        notifications = parse_notifications(await request.json(), failure_tracker)
    except (ValueError, ProviderError) as e:
        # 잘못된 본문도 공급자의 재전송을 막기 위해 수락으로 응답
        failure_tracker.record(NotificationProcessingFailed(None, e))
        return Response(status_code=202)

    if notifications:
        background_tasks.add_task(process_notifications_in_background, notifications)

    return Response(status_code=202)
