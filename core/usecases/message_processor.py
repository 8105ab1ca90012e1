"""
메시지 처리기

공급자 메시지를 CRM 저장용 정규화 메일로 변환합니다.
I/O가 없는 순수 함수이며 같은 입력에는 항상 같은 결과를 반환합니다.
"""

import re
from datetime import datetime
from typing import List, Optional, Union

from bs4 import BeautifulSoup

from ..domain.entities import EmailDirection, NormalizedEmail, ensure_utc
from ..domain.exceptions import ProviderError
from ..domain.graph_types import GraphMessage, GraphRecipient, parse_graph


PREVIEW_MAX_LENGTH = 280

_WHITESPACE = re.compile(r"\s+")
# Graph의 소수점 이하 자릿수는 일정하지 않으므로 6자리로 맞춰서 파싱
_FRACTION = re.compile(r"\.(\d+)")


def html_to_text(html_content: str) -> str:
    """HTML에서 스크립트/스타일을 제거하고 텍스트만 추출합니다."""
    soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    return soup.get_text(separator=" ")


def build_preview(
    body_preview: Optional[str],
    body_content: Optional[str],
    content_type: str,
) -> Optional[str]:
    """미리보기 문자열을 만듭니다. 공백을 정리하고 280자로 자릅니다."""
    if body_preview:
        text = body_preview
    elif body_content:
        text = html_to_text(body_content) if content_type.lower() == "html" else body_content
    else:
        return None

    text = _WHITESPACE.sub(" ", text).strip()
    if not text:
        return None
    return text[:PREVIEW_MAX_LENGTH]


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Graph 타임스탬프를 UTC datetime으로 변환합니다. 시간대가 없으면 UTC로 간주합니다."""
    if not value:
        return None

    normalized = _FRACTION.sub(
        lambda match: "." + match.group(1)[:6].ljust(6, "0"),
        value.replace("Z", "+00:00"),
    )
    try:
        return ensure_utc(datetime.fromisoformat(normalized))
    except ValueError as e:
        raise ProviderError(status_code=0, message=f"잘못된 타임스탬프: {value}") from e


def _addresses(recipients: List[GraphRecipient]) -> List[str]:
    return [
        recipient.email_address.address
        for recipient in recipients
        if recipient.email_address.address
    ]


def process_message(
    raw_message: Union[GraphMessage, dict],
    mailbox_address: str,
) -> NormalizedEmail:
    """
    공급자 메시지를 정규화합니다.

    Args:
        raw_message: GraphMessage 또는 검증 전 메시지 dict
        mailbox_address: 동기화 중인 메일박스 주소 (방향 판단 기준)

    Returns:
        NormalizedEmail

    Raises:
        ProviderError: 메시지 형식이 잘못된 경우
    """
    message = raw_message if isinstance(raw_message, GraphMessage) else parse_graph(GraphMessage, raw_message)

    sender = message.from_.email_address if message.from_ else None
    from_address = (sender.address if sender else None) or ""
    from_name = sender.name if sender else None

    is_outbound = from_address.strip().lower() == mailbox_address.strip().lower()

    body = message.body
    content_type = body.content_type if body else "text"
    body_content = body.content if body else None

    return NormalizedEmail(
        provider_message_id=message.id,
        provider_conversation_id=message.conversation_id,
        direction=EmailDirection.OUTBOUND if is_outbound else EmailDirection.INBOUND,
        subject=message.subject or "",
        body_preview=build_preview(message.body_preview, body_content, content_type),
        body_html=body_content if content_type.lower() == "html" else None,
        from_address=from_address,
        from_name=from_name or None,
        to_addresses=_addresses(message.to_recipients),
        cc_addresses=_addresses(message.cc_recipients),
        sent_at=parse_timestamp(message.sent_date_time),
        received_at=parse_timestamp(message.received_date_time),
        has_attachments=message.has_attachments,
    )
