"""
외부 서비스 어댑터 패키지

Microsoft Graph API, OAuth 토큰 엔드포인트, 토큰 암호화 등
외부 서비스와의 통신을 담당하는 어댑터들을 포함합니다.
"""

from .encryption_service import EncryptionServiceAdapter
from .graph_api_client import GraphApiClientAdapter, RequestAttempt
from .graph_mail_service import GraphMailService
from .oauth_client import MicrosoftOAuthClient

__all__ = [
    "EncryptionServiceAdapter",
    "GraphApiClientAdapter",
    "GraphMailService",
    "MicrosoftOAuthClient",
    "RequestAttempt",
]
