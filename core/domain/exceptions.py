"""
도메인 예외 정의

토큰 수명 주기, API 클라이언트, 동기화 엔진, 웹훅 수신기에서 사용하는
예외 계층입니다.
"""

from typing import Optional


class MailSyncError(Exception):
    """메일 동기화 예외 기본 클래스"""


# 토큰 수명 주기

class CredentialNotFound(MailSyncError):
    def __init__(self, credential_id):
        self.credential_id = credential_id
        super().__init__(f"자격 증명을 찾을 수 없습니다: {credential_id}")


class CredentialInactive(MailSyncError):
    def __init__(self, credential_id):
        self.credential_id = credential_id
        super().__init__(f"비활성화된 자격 증명입니다: {credential_id}")


class RefreshFailed(MailSyncError):
    """토큰 갱신 실패. 공급자 오류를 함께 보관합니다."""

    def __init__(self, credential_id, provider_error: Exception):
        self.credential_id = credential_id
        self.provider_error = provider_error
        super().__init__(f"토큰 갱신 실패: {credential_id} - {provider_error}")


class TokenDecryptionError(MailSyncError):
    """저장된 토큰을 복호화할 수 없음"""


# API 클라이언트

class ProviderError(MailSyncError):
    """공급자가 2xx 이외의 응답 또는 잘못된 형식의 응답을 반환함"""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Graph API 오류 ({status_code}): {message}")


class AuthenticationFailed(MailSyncError):
    """토큰 재발급 후 재시도에서도 401이 반환됨"""


# 동기화 엔진

class FolderSyncFailed(MailSyncError):
    """단일 폴더 동기화 실패 (다른 폴더는 계속 진행)"""

    def __init__(self, folder: str, cause: Exception):
        self.folder = folder
        self.cause = cause
        super().__init__(f"폴더 동기화 실패: {folder} - {cause}")


class MailboxSyncAborted(MailSyncError):
    """자격 증명 문제로 메일박스 전체 동기화 중단"""

    def __init__(self, mailbox_id, cause: Exception):
        self.mailbox_id = mailbox_id
        self.cause = cause
        super().__init__(f"메일박스 동기화 중단: {mailbox_id} - {cause}")


class MailboxNotFound(MailSyncError):
    def __init__(self, mailbox_id):
        self.mailbox_id = mailbox_id
        super().__init__(f"메일박스를 찾을 수 없습니다: {mailbox_id}")


class DuplicateMailbox(MailSyncError):
    def __init__(self, mailbox_address: str):
        self.mailbox_address = mailbox_address
        super().__init__(f"이미 등록된 메일박스입니다: {mailbox_address}")


# 웹훅 / 수동 연결 / 인증

class NotificationProcessingFailed(MailSyncError):
    """개별 알림 처리 실패 (로그만 남기고 호출자에게 전파하지 않음)"""

    def __init__(self, subscription_id: Optional[str], cause: Exception):
        self.subscription_id = subscription_id
        self.cause = cause
        super().__init__(f"알림 처리 실패: subscription={subscription_id} - {cause}")


class EmailNotFound(MailSyncError):
    def __init__(self, email_id):
        self.email_id = email_id
        super().__init__(f"메일을 찾을 수 없습니다: {email_id}")


class InvalidLinkTarget(MailSyncError):
    """수동 연결 대상이 없거나 다른 비즈니스 소속임"""


class InvalidOAuthState(MailSyncError):
    """유효하지 않거나 만료된 OAuth state"""
