"""
암호화 서비스 어댑터

저장되는 OAuth 토큰의 암호화/복호화를 담당하는 어댑터입니다.
Fernet 대칭 암호화를 사용하며, 설정된 키에서 PBKDF2로 Fernet 키를 유도합니다.
"""

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from core.domain.exceptions import TokenDecryptionError
from core.domain.ports import EncryptionServicePort, LoggerPort


class EncryptionServiceAdapter(EncryptionServicePort):
    """암호화 서비스 어댑터"""

    def __init__(self, encryption_key: str, logger: LoggerPort):
        self.logger = logger
        self._fernet = self._create_fernet(encryption_key)

    def _create_fernet(self, password: str) -> Fernet:
        """암호화 키로부터 Fernet 인스턴스를 생성합니다."""
        salt = b"crm_mailsync_token_salt"

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
        )

        key = base64.urlsafe_b64encode(kdf.derive(password.encode()))
        return Fernet(key)

    async def encrypt(self, data: str) -> str:
        """데이터를 암호화합니다."""
        if not data:
            return ""
        return self._fernet.encrypt(data.encode()).decode()

    async def decrypt(self, encrypted_data: str) -> str:
        """암호화된 데이터를 복호화합니다.

        Raises:
            TokenDecryptionError: 키가 다르거나 데이터가 손상된 경우
        """
        if not encrypted_data:
            return ""

        try:
            return self._fernet.decrypt(encrypted_data.encode()).decode()
        except InvalidToken as e:
            self.logger.error("토큰 복호화 실패: 암호화 키가 다르거나 데이터가 손상되었습니다")
            raise TokenDecryptionError("저장된 토큰을 복호화할 수 없습니다") from e

    def verify_key(self, test_data: str = "test_encryption") -> bool:
        """암호화 키가 올바른지 검증합니다."""
        encrypted = self._fernet.encrypt(test_data.encode())
        return self._fernet.decrypt(encrypted).decode() == test_data
