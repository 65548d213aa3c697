"""
At-rest encryption for conversation content.
"""

from cryptography.fernet import Fernet, InvalidToken

from ..utils.logging import get_logger

logger = get_logger(__name__)


class FieldCipher:
    """
    Symmetric cipher for individual text columns.

    Without a key it is a pass-through. Rows written before a key was
    configured (or with another key) decrypt to themselves, so mixed
    plaintext/ciphertext tables stay readable.
    """

    def __init__(self, key: str | None = None):
        self._fernet = Fernet(key.encode("utf-8")) if key else None

    @property
    def enabled(self) -> bool:
        return self._fernet is not None

    def encrypt(self, text: str) -> str:
        if self._fernet is None:
            return text
        return self._fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt(self, text: str) -> str:
        if self._fernet is None:
            return text
        try:
            return self._fernet.decrypt(text.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            logger.debug("decrypt_passthrough", length=len(text))
            return text

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")
