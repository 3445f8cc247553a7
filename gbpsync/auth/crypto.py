"""
Encryption of OAuth tokens at rest.
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class TokenCipher:
    """
    Fernet wrapper used by the credential store.

    Accepts either a real Fernet key or any passphrase, which is stretched
    into a key with SHA-256. Without a key an ephemeral one is generated and
    stored tokens will not survive a restart.
    """

    def __init__(self, key: Optional[str] = None):
        self._cipher = Fernet(self._derive_key(key))

    @staticmethod
    def _derive_key(key: Optional[str]) -> bytes:
        if not key:
            logger.warning(
                "TOKEN_ENCRYPTION_KEY not set. "
                "Using ephemeral key - stored tokens will be unreadable after restart."
            )
            return Fernet.generate_key()

        # Fernet keys are 44 chars of urlsafe base64
        if len(key) != 44:
            return base64.urlsafe_b64encode(hashlib.sha256(key.encode()).digest())
        return key.encode()

    def encrypt(self, value: Optional[str]) -> Optional[str]:
        """Encrypt a token; ``None`` stays ``None``."""
        if value is None:
            return None
        return self._cipher.encrypt(value.encode()).decode()

    def decrypt(self, value: Optional[str]) -> Optional[str]:
        """Decrypt a stored token; ``None`` stays ``None``."""
        if value is None:
            return None
        try:
            return self._cipher.decrypt(value.encode()).decode()
        except InvalidToken as e:
            raise ConfigurationError(
                message="Stored token could not be decrypted; check TOKEN_ENCRYPTION_KEY",
                error_code="TOKEN_DECRYPT_FAILED",
                cause=e,
            )
