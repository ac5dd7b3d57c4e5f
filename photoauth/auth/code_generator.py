"""
Opaque artifact generation

Authorization codes, token handles and internal identifiers are all drawn
from the operating system CSPRNG (256 bits) and base64url encoded without
padding. A failing random source is fatal; there is no fallback.
"""

import base64
import logging
import secrets
from typing import Callable

from .errors import EntropySourceUnavailable

logger = logging.getLogger(__name__)

ENTROPY_BYTES = 32


class CodeGenerator:
    """Cryptographically strong, URL-safe artifact generator"""

    def __init__(self,
                 random_source: Callable[[int], bytes] = secrets.token_bytes,
                 entropy_bytes: int = ENTROPY_BYTES):
        """
        Args:
            random_source: Callable returning n secure random bytes
            entropy_bytes: Bytes of entropy per artifact (minimum 16)
        """
        if entropy_bytes < 16:
            raise ValueError("Artifacts require at least 128 bits of entropy")
        self.random_source = random_source
        self.entropy_bytes = entropy_bytes

    def new_code(self) -> str:
        """Mint a single-use authorization code"""
        return self._generate()

    def new_token_handle(self) -> str:
        """Mint an opaque access/refresh token handle"""
        return self._generate()

    def new_transaction_id(self) -> str:
        return self._generate()

    def new_grant_id(self) -> str:
        return self._generate()

    def _generate(self) -> str:
        try:
            raw = self.random_source(self.entropy_bytes)
        except (OSError, NotImplementedError) as e:
            logger.critical(f"Secure random source unavailable: {e}")
            raise EntropySourceUnavailable(str(e)) from e

        if len(raw) < self.entropy_bytes:
            logger.critical("Secure random source returned a short read")
            raise EntropySourceUnavailable("short read from random source")

        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")
