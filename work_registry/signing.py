"""
Credential issuers produce time-limited retrieval URLs for stored objects.
"""
from __future__ import annotations

import hashlib
import hmac
import math
import time
from abc import ABC, abstractmethod
from typing import Callable
from urllib.parse import quote


class SigningError(Exception):
    """Raised when a signed URL cannot be issued."""


class CredentialIssuer(ABC):
    """Abstract base class for signed-URL issuers."""

    @abstractmethod
    def sign(self, bucket: str, path: str, ttl_seconds: int) -> str:
        """Return a URL granting read access to ``bucket/path`` for ``ttl_seconds``.

        Raises:
            SigningError: If the issuer cannot produce a URL
        """


class HmacCredentialIssuer(CredentialIssuer):
    """Signs URLs with an HMAC-SHA256 over the object key and expiry.

    URL shape: ``{base_url}/{bucket}/{path}?expires={unix}&signature={hex}``
    """

    def __init__(
        self,
        secret_key: str,
        base_url: str,
        clock: Callable[[], float] = time.time,
    ):
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._key = secret_key.encode("utf-8")
        self.base_url = base_url.rstrip("/")
        self.clock = clock

    def _digest(self, bucket: str, path: str, expires: int) -> str:
        message = f"{bucket}/{path}:{expires}".encode("utf-8")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()

    def sign(self, bucket: str, path: str, ttl_seconds: int) -> str:
        if ttl_seconds <= 0:
            raise SigningError(f"ttl_seconds must be positive, got {ttl_seconds}")
        if not path:
            raise SigningError(f"Cannot sign an empty path in bucket '{bucket}'")

        expires = math.ceil(self.clock() + ttl_seconds)
        signature = self._digest(bucket, path, expires)
        return (
            f"{self.base_url}/{quote(bucket)}/{quote(path)}"
            f"?expires={expires}&signature={signature}"
        )

    def verify(self, bucket: str, path: str, expires: int, signature: str) -> bool:
        """Check a signature produced by :meth:`sign` and that it has not expired."""
        if expires < self.clock():
            return False
        expected = self._digest(bucket, path, expires)
        return hmac.compare_digest(expected, signature)
