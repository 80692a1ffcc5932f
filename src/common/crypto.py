"""Fernet helpers for encrypting enrolled face embeddings at rest."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

import numpy as np
from cryptography.fernet import Fernet, InvalidToken

BytesLike = Union[bytes, bytearray, memoryview]


def _coerce_key_bytes(key: BytesLike | str) -> bytes:
    """Normalise the configured Fernet key to ``bytes``."""

    if isinstance(key, str):
        return key.encode()
    return bytes(key)


@dataclass(slots=True)
class EmbeddingCipher:
    """Lazily instantiate a Fernet cipher from ``FACE_DATA_ENCRYPTION_KEY``.

    Embeddings are serialised as raw little-endian float64 buffers before
    encryption, so the vector dimension has to be stored alongside the token
    by the caller when it matters.
    """

    key_override: BytesLike | str | None = None
    _cipher: Fernet | None = None

    def _resolve_key(self) -> bytes:
        key = self.key_override
        if key is None:
            key = getattr(settings, "FACE_DATA_ENCRYPTION_KEY", None)
        if key is None:
            raise ImproperlyConfigured("FACE_DATA_ENCRYPTION_KEY is not configured.")

        key_bytes = _coerce_key_bytes(key)
        try:
            Fernet(key_bytes)
        except (TypeError, ValueError) as exc:
            raise ImproperlyConfigured("FACE_DATA_ENCRYPTION_KEY is invalid.") from exc
        return key_bytes

    def _get_cipher(self) -> Fernet:
        if self._cipher is None:
            self._cipher = Fernet(self._resolve_key())
        return self._cipher

    def encrypt(self, embedding: np.ndarray) -> bytes:
        if not isinstance(embedding, np.ndarray):
            raise TypeError("encrypt expects a numpy.ndarray")
        payload = np.ascontiguousarray(embedding, dtype="<f8").tobytes()
        return self._get_cipher().encrypt(payload)

    def decrypt(self, token: BytesLike) -> np.ndarray:
        if not isinstance(token, (bytes, bytearray, memoryview)):
            raise TypeError("decrypt expects a bytes-like object")
        payload = self._get_cipher().decrypt(bytes(token))
        return np.frombuffer(payload, dtype="<f8").astype(np.float64)


_embedding_cipher = EmbeddingCipher()


def encrypt_embedding(embedding: np.ndarray) -> bytes:
    """Encrypt a face embedding with the configured face data key."""

    return _embedding_cipher.encrypt(embedding)


def decrypt_embedding(token: BytesLike) -> np.ndarray:
    """Decrypt an embedding previously produced by :func:`encrypt_embedding`."""

    return _embedding_cipher.decrypt(token)


__all__ = [
    "EmbeddingCipher",
    "InvalidToken",
    "decrypt_embedding",
    "encrypt_embedding",
]
