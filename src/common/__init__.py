"""Shared helpers used by the Django apps."""

from .crypto import (
    EmbeddingCipher,
    InvalidToken,
    decrypt_embedding,
    encrypt_embedding,
)
from .network import client_ip, user_agent

__all__ = [
    "client_ip",
    "EmbeddingCipher",
    "InvalidToken",
    "decrypt_embedding",
    "encrypt_embedding",
    "user_agent",
]
