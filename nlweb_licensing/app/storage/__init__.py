"""Durable option storage and secret encryption."""

from .crypto import SecretCipher, SecretDecryptionError
from .options import InMemoryOptionStore, OptionStore

__all__ = [
    "InMemoryOptionStore",
    "OptionStore",
    "SecretCipher",
    "SecretDecryptionError",
]
