import base64
import hashlib
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator

from bsaas_auth.core.settings import settings


def new_id() -> str:
    return uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _derive_key(secret: str) -> bytes:
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def get_fernet(secret: Optional[str] = None) -> Fernet:
    return Fernet(_derive_key(secret or settings.secret_key))


class EncryptedString(TypeDecorator):
    """Stores a string as a Fernet token; plaintext never reaches the database."""

    impl = Text
    cache_ok = True

    def __init__(self, *, secret: Optional[str] = None, **kwargs):
        super().__init__(**kwargs)
        self._secret = secret

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return get_fernet(self._secret).encrypt(str(value).encode("utf-8")).decode("ascii")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return get_fernet(self._secret).decrypt(value.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:  # pragma: no cover - indicates rotated SECRET_KEY or corruption
            raise ValueError("Unable to decrypt value") from exc


__all__ = ["EncryptedString", "get_fernet", "new_id", "utcnow"]
