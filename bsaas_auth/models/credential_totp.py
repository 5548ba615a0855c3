from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, func

from bsaas_auth.db.base import Base
from bsaas_auth.models.types import EncryptedString, new_id, utcnow


class CredentialTOTP(Base):
    __tablename__ = "credential_totp"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    secret = Column(EncryptedString(), nullable=False)
    # Only a verified credential gates login behind MFA.
    verified = Column(Boolean, nullable=False, default=False, server_default="false")
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
