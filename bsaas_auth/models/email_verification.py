from sqlalchemy import Column, DateTime, Integer, String, func

from bsaas_auth.db.base import Base
from bsaas_auth.models.types import new_id, utcnow


class EmailVerificationRecord(Base):
    __tablename__ = "email_verifications"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), nullable=False, unique=True, index=True)
    code_hash = Column(String(64), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    attempts = Column(Integer, nullable=False, default=0, server_default="0")
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
