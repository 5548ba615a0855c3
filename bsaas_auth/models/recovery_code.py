from sqlalchemy import Column, DateTime, ForeignKey, String, func

from bsaas_auth.db.base import Base
from bsaas_auth.models.types import new_id, utcnow


class RecoveryCode(Base):
    """Hashed one-time recovery code."""

    __tablename__ = "recovery_codes"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    used_at = Column(DateTime(timezone=True), nullable=True)
