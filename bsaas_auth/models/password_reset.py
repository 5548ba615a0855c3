from sqlalchemy import Column, DateTime, ForeignKey, String, func

from bsaas_auth.db.base import Base
from bsaas_auth.models.types import new_id, utcnow


class PasswordResetRecord(Base):
    """Single-use handle for a reset token; the token carries ``rid`` = ``id``."""

    __tablename__ = "password_resets"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
