from sqlalchemy import Column, DateTime, ForeignKey, String, func

from bsaas_auth.db.base import Base
from bsaas_auth.models.types import new_id, utcnow


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=new_id)
    jti = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    # No ON DELETE CASCADE: the session repository removes tokens before the session.
    session_id = Column(String(36), ForeignKey("sessions.id"), nullable=False, index=True)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
    revoked_at = Column(DateTime(timezone=True), nullable=True)
    # Lineage only; not a foreign key.
    rotated_from = Column(String(64), nullable=True)
