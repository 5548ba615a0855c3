from sqlalchemy import Column, DateTime, ForeignKey, String, func

from bsaas_auth.db.base import Base
from bsaas_auth.models.types import new_id, utcnow


class UserSession(Base):
    """One logical login. Refresh tokens rotate underneath it."""

    __tablename__ = "sessions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_agent = Column(String(500), nullable=True)
    ip_address = Column(String(64), nullable=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True, default=utcnow)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
