from sqlalchemy import JSON, Column, DateTime, String, func

from bsaas_auth.db.base import Base
from bsaas_auth.models.types import new_id, utcnow


class AuditLog(Base):
    """Append-only record of a security-relevant event."""

    __tablename__ = "audit_logs"

    id = Column(String(36), primary_key=True, default=new_id)
    event = Column(String(100), nullable=False, index=True)
    user_id = Column(String(36), nullable=True, index=True)
    session_id = Column(String(36), nullable=True)
    ip_address = Column(String(64), nullable=True)
    request_id = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())
