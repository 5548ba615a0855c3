from sqlalchemy import Column, DateTime, String, func
from sqlalchemy.orm import relationship

from bsaas_auth.db.base import Base
from bsaas_auth.models.types import new_id, utcnow


class Role(Base):
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(50), nullable=False, unique=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now())

    user_roles = relationship("UserRole", back_populates="role", cascade="all, delete-orphan")
