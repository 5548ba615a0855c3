from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError

from bsaas_auth.core.context import get_client_ip, get_request_id
from bsaas_auth.core.logging import get_audit_logger
from bsaas_auth.repositories.base import AuditLogRepository

logger = logging.getLogger(__name__)

# Never copied into audit details, whatever the caller passes.
_SENSITIVE_KEYS = frozenset({"password", "new_password", "token", "refresh_token", "code", "otp", "secret"})


def serialize_for_audit(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Decimal: lambda v: str(v),
            datetime: lambda v: v.isoformat(),
            date: lambda v: v.isoformat(),
        },
    )


def _context_value(value: str) -> Optional[str]:
    return None if value in ("", "-") else value


class AuditService:
    """Structured, append-only security event trail.

    Every event goes to the ``bsaas_auth.audit`` log stream; when a repository
    is wired in, it is also appended to ``audit_logs``. Persistence failures are
    logged and never propagate to the caller.
    """

    def __init__(self, repository: Optional[AuditLogRepository] = None) -> None:
        self.repository = repository
        self._logger = get_audit_logger()

    async def record(
        self,
        event: str,
        *,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        ip: Optional[str] = None,
        **details: Any,
    ) -> None:
        ip_address = ip or _context_value(get_client_ip())
        request_id = _context_value(get_request_id())
        safe_details = serialize_for_audit(
            {key: value for key, value in details.items() if key not in _SENSITIVE_KEYS}
        )
        self._logger.info(
            event,
            extra={
                "audit_event": event,
                "subject_id": user_id,
                "session_id": session_id,
                "ip_address": ip_address,
                "details": safe_details,
            },
        )
        if self.repository is None:
            return
        try:
            await self.repository.append(
                event,
                user_id=user_id,
                session_id=session_id,
                ip_address=ip_address,
                request_id=request_id,
                details=safe_details,
            )
        except SQLAlchemyError:
            logger.warning("audit_persist_failed event=%s", event, exc_info=True)


__all__ = ["AuditService", "serialize_for_audit"]
