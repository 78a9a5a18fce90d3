from __future__ import annotations

import logging
import os

from app.infra.tenant import get_role, get_tenant_id, get_user_id

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [tenant=%(tenant_id)s user=%(user_id)s role=%(role)s] %(message)s"

_configured = False


class RequestContextFilter(logging.Filter):
    """Stamp every record with the tenant, user and role of the current request."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.tenant_id = get_tenant_id() or "-"
        record.user_id = get_user_id() or "-"
        record.role = get_role() or "-"
        return True


def configure_logging(level: str | None = None) -> None:
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger("app")
    root.setLevel(getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO))
    root.addHandler(handler)
    _configured = True
