from typing import Any, Callable
from core.logging_config import AUDIT_LOGGER_NAME
from schemas.auth_schemas import ClientContext
from utils.logger import get_logger, sanitize_log_data

logger = get_logger(__name__)
audit_logger = get_logger(AUDIT_LOGGER_NAME)

AuditSink = Callable[[dict], None]


def log_sink(entry: dict) -> None:
    audit_logger.info(entry["action"], extra={"audit": entry})


class AuditService:
    """
    Fire-and-forget security audit trail.

    Entries are handed to a sink (the ``audit`` logger by default). A failing
    sink is logged and never interrupts the flow that produced the event.
    """

    def __init__(self, sink: AuditSink | None = None):
        self.sink = sink or log_sink

    def log(self, action: str, user_id: int | None = None, resource: str = "auth",
            details: dict[str, Any] | None = None, client: ClientContext | None = None) -> None:
        client = client or ClientContext()
        entry = {
            "action": action,
            "user_id": user_id,
            "resource": resource,
            "details": sanitize_log_data(details or {}),
            "ip": client.ip_address,
            "user_agent": client.user_agent,
            "request_id": client.request_id
        }
        try:
            self.sink(entry)
        except Exception as e:
            logger.error(
                f"Audit sink failed: {str(e)}",
                extra={"action": action, "user_id": user_id, "error_type": type(e).__name__}
            )
