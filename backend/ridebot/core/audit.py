"""
Audit logging for ride mutations.

Every create/update/cancel/resume/delete and every participation change is
written as one JSON line to the ``audit`` logger, together with denied
mutation attempts by non-creators.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Separate logger for audit events (can be shipped to centralized logging)
audit_logger = logging.getLogger("audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class AuditLog:
    """Central audit logging for ride events."""

    @staticmethod
    def log_action(
        action: str,  # "create", "update", "cancel", "resume", "delete", "participation"
        resource_type: str,  # "ride"
        resource_id: str,
        user_id: Optional[int],
        changes: Optional[Dict[str, Any]] = None,
    ):
        """
        Usage:
            AuditLog.log_action("create", "ride", "0aB3kd9xYz1", 101)
            AuditLog.log_action("update", "ride", ride.id, 101, changes={"title": "Evening Ride"})
        """
        log_entry = {
            "timestamp": _now(),
            "event_type": f"{resource_type}.{action}",
            "user_id": user_id,
            "resource_id": resource_id,
        }

        if changes:
            log_entry["changes"] = changes

        audit_logger.info(json.dumps(log_entry, default=str))

    @staticmethod
    def log_access_denied(
        action: str,
        resource_type: str,
        resource_id: str,
        user_id: Optional[int],
        reason: str,
    ):
        """
        Log denied mutation attempts, e.g. a user trying to cancel someone else's ride.

        Usage:
            AuditLog.log_access_denied("cancel", "ride", "0aB3kd9xYz1", 202, "Not ride creator")
        """
        log_entry = {
            "timestamp": _now(),
            "event_severity": "WARNING",
            "event_type": "access_denied",
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "user_id": user_id,
            "reason": reason,
        }

        audit_logger.warning(json.dumps(log_entry))
