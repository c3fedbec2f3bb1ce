"""
Audit sink - fire-and-forget recording of transition facts.

The core emits one AuditEvent per successful transition. Recording it is
best effort: a failed write is logged and never undoes or fails the
transition that produced it.
"""

import logging

from waterlab.models import AuditEvent, StorageError
from waterlab.storage import save_audit_event

logger = logging.getLogger(__name__)


def record(event: AuditEvent) -> bool:
    """Writes event to the audit table. Returns False if the write failed."""
    try:
        save_audit_event(event)
    except StorageError as e:
        logger.warning("Audit event %s (%s) not recorded: %s", event.event_id, event.action.value, e)
        return False

    logger.info(
        "%s by %s on %s",
        event.action.value, event.actor_id, event.sample_id or "-",
    )
    return True
