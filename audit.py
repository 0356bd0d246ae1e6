import logging
import traceback
from collections import deque

from models import Action
from utils import utcnow

log = logging.getLogger(__name__)


def _no_context():
    return None, None


class AuditLogger:
    """
    Append-only activity trail.

    Entries are written to the ``activityLogs`` collection. When that write
    fails the entry lands in a bounded in-memory buffer instead (oldest
    evicted) and is never retried against the database. Nothing here raises
    into the caller's operation.
    """

    def __init__(self, database, capacity=100, context_provider=_no_context, clock=utcnow):
        self.database = database
        self.context_provider = context_provider
        self.clock = clock
        self._fallback = deque(maxlen=capacity)
        self._errors = deque(maxlen=capacity)

    @property
    def fallback_entries(self):
        return list(self._fallback)

    @property
    def error_entries(self):
        return list(self._errors)

    def record(self, subject_id, action, detail="", document_id=None):
        action = action.value if isinstance(action, Action) else str(action)
        try:
            session_id, origin_address = self.context_provider()
        except Exception:
            session_id, origin_address = None, None
        entry = {
            "subject_id": subject_id,
            "action": action,
            "detail": detail,
            "related_document_id": document_id,
            "timestamp": self.clock(),
            "session_id": session_id,
            "origin_address": origin_address,
        }
        if document_id:
            log.info("[DOCUMENT_ACTION] %s: %s - Document: %s", action, detail, document_id)
        else:
            log.info("[USER_ACTION] %s: %s", action, detail)
        try:
            self.database.insert("activityLogs", entry)
        except Exception as exc:
            log.warning("activity log write failed, keeping entry locally: %s", exc)
            self._fallback.append(entry)
            return False
        return True

    def record_error(self, error, context):
        try:
            log.error("[ERROR] %s: %s", context, error)
            self._errors.append({
                "error": str(error),
                "error_type": type(error).__name__,
                "context": context,
                "timestamp": self.clock(),
                "stack": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            })
        except Exception:
            pass

    def recent(self, subject_id, limit=50):
        """Activity feed for one subject, newest first."""
        return self.database.query(
            "activityLogs",
            {"subject_id": subject_id},
            order_by="timestamp",
            descending=True,
            limit=limit,
        )
