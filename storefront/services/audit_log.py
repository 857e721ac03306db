import logging
from concurrent.futures import Executor
from datetime import datetime
from typing import Dict, Optional
from uuid import uuid4

from sqlalchemy import func

from ..db.session import get_session
from ..models.activity_log import ActivityLog
from .logging import log_event


class AuditLogger:
    """Best-effort activity log.

    ``record`` is called after the business transaction has committed and
    hands the write to ``executor``; without an executor the write runs
    inline. Failures are logged and never reach the caller.
    """

    def __init__(self, session_factory=get_session, executor: Optional[Executor] = None):
        self._session_factory = session_factory
        self._executor = executor
        self.logger = logging.getLogger(__name__)

    def record(
        self,
        *,
        actor_id: str,
        action: str,
        entity: str,
        description: str,
        entity_id: Optional[str] = None,
        metadata: Optional[Dict] = None,
    ) -> None:
        entry = {
            "actor_id": actor_id,
            "action": action,
            "entity": entity,
            "entity_id": entity_id,
            "description": description,
            "details": metadata or {},
        }
        if self._executor is None:
            self._write(entry)
            return
        try:
            self._executor.submit(self._write, entry)
        except RuntimeError as exc:
            # executor already shut down
            self._report_failure(entry, exc)

    def _write(self, entry: Dict) -> None:
        try:
            with self._session_factory() as session:
                session.add(ActivityLog(id=str(uuid4()), **entry))
        except Exception as exc:
            self._report_failure(entry, exc)
            return
        log_event("debug", "audit.recorded", action=entry["action"], entity=entry["entity"], entity_id=entry["entity_id"])

    def _report_failure(self, entry: Dict, exc: Exception) -> None:
        self.logger.warning("Failed to record activity %s: %s", entry.get("action"), exc)
        log_event("error", "audit.failed", action=entry.get("action"), entity_id=entry.get("entity_id"), error=str(exc))

    def list_entries(self, *, entity: Optional[str] = None, entity_id: Optional[str] = None, limit: int = 50):
        with self._session_factory() as session:
            q = session.query(ActivityLog)
            if entity:
                q = q.filter(ActivityLog.entity == entity)
            if entity_id:
                q = q.filter(ActivityLog.entity_id == entity_id)
            rows = q.order_by(ActivityLog.created_at.desc()).limit(limit).all()
            return [_entry(r) for r in rows]

    def stats(self, *, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> Dict:
        """Totals by action (top 10) and by entity, plus the 10 newest entries."""
        with self._session_factory() as session:
            filters = []
            if date_from:
                filters.append(ActivityLog.created_at >= date_from)
            if date_to:
                filters.append(ActivityLog.created_at <= date_to)
            total = session.query(func.count(ActivityLog.id)).filter(*filters).scalar() or 0
            count = func.count(ActivityLog.id).label("count")
            by_action = (
                session.query(ActivityLog.action, count)
                .filter(*filters)
                .group_by(ActivityLog.action)
                .order_by(count.desc(), ActivityLog.action)
                .limit(10)
                .all()
            )
            by_entity = (
                session.query(ActivityLog.entity, count)
                .filter(*filters)
                .group_by(ActivityLog.entity)
                .order_by(count.desc(), ActivityLog.entity)
                .all()
            )
            recent = session.query(ActivityLog).filter(*filters).order_by(ActivityLog.created_at.desc()).limit(10).all()
            return {
                "total_logs": int(total),
                "logs_by_action": [{"action": a, "count": int(c)} for a, c in by_action],
                "logs_by_entity": [{"entity": e, "count": int(c)} for e, c in by_entity],
                "recent_logs": [_entry(r) for r in recent],
            }


def _entry(r: ActivityLog) -> Dict:
    return {
        "id": r.id,
        "actor_id": r.actor_id,
        "action": r.action,
        "entity": r.entity,
        "entity_id": r.entity_id,
        "description": r.description,
        "metadata": r.details or {},
        "created_at": r.created_at.isoformat() if r.created_at else None,
    }
