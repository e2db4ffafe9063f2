import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.application.ports import AuditWriter
from booking_engine.domain.state_machine import AuditAction
from booking_engine.infrastructure.db.models import AuditRecord, utc_now

logger = logging.getLogger(__name__)

_DETAIL_MAX_LENGTH = 500


class SqlAuditWriter(AuditWriter):
    """
    Writes audit rows inside a SAVEPOINT of the caller's unit of work.
    A failed write rolls back only the savepoint; the caller's
    transaction carries on.
    """

    def record(self, db: Session, actor_id: str, action: AuditAction, detail: str) -> None:
        try:
            with db.begin_nested():
                db.add(
                    AuditRecord(
                        actor_id=actor_id,
                        action=action,
                        detail=detail[:_DETAIL_MAX_LENGTH],
                        created_at=utc_now(),
                    )
                )
        except SQLAlchemyError:
            logger.warning(
                "Audit write failed. actor_id=%s action=%s",
                actor_id,
                action.value,
                exc_info=True,
            )
