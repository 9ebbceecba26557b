import logging
from datetime import datetime
from typing import Callable, Protocol

from sqlalchemy import or_
from sqlalchemy.orm import Session

from focusminder.models import ScheduledNotification
from focusminder.schemas import NotificationRecord

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def schedule(
        self,
        notification_id: str,
        title: str,
        body: str,
        fire_at: datetime,
        repeat_rule: str | None = None,
        sound_id: str | None = None,
    ) -> None: ...

    def cancel(self, notification_id: str) -> None: ...

    def cancel_all(self) -> None: ...

    def list_pending(self) -> list[NotificationRecord]: ...


class SqlNotificationDispatcher:
    """
    Persists scheduled notifications in the ``scheduled_notifications`` table.

    Delivery belongs to whatever push service reads the table; this class
    only records what should fire and when. Scheduling an id that already
    exists replaces it.
    """

    def __init__(self, db: Session, now: Callable[[], datetime] = datetime.now):
        self.db = db
        self._now = now

    def schedule(
        self,
        notification_id: str,
        title: str,
        body: str,
        fire_at: datetime,
        repeat_rule: str | None = None,
        sound_id: str | None = None,
    ) -> None:
        record = (
            self.db.query(ScheduledNotification)
            .filter(ScheduledNotification.id == notification_id)
            .first()
        )
        if record is None:
            record = ScheduledNotification(id=notification_id)
            self.db.add(record)
        record.title = title
        record.body = body
        record.fire_at = fire_at
        record.repeat_rule = repeat_rule
        record.sound_id = sound_id
        self.db.commit()
        logger.info("Scheduled notification %s at %s", notification_id, fire_at.isoformat())

    def cancel(self, notification_id: str) -> None:
        deleted = (
            self.db.query(ScheduledNotification)
            .filter(ScheduledNotification.id == notification_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if deleted:
            logger.info("Cancelled notification %s", notification_id)

    def cancel_all(self) -> None:
        deleted = self.db.query(ScheduledNotification).delete(synchronize_session=False)
        self.db.commit()
        logger.info("Cancelled %d notifications", deleted)

    def list_pending(self) -> list[NotificationRecord]:
        """Notifications still to fire: future ones plus every repeating one."""
        rows = (
            self.db.query(ScheduledNotification)
            .filter(
                or_(
                    ScheduledNotification.fire_at > self._now(),
                    ScheduledNotification.repeat_rule.is_not(None),
                )
            )
            .order_by(ScheduledNotification.fire_at)
            .all()
        )
        return [
            NotificationRecord(
                id=row.id,
                title=row.title,
                body=row.body,
                fire_at=row.fire_at,
                repeat_rule=row.repeat_rule,
                sound_id=row.sound_id,
            )
            for row in rows
        ]
