"""Daily usage quota per billing entity.

A reservation is one ``INSERT ... ON CONFLICT DO UPDATE ... WHERE`` statement,
so concurrent reservations against the same (entity, day) row are serialized
by the database and can never overshoot the limit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Callable

from sqlalchemy import select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from founderkit.db import Store
from founderkit.errors import QuotaExceeded, ValidationFailed
from founderkit.models import RateLimit

log = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class QuotaStatus:
    used: int
    limit: int
    remaining: int
    resets_at: datetime

    def to_dict(self) -> dict:
        return {
            "messages_used": self.used,
            "messages_limit": self.limit,
            "remaining_today": self.remaining,
            "resets_at": self.resets_at.isoformat(),
        }


class QuotaLedger:
    def __init__(self, store: Store, limit: int = 30, clock: Callable[[], datetime] | None = None):
        self.store = store
        self.limit = limit
        self._clock = clock or _utcnow

    def _today(self) -> tuple[str, datetime]:
        now = self._clock()
        if now.tzinfo is not None:
            now = now.astimezone(UTC)
        day = now.date()
        resets_at = datetime(day.year, day.month, day.day, tzinfo=UTC) + timedelta(days=1)
        return day.isoformat(), resets_at

    def reserve(self, entity_id: str, cost: int) -> int:
        """Debit *cost* units for today and return what remains.

        Raises ``QuotaExceeded`` without writing anything when the debit
        would take the day's usage past the limit.
        """
        if cost < 1:
            raise ValidationFailed(f"Quota cost must be positive, got {cost}")
        date, resets_at = self._today()
        if cost > self.limit:
            raise QuotaExceeded(entity_id, self.limit, resets_at)

        table = RateLimit.__table__
        stmt = sqlite_insert(table).values(entity_id=entity_id, date=date, used=cost)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.entity_id, table.c.date],
            set_={"used": table.c.used + cost},
            where=table.c.used + cost <= self.limit,
        ).returning(table.c.used)

        with self.store.session() as session:
            used = session.execute(stmt).scalar_one_or_none()
            session.commit()

        if used is None:
            log.info("Quota exhausted for %s on %s (limit %d)", entity_id, date, self.limit)
            raise QuotaExceeded(entity_id, self.limit, resets_at)
        return self.limit - used

    def status(self, entity_id: str) -> QuotaStatus:
        date, resets_at = self._today()
        with self.store.session() as session:
            used = session.execute(
                select(RateLimit.used).where(RateLimit.entity_id == entity_id, RateLimit.date == date)
            ).scalar_one_or_none() or 0
        return QuotaStatus(
            used=used,
            limit=self.limit,
            remaining=max(0, self.limit - used),
            resets_at=resets_at,
        )
