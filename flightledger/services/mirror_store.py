"""
FlightLedger - Local mirror store

Current-state record per tracked flight, keyed by the identity tuple. Two
backends share the MirrorStore interface: SqlMirrorStore (SQLAlchemy async,
PostgreSQL in production) and InMemoryMirrorStore.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from pydantic import BaseModel
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from flightledger.db.models import FlightRecordRow
from flightledger.models.flight import TERMINAL_STATUSES, FlightKey, FlightRecord

logger = logging.getLogger(__name__)

KEY_FIELDS = ("carrier_code", "flight_number", "departure_date", "departure_airport", "arrival_airport")
STATE_FIELDS = tuple(name for name in FlightRecord.model_fields if name != "key")


class RecordFilter(BaseModel):
    """Scan filter. Unset criteria match everything."""
    committed: Optional[bool] = None
    tracked: Optional[bool] = None
    dead_lettered: Optional[bool] = None
    terminal: Optional[bool] = None
    seeded: Optional[bool] = None
    departure_date: Optional[str] = None
    carrier_code: Optional[str] = None
    flight_number: Optional[str] = None
    due_before: Optional[datetime] = None
    limit: Optional[int] = None

    def matches(self, record: FlightRecord) -> bool:
        key = record.key
        if self.committed is not None and record.committed != self.committed:
            return False
        if self.tracked is not None and record.tracked != self.tracked:
            return False
        if self.dead_lettered is not None and record.dead_lettered != self.dead_lettered:
            return False
        if self.terminal is not None and record.is_terminal != self.terminal:
            return False
        if self.seeded is not None and (record.status_code is not None) != self.seeded:
            return False
        if self.departure_date is not None and key.departure_date != self.departure_date:
            return False
        if self.carrier_code is not None and key.carrier_code != self.carrier_code:
            return False
        if self.flight_number is not None and key.flight_number != self.flight_number:
            return False
        if self.due_before is not None and record.next_attempt_at is not None:
            if _as_utc(record.next_attempt_at) > _as_utc(self.due_before):
                return False
        return True


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MirrorStore(Protocol):
    async def get(self, key: FlightKey) -> Optional[FlightRecord]: ...

    async def put(self, record: FlightRecord) -> FlightRecord: ...

    async def scan(self, flt: RecordFilter) -> list[FlightRecord]: ...

    async def update_fields(self, key: FlightKey, **fields: Any) -> Optional[FlightRecord]: ...

    async def delete(self, key: FlightKey) -> bool: ...

    async def counts(self) -> dict[str, int]: ...


def _check_fields(fields: dict) -> None:
    unknown = set(fields) - set(STATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown flight record fields: {', '.join(sorted(unknown))}")


# =============================================================================
# IN-MEMORY BACKEND
# =============================================================================


class InMemoryMirrorStore:
    """Dict-backed store; records are copied in and out."""

    def __init__(self) -> None:
        self._records: dict[FlightKey, FlightRecord] = {}

    async def get(self, key: FlightKey) -> Optional[FlightRecord]:
        record = self._records.get(key)
        return record.model_copy(deep=True) if record else None

    async def put(self, record: FlightRecord) -> FlightRecord:
        now = _utcnow()
        existing = self._records.get(record.key)
        stored = record.model_copy(
            deep=True,
            update={
                "created_at": record.created_at or (existing.created_at if existing else now),
                "updated_at": now,
            },
        )
        self._records[record.key] = stored
        return stored.model_copy(deep=True)

    async def scan(self, flt: RecordFilter) -> list[FlightRecord]:
        matched = [r for r in self._records.values() if flt.matches(r)]
        matched.sort(key=lambda r: r.updated_at or datetime.min.replace(tzinfo=timezone.utc))
        if flt.limit is not None:
            matched = matched[: flt.limit]
        return [r.model_copy(deep=True) for r in matched]

    async def update_fields(self, key: FlightKey, **fields: Any) -> Optional[FlightRecord]:
        _check_fields(fields)
        record = self._records.get(key)
        if record is None:
            return None
        updated = record.model_copy(deep=True, update={**fields, "updated_at": _utcnow()})
        self._records[key] = updated
        return updated.model_copy(deep=True)

    async def delete(self, key: FlightKey) -> bool:
        return self._records.pop(key, None) is not None

    async def counts(self) -> dict[str, int]:
        records = list(self._records.values())
        return {
            "total": len(records),
            "tracked": sum(1 for r in records if r.tracked),
            "committed": sum(1 for r in records if r.committed),
            "pending": sum(1 for r in records if not r.committed and not r.dead_lettered),
            "dead_lettered": sum(1 for r in records if r.dead_lettered),
        }


# =============================================================================
# SQL BACKEND
# =============================================================================


def _row_to_record(row: FlightRecordRow) -> FlightRecord:
    return FlightRecord(
        key=FlightKey(**{name: getattr(row, name) for name in KEY_FIELDS}),
        status_code=row.status_code,
        out_utc=row.out_utc,
        off_utc=row.off_utc,
        on_utc=row.on_utc,
        in_utc=row.in_utc,
        departure_delay_minutes=row.departure_delay_minutes,
        arrival_delay_minutes=row.arrival_delay_minutes,
        committed=row.committed,
        tx_ref=row.tx_ref,
        block_number=row.block_number,
        snapshot=row.snapshot,
        tracked=row.tracked,
        commit_attempts=row.commit_attempts,
        next_attempt_at=_as_utc(row.next_attempt_at),
        dead_lettered=row.dead_lettered,
        last_error=row.last_error,
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


def _key_clause(key: FlightKey):
    return and_(*(getattr(FlightRecordRow, name) == getattr(key, name) for name in KEY_FIELDS))


class SqlMirrorStore:
    """SQLAlchemy async backend."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def _get_row(self, session: AsyncSession, key: FlightKey) -> Optional[FlightRecordRow]:
        result = await session.execute(select(FlightRecordRow).where(_key_clause(key)))
        return result.scalar_one_or_none()

    async def get(self, key: FlightKey) -> Optional[FlightRecord]:
        async with self.session_maker() as session:
            row = await self._get_row(session, key)
            return _row_to_record(row) if row else None

    async def put(self, record: FlightRecord) -> FlightRecord:
        values = {name: getattr(record, name) for name in STATE_FIELDS if name not in ("created_at", "updated_at")}
        async with self.session_maker() as session:
            async with session.begin():
                row = await self._get_row(session, record.key)
                if row is None:
                    row = FlightRecordRow(**record.key.model_dump(), **values)
                    if record.created_at:
                        row.created_at = record.created_at
                    session.add(row)
                else:
                    for name, value in values.items():
                        setattr(row, name, value)
                    row.updated_at = _utcnow()
            return _row_to_record(row)

    async def scan(self, flt: RecordFilter) -> list[FlightRecord]:
        stmt = select(FlightRecordRow)
        conditions = []
        if flt.committed is not None:
            conditions.append(FlightRecordRow.committed == flt.committed)
        if flt.tracked is not None:
            conditions.append(FlightRecordRow.tracked == flt.tracked)
        if flt.dead_lettered is not None:
            conditions.append(FlightRecordRow.dead_lettered == flt.dead_lettered)
        if flt.terminal is True:
            conditions.append(FlightRecordRow.status_code.in_(TERMINAL_STATUSES))
        elif flt.terminal is False:
            conditions.append(
                or_(FlightRecordRow.status_code.is_(None), FlightRecordRow.status_code.not_in(TERMINAL_STATUSES))
            )
        if flt.seeded is True:
            conditions.append(FlightRecordRow.status_code.is_not(None))
        elif flt.seeded is False:
            conditions.append(FlightRecordRow.status_code.is_(None))
        if flt.departure_date is not None:
            conditions.append(FlightRecordRow.departure_date == flt.departure_date)
        if flt.carrier_code is not None:
            conditions.append(FlightRecordRow.carrier_code == flt.carrier_code)
        if flt.flight_number is not None:
            conditions.append(FlightRecordRow.flight_number == flt.flight_number)
        if flt.due_before is not None:
            conditions.append(
                or_(FlightRecordRow.next_attempt_at.is_(None), FlightRecordRow.next_attempt_at <= flt.due_before)
            )
        if conditions:
            stmt = stmt.where(and_(*conditions))
        stmt = stmt.order_by(FlightRecordRow.updated_at.asc())
        if flt.limit is not None:
            stmt = stmt.limit(flt.limit)

        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return [_row_to_record(row) for row in result.scalars().all()]

    async def update_fields(self, key: FlightKey, **fields: Any) -> Optional[FlightRecord]:
        _check_fields(fields)
        fields.pop("updated_at", None)
        async with self.session_maker() as session:
            async with session.begin():
                row = await self._get_row(session, key)
                if row is None:
                    return None
                for name, value in fields.items():
                    setattr(row, name, value)
                row.updated_at = _utcnow()
            return _row_to_record(row)

    async def delete(self, key: FlightKey) -> bool:
        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(delete(FlightRecordRow).where(_key_clause(key)))
        if result.rowcount:
            logger.info(f"[MIRROR] Deleted record {key}")
        return result.rowcount > 0

    async def counts(self) -> dict[str, int]:
        stmt = select(
            func.count().label("total"),
            func.count().filter(FlightRecordRow.tracked.is_(True)).label("tracked"),
            func.count().filter(FlightRecordRow.committed.is_(True)).label("committed"),
            func.count()
            .filter(and_(FlightRecordRow.committed.is_(False), FlightRecordRow.dead_lettered.is_(False)))
            .label("pending"),
            func.count().filter(FlightRecordRow.dead_lettered.is_(True)).label("dead_lettered"),
        )
        async with self.session_maker() as session:
            row = (await session.execute(stmt)).mappings().one()
            return {name: int(row[name] or 0) for name in ("total", "tracked", "committed", "pending", "dead_lettered")}
