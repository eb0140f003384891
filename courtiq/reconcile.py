"""Reconciliation of freshly scraped players against stored state.

:func:`reconcile` is pure: fresh records plus the prior rank snapshot in,
upsert rows out.  The ``upsert_*`` / ``ingest_*`` / ``insert_history``
helpers push those rows through the database's own upsert-by-unique-key,
which is the only serialization point between overlapping runs.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, date, datetime
from typing import Iterable, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from courtiq.errors import PersistenceConflict
from courtiq.extractors import ExternalPlayerRecord, MatchRecord
from courtiq.models import MatchResult, Prospect, RankingHistory, Recruit, UTRHistory

log = logging.getLogger(__name__)

# Places gained since the last sync for a prospect to be flagged as rising.
RISING_THRESHOLD = 10

_CHUNK = 500

_PROSPECT_UPDATE_COLUMNS = (
    "name", "current_rank", "previous_rank", "rank_movement", "is_rising",
    "nationality", "birth_year", "class_year", "location", "last_synced_at",
)

_TRACKED_ID_COLUMN = {
    "tennisrecruiting": Recruit.tennisrecruiting_id,
    "itf": Recruit.itf_player_id,
}

_HISTORY_VALUE_COLUMN = {
    UTRHistory: "utr_rating",
    RankingHistory: "national_ranking",
}


@dataclass
class ProspectUpsert:
    source: str
    external_id: str
    name: str
    current_rank: int
    previous_rank: int
    rank_movement: int
    is_rising: bool
    last_synced_at: datetime
    nationality: str = ""
    birth_year: int | None = None
    class_year: int | None = None
    location: str = ""


def rank_movement(previous: int, current: int) -> int:
    """Places gained; positive means the player moved up (40 -> 25 is +15)."""
    return previous - current


def reconcile(
    fresh: Iterable[ExternalPlayerRecord],
    prior_by_external_id: dict[str, int],
    *,
    excluded_ids: Iterable[str] = (),
    now: datetime | None = None,
) -> list[ProspectUpsert]:
    """Build the prospect upsert batch for one source.

    A player seen for the first time uses its fresh rank as the previous
    rank, so movement starts at 0.  Players already tracked as recruits
    (``excluded_ids``) never become prospects.  Within a batch the first
    occurrence of an external id wins.
    """
    now = now or datetime.now(UTC)
    excluded = set(excluded_ids)
    seen: set[str] = set()
    batch: list[ProspectUpsert] = []

    for record in fresh:
        if record.external_id in excluded or record.external_id in seen:
            continue
        seen.add(record.external_id)
        previous = prior_by_external_id.get(record.external_id, record.rank)
        movement = rank_movement(previous, record.rank)
        batch.append(ProspectUpsert(
            source=record.source,
            external_id=record.external_id,
            name=record.name,
            current_rank=record.rank,
            previous_rank=previous,
            rank_movement=movement,
            is_rising=movement >= RISING_THRESHOLD,
            last_synced_at=now,
            nationality=record.nationality,
            birth_year=record.birth_year,
            class_year=record.class_year,
            location=record.location,
        ))
    return batch


# ---------------------------------------------------------------------------
# Snapshot reads
# ---------------------------------------------------------------------------


def load_prior_ranks(session: Session, source: str) -> dict[str, int]:
    rows = session.execute(
        select(Prospect.external_id, Prospect.current_rank).where(Prospect.source == source)
    ).all()
    return {external_id: rank for external_id, rank in rows}


def tracked_external_ids(session: Session, source: str) -> set[str]:
    """External ids of this source already promoted into the recruit pipeline."""
    column = _TRACKED_ID_COLUMN[source]
    rows = session.execute(select(column).where(column.is_not(None))).scalars().all()
    return {r for r in rows if r}


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def _dialect_insert(session: Session, model):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upserts are not supported on {dialect!r}")


def upsert_prospects(session: Session, batch: Sequence[ProspectUpsert]) -> int:
    """Insert or update prospects keyed by ``(source, external_id)`` (caller must commit)."""
    for start in range(0, len(batch), _CHUNK):
        rows = [asdict(u) for u in batch[start:start + _CHUNK]]
        stmt = _dialect_insert(session, Prospect).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=["source", "external_id"],
            set_={col: stmt.excluded[col] for col in _PROSPECT_UPDATE_COLUMNS},
        )
        session.execute(stmt)
    return len(batch)


def ingest_matches(
    session: Session, recruit_id: int, source: str, records: Sequence[MatchRecord],
) -> int:
    """Store match rows, silently dropping ones already on file.

    Returns the number of rows actually inserted (caller must commit).
    """
    if not records:
        return 0
    count_stmt = select(func.count(MatchResult.id)).where(MatchResult.recruit_id == recruit_id)
    before = session.execute(count_stmt).scalar_one()
    rows = [{**asdict(r), "recruit_id": recruit_id, "source": source} for r in records]
    for start in range(0, len(rows), _CHUNK):
        stmt = _dialect_insert(session, MatchResult).values(rows[start:start + _CHUNK])
        session.execute(stmt.on_conflict_do_nothing(
            index_elements=["recruit_id", "tournament_name", "round", "opponent_name"],
        ))
    after = session.execute(count_stmt).scalar_one()
    return after - before


def insert_history(
    session: Session, model: type[UTRHistory] | type[RankingHistory],
    recruit_id: int, value: float | int, recorded_date: date, source: str,
) -> None:
    """Append one history point.

    Raises :class:`PersistenceConflict` when the recruit already has a point
    for that date; nothing is written in that case.
    """
    stmt = _dialect_insert(session, model).values(
        recruit_id=recruit_id,
        recorded_date=recorded_date,
        source=source,
        **{_HISTORY_VALUE_COLUMN[model]: value},
    ).on_conflict_do_nothing(index_elements=["recruit_id", "recorded_date"])
    result = session.execute(stmt)
    if result.rowcount == 0:
        raise PersistenceConflict(
            f"{model.__tablename__} already has an entry for recruit {recruit_id} on {recorded_date}"
        )
