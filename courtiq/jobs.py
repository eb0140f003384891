"""Cron-triggered sync jobs.

Each run walks ``Idle -> Fetching -> Parsing -> Reconciling -> Persisting ->
Idle`` one item at a time.  External fetches are strictly sequential and
spaced by :class:`Pacer`; an item that fails is recorded in the run's
result list and the run moves on.  Nothing is retried.
"""
from __future__ import annotations

import asyncio
import hmac
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from courtiq.config import Settings, get_settings
from courtiq.errors import AuthRejected, ParseMiss, PersistenceConflict, SourceUnavailable
from courtiq.extractors import (
    ACTIVITY_EXTRACTORS,
    LIST_RANK_MAX,
    ExternalPlayerRecord,
    extract_ranking_list,
    filter_eligible,
    match_player_ranking,
    parse_itf_rankings,
)
from courtiq.fetchers import SourceClient
from courtiq.models import RankingHistory, Recruit
from courtiq.reconcile import (
    ingest_matches,
    insert_history,
    load_prior_ranks,
    reconcile,
    tracked_external_ids,
    upsert_prospects,
)

log = logging.getLogger(__name__)

# tennisrecruiting.net national list ids, one per graduating class.
TR_LISTS: tuple[tuple[int, int], ...] = (
    (1275, 2027),
    (1285, 2028),
    (1295, 2029),
)


class JobState(str, Enum):
    IDLE = "idle"
    AUTHENTICATING = "authenticating"
    FETCHING = "fetching"
    PARSING = "parsing"
    RECONCILING = "reconciling"
    PERSISTING = "persisting"


class JobRun:
    """Tracks the current state of one job run for logging."""

    def __init__(self, name: str):
        self.name = name
        self.state = JobState.IDLE

    def enter(self, state: JobState) -> None:
        log.debug("%s: %s -> %s", self.name, self.state.value, state.value)
        self.state = state


class Pacer:
    """Enforces a minimum delay between consecutive outbound requests."""

    def __init__(self, delay: float):
        self._delay = delay
        self._last_call: float | None = None

    async def acquire(self) -> None:
        if self._last_call is not None:
            wait = self._delay - (time.monotonic() - self._last_call)
            if wait > 0:
                await asyncio.sleep(wait)
        self._last_call = time.monotonic()


@dataclass
class ItemResult:
    id: int
    name: str
    status: str  # updated | unchanged | failed
    old_ranking: int | None = None
    new_ranking: int | None = None
    error: str | None = None


@dataclass
class ScanResult:
    fetched: int = 0
    filtered: int = 0
    upserted: int = 0
    error: str | None = None


@dataclass
class MatchIngestResult:
    fetched: int = 0
    inserted: int = 0
    by_source: dict[str, int] = field(default_factory=dict)
    failed_sources: list[str] = field(default_factory=list)


def authorize(authorization: str | None, expected: str, run: JobRun | None = None) -> None:
    """Check ``Authorization: Bearer <secret>``; raise :class:`AuthRejected` otherwise."""
    if run is not None:
        run.enter(JobState.AUTHENTICATING)
    if not expected or not authorization:
        raise AuthRejected("missing cron secret")
    if not hmac.compare_digest(authorization.encode(), f"Bearer {expected}".encode()):
        raise AuthRejected("invalid cron secret")


def _log_parse_miss(label: str, identifier: str, raw_html: str) -> None:
    log.warning("Parse failed for %s (id=%s), %d chars of HTML", label, identifier, len(raw_html))
    log.debug("HTML chars 0-1000: %s", raw_html[:1000])
    log.debug("HTML chars 3000-5000: %s", raw_html[3000:5000])
    log.debug("HTML chars 5000-8000: %s", raw_html[5000:8000])


# ---------------------------------------------------------------------------
# Recruit ranking sync
# ---------------------------------------------------------------------------


async def _sync_recruit(
    session: Session, client: SourceClient, run: JobRun,
    recruit_id: int, name: str, old_ranking: int | None, tennisrecruiting_id: str, today: date,
) -> ItemResult:
    run.enter(JobState.FETCHING)
    raw_html = await client.fetch_player_page(tennisrecruiting_id)
    if raw_html is None:
        raise SourceUnavailable("tennisrecruiting", tennisrecruiting_id)

    run.enter(JobState.PARSING)
    hit = match_player_ranking(raw_html)
    if hit is None:
        _log_parse_miss(name, tennisrecruiting_id, raw_html)
        raise ParseMiss("tennisrecruiting", tennisrecruiting_id)
    rule, ranking = hit
    log.debug("Ranking %d for %s via rule %s", ranking, name, rule)

    run.enter(JobState.RECONCILING)
    if ranking == old_ranking:
        return ItemResult(recruit_id, name, "unchanged", old_ranking, ranking)

    run.enter(JobState.PERSISTING)
    try:
        insert_history(session, RankingHistory, recruit_id, ranking, today, "cron")
    except PersistenceConflict:
        log.debug("Ranking history for recruit %s already recorded on %s", recruit_id, today)
    session.execute(update(Recruit).where(Recruit.id == recruit_id).values(national_ranking=ranking))
    return ItemResult(recruit_id, name, "updated", old_ranking, ranking)


async def sync_recruit_rankings(
    session: Session, client: SourceClient, pacer: Pacer, *, today: date | None = None,
) -> list[ItemResult]:
    """Refresh ``national_ranking`` for every recruit with a tennisrecruiting id."""
    today = today or datetime.now(UTC).date()
    run = JobRun("sync-rankings")
    recruits = session.execute(
        select(Recruit.id, Recruit.name, Recruit.national_ranking, Recruit.tennisrecruiting_id)
        .where(Recruit.tennisrecruiting_id.is_not(None))
        .order_by(Recruit.id)
    ).all()

    results: list[ItemResult] = []
    for recruit_id, name, old_ranking, tr_id in recruits:
        await pacer.acquire()
        try:
            result = await _sync_recruit(session, client, run, recruit_id, name, old_ranking, tr_id, today)
            session.commit()
        except (SourceUnavailable, ParseMiss) as exc:
            session.rollback()
            result = ItemResult(recruit_id, name, "failed", old_ranking, error=str(exc))
        except SQLAlchemyError as exc:
            session.rollback()
            log.error("Ranking update failed for recruit %s: %s", recruit_id, exc)
            result = ItemResult(recruit_id, name, "failed", old_ranking, error="database error")
        except Exception as exc:
            session.rollback()
            log.exception("Unexpected error syncing ranking for recruit %s", recruit_id)
            result = ItemResult(recruit_id, name, "failed", old_ranking, error=f"unexpected error: {exc}")
        results.append(result)
    run.enter(JobState.IDLE)
    return results


# ---------------------------------------------------------------------------
# Broad list scan -> prospects
# ---------------------------------------------------------------------------


def _list_candidates(
    players: list[ExternalPlayerRecord], tracked: set[str], class_year: int | None,
) -> list[ExternalPlayerRecord]:
    """Drop tracked recruits and unranked rows; stamp list-level attributes."""
    kept = []
    for player in players:
        if player.external_id in tracked or player.rank > LIST_RANK_MAX:
            continue
        player.class_year = class_year
        player.nationality = "USA"
        kept.append(player)
    return kept


async def scan_ranking_lists(
    session: Session, client: SourceClient, pacer: Pacer, settings: Settings | None = None,
) -> ScanResult:
    """Crawl the national lists (bounded) and upsert unrecruited players as prospects."""
    settings = settings or get_settings()
    run = JobRun("scan-lists")
    result = ScanResult()
    tracked = tracked_external_ids(session, "tennisrecruiting")
    fresh: list[ExternalPlayerRecord] = []

    for list_id, class_year in TR_LISTS:
        seen = 0
        for page in range(1, settings.max_list_pages + 1):
            if seen >= settings.max_list_players:
                break
            await pacer.acquire()
            run.enter(JobState.FETCHING)
            raw_html = await client.fetch_list_page(list_id, page)
            if raw_html is None:
                break
            run.enter(JobState.PARSING)
            players = extract_ranking_list(raw_html)
            if len(players) < settings.min_list_rows:
                log.info("List %s page %s yielded %d rows, stopping", list_id, page, len(players))
                break
            result.fetched += len(players)
            kept = _list_candidates(players, tracked, class_year)
            fresh.extend(kept)
            seen += len(kept)

    result.filtered = len(fresh)
    run.enter(JobState.RECONCILING)
    batch = reconcile(fresh, load_prior_ranks(session, "tennisrecruiting"), excluded_ids=tracked)

    run.enter(JobState.PERSISTING)
    try:
        result.upserted = upsert_prospects(session, batch)
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        log.error("Prospect upsert failed: %s", exc)
        result.upserted = 0
        result.error = "database error"
    run.enter(JobState.IDLE)
    return result


def import_ranking_list_html(
    session: Session, raw_html: str, class_year: int | None = None,
) -> dict[str, Any]:
    """Reconcile one ranking-list page captured in the browser (commits)."""
    players = extract_ranking_list(raw_html)
    if not players:
        _log_parse_miss("ranking list", str(class_year or "-"), raw_html)
    tracked = tracked_external_ids(session, "tennisrecruiting")
    fresh = _list_candidates(players, tracked, class_year)
    batch = reconcile(fresh, load_prior_ranks(session, "tennisrecruiting"), excluded_ids=tracked)
    upserted = upsert_prospects(session, batch)
    session.commit()
    return {
        "success": True,
        "run_at": datetime.now(UTC).isoformat(),
        "fetched": len(players),
        "filtered": len(fresh),
        "upserted": upserted,
    }


async def run_ranking_sync(
    session: Session, client: SourceClient, settings: Settings | None = None,
) -> dict[str, Any]:
    """Recruit ranking refresh followed by the prospect list scan."""
    settings = settings or get_settings()
    pacer = Pacer(settings.request_delay_seconds)
    details = await sync_recruit_rankings(session, client, pacer)
    scan = await scan_ranking_lists(session, client, pacer, settings)
    summary = {status: sum(1 for d in details if d.status == status) for status in ("updated", "unchanged", "failed")}
    return {
        "success": True,
        "run_at": datetime.now(UTC).isoformat(),
        "summary": {"processed": len(details), **summary},
        "details": [asdict(d) for d in details],
        "scan": {k: v for k, v in asdict(scan).items() if v is not None},
    }


# ---------------------------------------------------------------------------
# ITF prospects
# ---------------------------------------------------------------------------


def import_itf_players(session: Session, payload: Any) -> dict[str, Any]:
    """Reconcile an ITF ranking payload, however it was fetched.

    The nationality filter always runs here, even when the browser already
    applied it (caller must not rely on the payload being pre-filtered).
    """
    run = JobRun("import-itf")
    run.enter(JobState.PARSING)
    records = parse_itf_rankings(payload)
    eligible = filter_eligible(records)

    run.enter(JobState.RECONCILING)
    batch = reconcile(
        eligible, load_prior_ranks(session, "itf"), excluded_ids=tracked_external_ids(session, "itf"),
    )

    run.enter(JobState.PERSISTING)
    upserted = upsert_prospects(session, batch)
    session.commit()
    run.enter(JobState.IDLE)
    return {
        "success": True,
        "run_at": datetime.now(UTC).isoformat(),
        "total_fetched": len(records),
        "after_filter": len(eligible),
        "upserted": upserted,
    }


async def sync_itf_prospects(session: Session, client: SourceClient) -> dict[str, Any]:
    """Fetch the ITF junior rankings server-side and import them."""
    payload = await client.fetch_itf_rankings()
    if payload is None:
        raise SourceUnavailable("itf", "rankings")
    return import_itf_players(session, payload)


# ---------------------------------------------------------------------------
# Match results
# ---------------------------------------------------------------------------


def ingest_match_html(
    session: Session, recruit: Recruit, source: str, raw_html: str,
    result: MatchIngestResult | None = None,
) -> MatchIngestResult:
    """Parse one activity page (server-fetched or browser-supplied) and store its matches."""
    result = result or MatchIngestResult()
    records = ACTIVITY_EXTRACTORS[source](raw_html)
    if not records:
        _log_parse_miss(recruit.name, f"{source}:{recruit.id}", raw_html)
    inserted = ingest_matches(session, recruit.id, source, records)
    result.fetched += len(records)
    result.inserted += inserted
    result.by_source[source] = result.by_source.get(source, 0) + inserted
    return result


async def fetch_match_results(
    session: Session, client: SourceClient, recruit: Recruit, settings: Settings | None = None,
) -> MatchIngestResult:
    """Fetch and store activity for every source the recruit is tracked on (caller must commit)."""
    settings = settings or get_settings()
    pacer = Pacer(settings.request_delay_seconds)
    result = MatchIngestResult()

    sources: list[tuple[str, Any]] = []
    if recruit.tennisrecruiting_id:
        sources.append(("tennisrecruiting", lambda: client.fetch_tr_activity(recruit.tennisrecruiting_id)))
    if recruit.itf_player_id:
        sources.append(("itf", lambda: client.fetch_itf_activity(
            recruit.name, recruit.itf_player_id, recruit.nationality,
        )))

    for source, fetch in sources:
        await pacer.acquire()
        raw_html = await fetch()
        if raw_html is None:
            result.failed_sources.append(source)
            continue
        ingest_match_html(session, recruit, source, raw_html, result)
    return result
