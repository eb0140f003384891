"""Shared business logic for the CourtIQ API and CLI."""
from __future__ import annotations

import csv
import io
import json
import logging
from datetime import date
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, selectinload

from courtiq.brief import LLMClient, generate_brief
from courtiq.config import get_settings
from courtiq.models import (
    Interaction,
    MatchResult,
    ProgramProfile,
    Prospect,
    RankingHistory,
    Recruit,
    UTRHistory,
)
from courtiq.reconcile import insert_history
from courtiq.trends import annotate, discovery_views
from courtiq.utils import json_parse, round_half_up, utc_now, utc_today

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Shared field tuples
# ---------------------------------------------------------------------------

RECRUIT_FIELDS = (
    "id", "name", "class_year", "nationality", "location", "plays",
    "tennisrecruiting_id", "itf_player_id", "national_ranking", "utr_rating",
    "fit_score", "priority", "status", "last_contacted", "notes", "ai_brief",
    "source_url",
)

UPDATABLE_FIELDS = (
    "name", "class_year", "nationality", "location", "plays",
    "tennisrecruiting_id", "itf_player_id", "national_ranking", "priority",
    "status", "notes",
)

PROSPECT_FIELDS = (
    "id", "source", "external_id", "name", "current_rank", "previous_rank",
    "rank_movement", "is_rising", "nationality", "birth_year", "class_year",
    "location", "last_synced_at",
)

MATCH_FIELDS = (
    "id", "recruit_id", "source", "tournament_name", "tournament_grade",
    "surface", "round", "opponent_name", "opponent_ranking",
    "opponent_nationality", "opponent_itf_id", "score", "result", "match_date",
)

_PROFILE_FIELDS = ("program_name", "target_ranking_min", "target_ranking_max")

CONTACT_LOG_FIELDS = (
    "recruit_name", "recruit_ranking", "class_year", "contact_date", "contact_type", "notes", "coach_name",
)

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _history_point(h: UTRHistory | RankingHistory, value_field: str) -> dict[str, Any]:
    return {
        "id": h.id, "recorded_date": h.recorded_date, "source": h.source,
        value_field: getattr(h, value_field),
    }


def recruit_summary(r: Recruit) -> dict[str, Any]:
    return {
        **{f: getattr(r, f) for f in RECRUIT_FIELDS},
        "fit_score_breakdown": json_parse(r.fit_score_breakdown_json, {}),
        "utr_history": [_history_point(h, "utr_rating") for h in r.utr_history],
        "ranking_history": [_history_point(h, "national_ranking") for h in r.ranking_history],
    }


def prospect_summary(p: Prospect) -> dict[str, Any]:
    return {f: getattr(p, f) for f in PROSPECT_FIELDS}


def match_summary(m: MatchResult) -> dict[str, Any]:
    return {f: getattr(m, f) for f in MATCH_FIELDS}


def profile_summary(p: ProgramProfile) -> dict[str, Any]:
    return {
        "id": p.id, **{f: getattr(p, f) for f in _PROFILE_FIELDS},
        "criteria": json_parse(p.criteria_json, {}),
    }


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def query_recruits(session: Session) -> list[Recruit]:
    return list(session.execute(
        select(Recruit)
        .options(selectinload(Recruit.utr_history), selectinload(Recruit.ranking_history))
        .order_by(Recruit.national_ranking.is_(None), Recruit.national_ranking, Recruit.id)
    ).scalars().all())


def query_prospects(
    session: Session, *, source: str | None = None, rising: bool | None = None,
) -> list[Prospect]:
    query = select(Prospect)
    if source:
        query = query.where(Prospect.source == source)
    if rising is not None:
        query = query.where(Prospect.is_rising.is_(rising))
    return list(session.execute(
        query.order_by(Prospect.source, Prospect.current_rank, Prospect.id)
    ).scalars().all())


def query_matches(session: Session, recruit_id: int) -> list[MatchResult]:
    return list(session.execute(
        select(MatchResult)
        .where(MatchResult.recruit_id == recruit_id)
        .order_by(MatchResult.match_date.desc(), MatchResult.id)
    ).scalars().all())


def get_program_profile(session: Session) -> ProgramProfile:
    """The single program profile row, created on first use."""
    profile = session.execute(select(ProgramProfile).order_by(ProgramProfile.id)).scalars().first()
    if profile is None:
        profile = ProgramProfile()
        session.add(profile)
        session.flush()
    return profile


# ---------------------------------------------------------------------------
# Mutation helpers
# ---------------------------------------------------------------------------


def apply_updates(obj, updates: dict[str, Any], fields: tuple[str, ...]) -> None:
    """Apply non-None values from updates dict to an ORM object."""
    for field in fields:
        val = updates.get(field)
        if val is not None:
            setattr(obj, field, val)


def update_program_profile(session: Session, updates: dict[str, Any]) -> ProgramProfile:
    """Partial update of the program profile (caller must commit)."""
    profile = get_program_profile(session)
    apply_updates(profile, updates, _PROFILE_FIELDS)
    if updates.get("criteria") is not None:
        profile.criteria_json = json.dumps(updates["criteria"])
    if profile.target_ranking_min > profile.target_ranking_max:
        raise ValueError("target_ranking_min must not exceed target_ranking_max")
    return profile


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def promote_prospect(session: Session, prospect: Prospect) -> Recruit:
    """Move a prospect into the recruit pipeline (caller must commit).

    The new recruit carries the prospect's external id under the matching
    source column, so later list scans exclude it.
    """
    recruit = Recruit(
        name=prospect.name,
        class_year=prospect.class_year,
        nationality=prospect.nationality,
        location=prospect.location,
        national_ranking=prospect.current_rank,
        status="Identified",
    )
    if prospect.source == "tennisrecruiting":
        recruit.tennisrecruiting_id = prospect.external_id
    else:
        recruit.itf_player_id = prospect.external_id
    session.add(recruit)
    session.delete(prospect)
    session.flush()
    log.info("Promoted %s prospect %s to recruit %s", prospect.source, prospect.external_id, recruit.id)
    return recruit


def log_interaction(
    session: Session, recruit: Recruit, *, type: str, contact_date: date,
    notes: str = "", author: str = "",
) -> Interaction:
    """Record a contact and advance ``last_contacted`` (caller must commit).

    Back-dated entries never move ``last_contacted`` backwards.
    """
    interaction = Interaction(
        recruit_id=recruit.id, type=type, contact_date=contact_date, notes=notes, author=author,
    )
    session.add(interaction)
    if recruit.last_contacted is None or contact_date > recruit.last_contacted:
        recruit.last_contacted = contact_date
    return interaction


def add_utr_entry(
    session: Session, recruit: Recruit, utr_rating: float, recorded_date: date, source: str = "manual",
) -> None:
    """Append a rating point and make it the recruit's current rating (caller must commit).

    Raises :class:`~courtiq.errors.PersistenceConflict` for a second entry on the same date.
    """
    insert_history(session, UTRHistory, recruit.id, utr_rating, recorded_date, source)
    recruit.utr_rating = utr_rating


def add_ranking_entry(
    session: Session, recruit: Recruit, national_ranking: int, recorded_date: date, source: str = "manual",
) -> None:
    """Append a ranking point (caller must commit)."""
    insert_history(session, RankingHistory, recruit.id, national_ranking, recorded_date, source)


def delete_history_entry(session: Session, model: type[UTRHistory] | type[RankingHistory], entry_id: int) -> bool:
    result = session.execute(delete(model).where(model.id == entry_id))
    return result.rowcount > 0


def calculate_fit(criteria: dict[str, Any], scores: dict[str, float]) -> tuple[int, dict[str, Any]]:
    """Weighted program fit on a 0-100 scale.

    Each criterion contributes ``score / 10 * weight``; criteria without a
    score count as 0.  Scores the profile does not define are ignored.
    """
    total_weight = 0.0
    weighted_score = 0.0
    breakdown: dict[str, Any] = {}
    for key, criterion in criteria.items():
        weight = float(criterion.get("weight") or 0)
        score = float(scores.get(key) or 0)
        weighted = score / 10 * weight
        total_weight += weight
        weighted_score += weighted
        breakdown[key] = {
            "label": criterion.get("label", key),
            "score": score,
            "weight": weight,
            "weighted": round_half_up(weighted, 1),
        }
    if total_weight <= 0:
        raise ValueError("program profile has no weighted criteria")
    return int(round_half_up(weighted_score / total_weight * 100)), breakdown


def apply_fit(session: Session, recruit: Recruit, scores: dict[str, float]) -> tuple[int, dict[str, Any]]:
    """Score a recruit against the program profile and store it (caller must commit)."""
    criteria = json_parse(get_program_profile(session).criteria_json, {})
    fit, breakdown = calculate_fit(criteria, scores)
    recruit.fit_score = fit
    recruit.fit_score_breakdown_json = json.dumps(breakdown)
    return fit, breakdown


def discovery(session: Session, today: date | None = None) -> dict[str, list[dict[str, Any]]]:
    profile = get_program_profile(session)
    annotated = [annotate(recruit_summary(r)) for r in query_recruits(session)]
    return discovery_views(
        annotated,
        ranking_min=profile.target_ranking_min,
        ranking_max=profile.target_ranking_max,
        today=today or utc_today(),
    )


async def run_brief(session: Session, recruit: Recruit, client: LLMClient | None = None) -> str:
    """Generate and store the recruit's brief (caller must commit)."""
    if client is None:
        settings = get_settings()
        client = LLMClient(settings.llm_provider, settings.llm_model or None)
    interactions = session.execute(
        select(Interaction).where(Interaction.recruit_id == recruit.id)
    ).scalars().all()
    brief = await generate_brief(recruit, list(interactions), client)
    recruit.ai_brief = brief
    recruit.ai_brief_generated_at = utc_now()
    return brief


def contact_log_rows(session: Session, recruit_id: int | None = None) -> list[dict[str, Any]]:
    """Interactions joined to their recruit, newest contact first."""
    query = (
        select(Interaction, Recruit)
        .join(Recruit, Interaction.recruit_id == Recruit.id)
        .order_by(Interaction.contact_date.desc(), Interaction.id.desc())
    )
    if recruit_id is not None:
        query = query.where(Interaction.recruit_id == recruit_id)
    return [
        {
            "recruit_name": r.name,
            "recruit_ranking": r.national_ranking,
            "class_year": r.class_year,
            "contact_date": i.contact_date.isoformat(),
            "contact_type": i.type,
            "notes": i.notes,
            "coach_name": i.author,
        }
        for i, r in session.execute(query).all()
    ]


def render_contact_log(rows: list[dict[str, Any]]) -> str:
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CONTACT_LOG_FIELDS, lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue()


def contact_log_csv(session: Session, recruit_id: int | None = None) -> str:
    """Contact log as CSV text for compliance exports."""
    return render_contact_log(contact_log_rows(session, recruit_id))
