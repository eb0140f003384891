"""Trend classification for rating and ranking histories.

Both metrics report "improving" as ``rising`` but with opposite arithmetic:
a UTR rating goes *up* when a player improves, a national ranking goes
*down*.  Magnitude is always ``latest - earliest`` in the metric's own units.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, Literal, Sequence

from courtiq.utils import round_half_up

Metric = Literal["rating", "ranking"]

RATING_THRESHOLD = 0.5
RANKING_THRESHOLD = 2

HIGH_FIT_SCORE = 70
CONTACT_GAP_DAYS = 14


@dataclass(frozen=True)
class HistoryPoint:
    recorded_date: date
    value: float


@dataclass(frozen=True)
class Trend:
    label: str  # rising | falling | stable
    magnitude: float | int


STABLE = Trend("stable", 0)


def classify(points: Iterable[HistoryPoint], metric: Metric) -> Trend:
    """Classify a history series; fewer than two points is always stable."""
    ordered = sorted(points, key=lambda p: p.recorded_date)
    if len(ordered) < 2:
        return STABLE

    delta = ordered[-1].value - ordered[0].value
    if metric == "rating":
        magnitude: float | int = round_half_up(delta, 2)
        if magnitude >= RATING_THRESHOLD:
            return Trend("rising", magnitude)
        if magnitude <= -RATING_THRESHOLD:
            return Trend("falling", magnitude)
        return Trend("stable", magnitude)

    if metric == "ranking":
        magnitude = int(delta)
        if magnitude <= -RANKING_THRESHOLD:
            return Trend("rising", magnitude)
        if magnitude >= RANKING_THRESHOLD:
            return Trend("falling", magnitude)
        return Trend("stable", magnitude)

    raise ValueError(f"Unknown metric: {metric!r}")


# ---------------------------------------------------------------------------
# Discovery read model
# ---------------------------------------------------------------------------


def annotate(recruit: dict[str, Any]) -> dict[str, Any]:
    """Add ``utr_trend*`` and ``ranking_trend*`` fields to a serialized recruit.

    Expects ``utr_history`` / ``ranking_history`` lists of dicts with
    ``recorded_date`` (date) and ``utr_rating`` / ``national_ranking``.
    Histories come back sorted ascending.
    """
    utr = sorted(recruit.get("utr_history") or [], key=lambda h: h["recorded_date"])
    ranking = sorted(recruit.get("ranking_history") or [], key=lambda h: h["recorded_date"])

    utr_trend = classify((HistoryPoint(h["recorded_date"], h["utr_rating"]) for h in utr), "rating")
    ranking_trend = classify(
        (HistoryPoint(h["recorded_date"], h["national_ranking"]) for h in ranking), "ranking",
    )
    return {
        **recruit,
        "utr_history": utr,
        "ranking_history": ranking,
        "utr_trend": utr_trend.label,
        "utr_trend_value": utr_trend.magnitude,
        "ranking_trend": ranking_trend.label,
        "ranking_trend_value": ranking_trend.magnitude,
    }


def _high_fit(r: dict[str, Any]) -> bool:
    return (r.get("fit_score") or 0) >= HIGH_FIT_SCORE


def is_undervalued(r: dict[str, Any], ranking_min: int, ranking_max: int) -> bool:
    ranking = r.get("national_ranking")
    in_range = ranking is not None and ranking_min <= ranking <= ranking_max
    return in_range and (r["utr_trend"] == "rising" or _high_fit(r)) and r.get("priority") != "High"


def is_undercontacted(r: dict[str, Any], today: date) -> bool:
    if not _high_fit(r):
        return False
    last = r.get("last_contacted")
    if last is None:
        return True
    return (today - last).days > CONTACT_GAP_DAYS


def discovery_views(
    annotated: Sequence[dict[str, Any]], *, ranking_min: int, ranking_max: int, today: date,
) -> dict[str, list[dict[str, Any]]]:
    return {
        "all": list(annotated),
        "undervalued": [r for r in annotated if is_undervalued(r, ranking_min, ranking_max)],
        "rising_stars": [r for r in annotated if r["utr_trend_value"] >= RATING_THRESHOLD],
        "rising_rankings": [r for r in annotated if r["ranking_trend"] == "rising"],
        "undercontacted": [r for r in annotated if is_undercontacted(r, today)],
    }
