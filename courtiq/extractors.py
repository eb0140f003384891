"""HTML extractors for the two ranking sources.

Every extractor is a pure function ``extract(html) -> records``: no I/O, no
state, and no exceptions for the caller to handle.  Missing or mangled
markup produces an empty (or partial) result.

Parsing goes through an lxml tree.  The only rule that still reads raw
markup is the loosest single-page ranking fallback, whose whole point is to
catch numbers the structured rules cannot see.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Protocol

from lxml import etree, html as lxml_html

log = logging.getLogger(__name__)

UNRANKED = 999
LIST_RANK_MIN = 1
LIST_RANK_MAX = 200
PAGE_RANK_MAX = 10_000

VALID_ROUNDS = frozenset({"R1", "R2", "R3", "R4", "R5", "R64", "R32", "R16", "QF", "SF", "F", "W", "RR"})

ALLOWED_NATIONALITIES = frozenset({
    "USA", "GBR", "AUS", "CAN", "NZL", "IRL", "RSA", "BAH",
    "SUI", "SWE", "NOR", "DEN", "NED", "GER", "AUT", "FIN", "BEL",
    "IND", "HKG", "SGP", "HUN", "SVK", "ESP", "FRA", "ITA",
})


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class ExternalPlayerRecord:
    source: str
    external_id: str
    name: str
    rank: int
    nationality: str = ""
    birth_year: int | None = None
    rank_movement: int | None = None
    class_year: int | None = None
    location: str = ""


@dataclass
class MatchRecord:
    tournament_name: str
    round: str
    opponent_name: str
    result: str  # "W" | "L"
    score: str = ""
    tournament_grade: str = ""
    surface: str = ""
    opponent_ranking: int | None = None
    opponent_nationality: str = ""
    opponent_itf_id: str | None = None


class Extractor(Protocol):
    def __call__(self, raw_html: str) -> list[Any]: ...


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------


def _parse(raw_html: str | None):
    if not raw_html or not raw_html.strip():
        return None
    try:
        return lxml_html.fromstring(raw_html)
    except (etree.ParserError, etree.XMLSyntaxError, ValueError):
        return None


def _has_class(el, token: str) -> bool:
    return token in (el.get("class") or "").split()


def _text(el) -> str:
    return " ".join(el.text_content().split())


def _plain_text(el) -> str | None:
    """Text of an element that has no child elements, else None."""
    if len(el):
        return None
    return (el.text or "").strip()


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        try:
            return int(float(str(value).strip()))
        except (TypeError, ValueError, OverflowError):
            return None


# ---------------------------------------------------------------------------
# Ranking list pages (tennisrecruiting list.asp)
# ---------------------------------------------------------------------------

_PLAYER_HREF_RE = re.compile(r"/player\.asp\?id=(\d+)")
_RANK_CELL_RE = re.compile(r"\d{1,3}")


def extract_ranking_list(raw_html: str) -> list[ExternalPlayerRecord]:
    """Extract ranked players from a list page.

    Player links and rank cells are collected independently, in document
    order, once the first ``h1``/``h2`` heading has been seen (a page with no
    heading is scanned from the top).  The i-th player takes the i-th rank;
    players left over when ranks run out get :data:`UNRANKED`.
    """
    root = _parse(raw_html)
    if root is None:
        return []

    started = not root.xpath("//h1 | //h2")
    players: list[tuple[str, str]] = []
    ranks: list[int] = []

    for el in root.iter():
        if not isinstance(el.tag, str):
            continue
        tag = el.tag.lower()
        if not started:
            started = tag in ("h1", "h2")
            continue
        if tag == "td":
            text = _plain_text(el)
            if text and _RANK_CELL_RE.fullmatch(text):
                num = int(text)
                if LIST_RANK_MIN <= num <= LIST_RANK_MAX:
                    ranks.append(num)
        elif tag == "a":
            m = _PLAYER_HREF_RE.fullmatch(el.get("href") or "")
            name = _plain_text(el)
            if not m or not name or len(name) < 2:
                continue
            players.append((m.group(1), name))

    return [
        ExternalPlayerRecord(
            source="tennisrecruiting",
            external_id=player_id,
            name=name,
            rank=ranks[idx] if idx < len(ranks) else UNRANKED,
        )
        for idx, (player_id, name) in enumerate(players)
    ]


# ---------------------------------------------------------------------------
# Single profile page ranking (tennisrecruiting player.asp)
# ---------------------------------------------------------------------------

_NATION_RANK_RE = re.compile(r"Ranked (\d+)(?:st|nd|rd|th) in the nation", re.I)
_LEADING_NUMBER_RE = re.compile(r"\s*#?(\d+)")
_NATIONAL_RANKING_LABEL_RE = re.compile(r"National\s+Ranking", re.I)
_LOOSE_RANK_RE = re.compile(r"rank(?:ing)?[^<]{0,40}#(\d+)", re.I)
_DIGITS_RE = re.compile(r"[0-9]+")


def _rule_meta_description(root, raw_html: str) -> str | None:
    for meta in root.iter("meta"):
        if (meta.get("name") or "").lower() != "twitter:description":
            continue
        m = _NATION_RANK_RE.search(meta.get("content") or "")
        if m:
            return m.group(1)
    return None


def _rule_list_link(root, raw_html: str) -> str | None:
    for a in root.iter("a"):
        if "/list.asp" not in (a.get("href") or ""):
            continue
        text = _plain_text(a)
        if text and _DIGITS_RE.fullmatch(text):
            return text
    return None


def _rule_label_cell(root, raw_html: str) -> str | None:
    for td in root.iter("td"):
        if not _NATIONAL_RANKING_LABEL_RE.search(_text(td)):
            continue
        value_cell = td.getnext()
        if value_cell is None or value_cell.tag != "td":
            continue
        m = _LEADING_NUMBER_RE.match(value_cell.text_content())
        if m:
            return m.group(1)
    return None


def _rule_ranking_attribute(root, raw_html: str) -> str | None:
    for el in root.iter():
        if not isinstance(el.tag, str):
            continue
        if not any(v.lower() == "ranking" for v in el.attrib.values()):
            continue
        m = _LEADING_NUMBER_RE.match(el.text or "")
        if m:
            return m.group(1)
    return None


def _rule_loose_text(root, raw_html: str) -> str | None:
    m = _LOOSE_RANK_RE.search(raw_html)
    return m.group(1) if m else None


# Most structured first. The loose rule has the highest false-positive rate
# and must stay last.
RANKING_RULES: tuple[tuple[str, Callable[[Any, str], str | None]], ...] = (
    ("meta_description", _rule_meta_description),
    ("list_link", _rule_list_link),
    ("label_cell", _rule_label_cell),
    ("ranking_attribute", _rule_ranking_attribute),
    ("loose_text", _rule_loose_text),
)


def match_player_ranking(raw_html: str) -> tuple[str, int] | None:
    """Return ``(rule_name, ranking)`` for the first rule yielding a plausible value."""
    if not raw_html:
        return None
    root = _parse(raw_html)
    for name, rule in RANKING_RULES:
        if root is None and rule is not _rule_loose_text:
            continue
        value = rule(root, raw_html)
        if value is None:
            continue
        num = _as_int(value)
        if num is None:
            continue
        if 0 < num < PAGE_RANK_MAX:
            return name, num
        log.debug("Ranking rule %s matched implausible value %d", name, num)
    return None


def extract_player_ranking(raw_html: str) -> int | None:
    """National ranking from a profile page, or None when no rule matches."""
    hit = match_player_ranking(raw_html)
    return hit[1] if hit else None


# ---------------------------------------------------------------------------
# Activity pages, dialect A (tennisrecruiting activity.asp)
# ---------------------------------------------------------------------------

_ROUND_TOKEN_RE = re.compile(r"[A-Z0-9]{1,5}", re.I)
_SCORE_RE = re.compile(r"\b(\d-\d(?:\(\d+\))?(?:\s+\d-\d(?:\(\d+\))?)+)\b")
_NAME_RANK_RE = re.compile(r"^(.+?)\s*\((\d+)\)\s*$")


def split_opponent(text: str) -> tuple[str, int | None]:
    """``"Jane Doe (123)"`` -> ``("Jane Doe", 123)``."""
    text = text.strip()
    m = _NAME_RANK_RE.match(text)
    if m:
        return m.group(1).strip(), _as_int(m.group(2))
    return text, None


def _round_token(row) -> str | None:
    for td in row.iter("td"):
        if not _has_class(td, "c"):
            continue
        text = _plain_text(td)
        if text and _ROUND_TOKEN_RE.fullmatch(text):
            return text.upper()
    return None


def _outcome_cell(row, token: str):
    for td in row.iter("td"):
        if _has_class(td, token) and _text(td):
            return td
    return None


def _opponent_anchor(scope) -> str | None:
    for a in scope.iter("a"):
        href = (a.get("href") or "").lower()
        if "player" not in href and "profile" not in href:
            continue
        text = _plain_text(a)
        if text:
            return text
    return None


def _row_score(row) -> str:
    for td in row.iter("td"):
        m = _SCORE_RE.search(_text(td))
        if m:
            return m.group(1).strip()
    return ""


def extract_tr_activity(raw_html: str) -> list[MatchRecord]:
    """Match rows grouped under the most recent ``th.doublewide`` tournament title.

    A row needs a whitelisted round code in a ``td.c`` cell and an opponent
    in a non-empty ``td.win`` or ``td.loss`` cell; which of the two cells is
    filled decides the result.
    """
    root = _parse(raw_html)
    if root is None:
        return []

    matches: list[MatchRecord] = []
    current_tournament = ""

    for row in root.iter("tr"):
        header = next((th for th in row.iter("th") if _has_class(th, "doublewide")), None)
        if header is not None:
            current_tournament = _text(header)
            continue
        if not current_tournament:
            continue

        round_code = _round_token(row)
        if round_code is None or round_code not in VALID_ROUNDS:
            continue

        win_cell = _outcome_cell(row, "win")
        loss_cell = _outcome_cell(row, "loss")
        if win_cell is not None:
            result, deciding = "W", win_cell
        elif loss_cell is not None:
            result, deciding = "L", loss_cell
        else:
            continue

        anchor_text = _opponent_anchor(deciding) or _opponent_anchor(row)
        if not anchor_text:
            continue
        opponent_name, opponent_ranking = split_opponent(anchor_text)

        matches.append(MatchRecord(
            tournament_name=current_tournament,
            round=round_code,
            opponent_name=opponent_name,
            opponent_ranking=opponent_ranking,
            score=_row_score(row),
            result=result,
        ))

    return matches


# ---------------------------------------------------------------------------
# Activity pages, dialect B (ITF player activity widget)
# ---------------------------------------------------------------------------

_ITF_WIDGET = "pprofile-activity-widget__"
_PLAYER2_RE = re.compile(r"[?&]player2Id=([^&\"'\s]+)")


def _class_sequence(root, fragment: str) -> list[str]:
    return [_text(el) for el in root.xpath("//*[contains(@class, $frag)]", frag=fragment)]


def extract_itf_activity(raw_html: str) -> list[MatchRecord]:
    """Reassemble matches from parallel label sequences by position.

    Rounds, results, grades, surfaces, names, scores, titles, flags and
    head-to-head ids are each collected on their own; the i-th entry of
    every sequence belongs to the i-th match.  A missing entry in one
    sequence shifts everything after it.
    """
    root = _parse(raw_html)
    if root is None:
        return []

    rounds = _class_sequence(root, _ITF_WIDGET + "round-label--non-mobile")
    win_losses = _class_sequence(root, _ITF_WIDGET + "win-loss")
    grades = _class_sequence(root, _ITF_WIDGET + "tournament-type")
    surfaces = _class_sequence(root, _ITF_WIDGET + "surface")
    last_names = _class_sequence(root, _ITF_WIDGET + "last-name")
    first_names = _class_sequence(root, _ITF_WIDGET + "first-name")
    scores = _class_sequence(root, _ITF_WIDGET + "score")
    titles = _class_sequence(root, "pprofile-activity-tournament__title")

    nationalities = [
        (el.get("title") or "").strip()
        for el in root.xpath("//*[contains(@class, 'itf-flags')][@title]")
    ]
    player2_ids = [m.group(1).strip() for href in root.xpath("//@href") for m in _PLAYER2_RE.finditer(href)]

    def at(seq: list[str], idx: int) -> str:
        return seq[idx] if idx < len(seq) else ""

    matches: list[MatchRecord] = []
    for idx in range(len(rounds)):
        outcome = at(win_losses, idx).upper().strip()
        if outcome not in ("W", "L"):
            continue
        opponent = " ".join(p for p in (at(first_names, idx), at(last_names, idx)) if p).strip()
        if not opponent:
            continue
        matches.append(MatchRecord(
            tournament_name=at(titles, idx) or "Unknown Tournament",
            tournament_grade=at(grades, idx),
            surface=at(surfaces, idx),
            round=rounds[idx],
            result=outcome,
            opponent_name=opponent,
            opponent_nationality=at(nationalities, idx),
            opponent_itf_id=at(player2_ids, idx) or None,
            score=at(scores, idx),
        ))
    return matches


ACTIVITY_EXTRACTORS: dict[str, Extractor] = {
    "tennisrecruiting": extract_tr_activity,
    "itf": extract_itf_activity,
}


# ---------------------------------------------------------------------------
# ITF ranking API payloads
# ---------------------------------------------------------------------------


def parse_itf_rankings(payload: Any) -> list[ExternalPlayerRecord]:
    """Normalize the ITF junior ranking JSON (a list, or ``{"items": [...]}``)."""
    if isinstance(payload, dict):
        payload = payload.get("items") or []
    if not isinstance(payload, list):
        return []

    records: list[ExternalPlayerRecord] = []
    for item in payload:
        if not isinstance(item, dict):
            continue
        player_id = str(item.get("playerId") or "").strip()
        rank = _as_int(item.get("rank"))
        if not player_id or rank is None:
            continue
        given = str(item.get("playerGivenName") or "").strip()
        family = str(item.get("playerFamilyName") or "").strip()
        records.append(ExternalPlayerRecord(
            source="itf",
            external_id=player_id,
            name=f"{given} {family}".strip(),
            rank=rank,
            nationality=str(item.get("playerNationalityCode") or "").strip().upper(),
            birth_year=_as_int(item.get("birthYear")),
            rank_movement=_as_int(item.get("rankMovement")),
        ))
    return records


def filter_eligible(records: Iterable[ExternalPlayerRecord]) -> list[ExternalPlayerRecord]:
    """Keep players whose nationality is on the recruiting whitelist."""
    return [r for r in records if r.nationality in ALLOWED_NATIONALITIES]
