"""Pydantic request/response schemas for the CourtIQ API."""
from __future__ import annotations

import datetime as dt
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


Source = Literal["itf", "tennisrecruiting"]


class HistoryPointOut(BaseModel):
    id: int
    recorded_date: dt.date
    source: str


class UTRPointOut(HistoryPointOut):
    utr_rating: float


class RankingPointOut(HistoryPointOut):
    national_ranking: int


class RecruitOut(BaseModel):
    id: int
    name: str
    class_year: int | None = None
    nationality: str = ""
    location: str = ""
    plays: str = ""
    tennisrecruiting_id: str | None = None
    itf_player_id: str | None = None
    national_ranking: int | None = None
    utr_rating: float | None = None
    fit_score: int | None = None
    fit_score_breakdown: dict[str, Any] = {}
    priority: str = ""
    status: str = ""
    last_contacted: dt.date | None = None
    notes: str = ""
    ai_brief: str = ""
    source_url: str = ""
    utr_history: list[UTRPointOut] = []
    ranking_history: list[RankingPointOut] = []


class AnnotatedRecruitOut(RecruitOut):
    utr_trend: str
    utr_trend_value: float
    ranking_trend: str
    ranking_trend_value: int


class DiscoveryOut(BaseModel):
    all: list[AnnotatedRecruitOut]
    undervalued: list[AnnotatedRecruitOut]
    rising_stars: list[AnnotatedRecruitOut]
    rising_rankings: list[AnnotatedRecruitOut]
    undercontacted: list[AnnotatedRecruitOut]


class RecruitCreate(BaseModel):
    name: str = Field(min_length=1)
    class_year: int | None = None
    nationality: str = ""
    location: str = ""
    plays: str = "RHP"
    tennisrecruiting_id: str | None = None
    itf_player_id: str | None = None
    national_ranking: int | None = None
    utr_rating: float | None = None
    priority: str = "Medium"
    status: str = "Identified"
    notes: str = ""
    source_url: str = ""

    @field_validator("tennisrecruiting_id", "itf_player_id", mode="before")
    @classmethod
    def blank_id_is_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v.strip() if isinstance(v, str) else v


class RecruitUpdate(BaseModel):
    name: str | None = None
    class_year: int | None = None
    nationality: str | None = None
    location: str | None = None
    plays: str | None = None
    tennisrecruiting_id: str | None = None
    itf_player_id: str | None = None
    national_ranking: int | None = None
    priority: str | None = None
    status: str | None = None
    notes: str | None = None


class ProspectOut(BaseModel):
    id: int
    source: str
    external_id: str
    name: str
    current_rank: int
    previous_rank: int
    rank_movement: int
    is_rising: bool
    nationality: str
    birth_year: int | None = None
    class_year: int | None = None
    location: str = ""
    last_synced_at: dt.datetime


class ProspectHTMLImport(BaseModel):
    """Ranking-list markup captured in the browser."""
    html: str = Field(min_length=1)
    class_year: int | None = None


class ITFPlayersImport(BaseModel):
    players: list[dict[str, Any]]


class MatchResultOut(BaseModel):
    id: int
    recruit_id: int
    source: str
    tournament_name: str
    tournament_grade: str = ""
    surface: str = ""
    round: str
    opponent_name: str
    opponent_ranking: int | None = None
    opponent_nationality: str = ""
    opponent_itf_id: str | None = None
    score: str = ""
    result: str
    match_date: dt.date | None = None


class MatchIngestRequest(BaseModel):
    """Either a recruit id (server-side fetch) or raw HTML from the browser."""
    recruit_id: int | None = None
    source: Source | None = None
    html: str | None = None
    tennisrecruiting_id: str | None = None
    itf_player_id: str | None = None

    @model_validator(mode="after")
    def check_mode(self) -> MatchIngestRequest:
        if self.html:
            if self.source is None:
                raise ValueError("source is required when html is supplied")
            if self.recruit_id is None and not (self.tennisrecruiting_id or self.itf_player_id):
                raise ValueError("html requires recruit_id or a source-specific player id")
        elif self.recruit_id is None:
            raise ValueError("recruit_id or html is required")
        return self


class MatchIngestOut(BaseModel):
    success: bool = True
    fetched: int
    inserted: int
    by_source: dict[str, int] = {}
    failed_sources: list[str] = []


class UTREntryCreate(BaseModel):
    recruit_id: int
    utr_rating: float = Field(ge=0, le=17)
    recorded_date: dt.date
    source: str = "manual"


class RankingEntryCreate(BaseModel):
    recruit_id: int
    national_ranking: int = Field(gt=0)
    recorded_date: dt.date
    source: str = "manual"


class InteractionCreate(BaseModel):
    recruit_id: int
    type: str = Field(min_length=1)
    contact_date: dt.date
    notes: str = ""
    author: str = ""


class ProgramProfileOut(BaseModel):
    id: int
    program_name: str
    target_ranking_min: int
    target_ranking_max: int
    criteria: dict[str, Any] = {}


class ProgramProfileUpdate(BaseModel):
    program_name: str | None = None
    target_ranking_min: int | None = Field(default=None, ge=1)
    target_ranking_max: int | None = Field(default=None, ge=1)
    criteria: dict[str, Any] | None = None


class FitRequest(BaseModel):
    recruit_id: int
    scores: dict[str, float]


class FitOut(BaseModel):
    success: bool = True
    fit_score: int
    breakdown: dict[str, Any]


class BriefRequest(BaseModel):
    recruit_id: int


