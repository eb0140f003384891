from __future__ import annotations

import json
from datetime import date, datetime

from sqlalchemy import (
    Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


SOURCES = ("itf", "tennisrecruiting")

# Weighted program-fit criteria; each score is entered on a 0-10 scale.
DEFAULT_FIT_CRITERIA = {
    "athletic_ability": {"label": "Athletic Ability", "weight": 25, "description": "Movement, speed, physical tools"},
    "tennis_iq": {"label": "Tennis IQ", "weight": 20, "description": "Shot selection, point construction"},
    "competitive_results": {"label": "Competitive Results", "weight": 20, "description": "Record against ranked opponents"},
    "academics": {"label": "Academics", "weight": 15, "description": "Admissibility and academic profile"},
    "character": {"label": "Character", "weight": 10, "description": "Coachability, team fit"},
    "program_need": {"label": "Program Need", "weight": 10, "description": "Fills a roster gap"},
}


class Recruit(Base):
    __tablename__ = "recruits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    class_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    nationality: Mapped[str] = mapped_column(String(10), default="")
    location: Mapped[str] = mapped_column(String(200), default="")
    plays: Mapped[str] = mapped_column(String(10), default="RHP")
    tennisrecruiting_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    itf_player_id: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    national_ranking: Mapped[int | None] = mapped_column(Integer, nullable=True)
    utr_rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    fit_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fit_score_breakdown_json: Mapped[str] = mapped_column(Text, default="{}")
    priority: Mapped[str] = mapped_column(String(20), default="Medium")  # High | Medium | Low
    status: Mapped[str] = mapped_column(String(50), default="Identified")
    last_contacted: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="")
    ai_brief: Mapped[str] = mapped_column(Text, default="")
    ai_brief_generated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    source_url: Mapped[str] = mapped_column(String(500), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    utr_history: Mapped[list[UTRHistory]] = relationship(
        "UTRHistory", back_populates="recruit", cascade="all, delete-orphan",
    )
    ranking_history: Mapped[list[RankingHistory]] = relationship(
        "RankingHistory", back_populates="recruit", cascade="all, delete-orphan",
    )
    match_results: Mapped[list[MatchResult]] = relationship(
        "MatchResult", back_populates="recruit", cascade="all, delete-orphan",
    )
    interactions: Mapped[list[Interaction]] = relationship(
        "Interaction", back_populates="recruit", cascade="all, delete-orphan",
    )


class Prospect(Base):
    __tablename__ = "scouting_prospects"
    __table_args__ = (UniqueConstraint("source", "external_id", name="uq_prospect_source_external"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(30), nullable=False)  # "itf" | "tennisrecruiting"
    external_id: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    current_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    rank_movement: Mapped[int] = mapped_column(Integer, default=0)
    is_rising: Mapped[bool] = mapped_column(Boolean, default=False)
    nationality: Mapped[str] = mapped_column(String(10), default="")
    birth_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    class_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    location: Mapped[str] = mapped_column(String(200), default="")
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class UTRHistory(Base):
    __tablename__ = "utr_history"
    __table_args__ = (UniqueConstraint("recruit_id", "recorded_date", name="uq_utr_recruit_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recruit_id: Mapped[int] = mapped_column(Integer, ForeignKey("recruits.id", ondelete="CASCADE"), nullable=False)
    utr_rating: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_date: Mapped[date] = mapped_column(Date, nullable=False)
    source: Mapped[str] = mapped_column(String(30), default="manual")  # "manual" | "cron"

    recruit: Mapped[Recruit] = relationship("Recruit", back_populates="utr_history")


class RankingHistory(Base):
    __tablename__ = "ranking_history"
    __table_args__ = (UniqueConstraint("recruit_id", "recorded_date", name="uq_ranking_recruit_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recruit_id: Mapped[int] = mapped_column(Integer, ForeignKey("recruits.id", ondelete="CASCADE"), nullable=False)
    national_ranking: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_date: Mapped[date] = mapped_column(Date, nullable=False)
    source: Mapped[str] = mapped_column(String(30), default="cron")

    recruit: Mapped[Recruit] = relationship("Recruit", back_populates="ranking_history")


class MatchResult(Base):
    __tablename__ = "match_results"
    __table_args__ = (
        UniqueConstraint("recruit_id", "tournament_name", "round", "opponent_name", name="uq_match_identity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recruit_id: Mapped[int] = mapped_column(Integer, ForeignKey("recruits.id", ondelete="CASCADE"), nullable=False)
    source: Mapped[str] = mapped_column(String(30), nullable=False)
    tournament_name: Mapped[str] = mapped_column(String(300), nullable=False)
    tournament_grade: Mapped[str] = mapped_column(String(50), default="")
    surface: Mapped[str] = mapped_column(String(50), default="")
    round: Mapped[str] = mapped_column(String(10), nullable=False)
    opponent_name: Mapped[str] = mapped_column(String(200), nullable=False)
    opponent_ranking: Mapped[int | None] = mapped_column(Integer, nullable=True)
    opponent_nationality: Mapped[str] = mapped_column(String(10), default="")
    opponent_itf_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    score: Mapped[str] = mapped_column(String(100), default="")
    result: Mapped[str] = mapped_column(String(1), nullable=False)  # "W" | "L"
    match_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    recruit: Mapped[Recruit] = relationship("Recruit", back_populates="match_results")


class Interaction(Base):
    __tablename__ = "interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    recruit_id: Mapped[int] = mapped_column(Integer, ForeignKey("recruits.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)  # call | email | text | visit ...
    contact_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[str] = mapped_column(Text, default="")
    author: Mapped[str] = mapped_column(String(100), default="")

    recruit: Mapped[Recruit] = relationship("Recruit", back_populates="interactions")


class ProgramProfile(Base):
    __tablename__ = "program_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    program_name: Mapped[str] = mapped_column(String(200), default="")
    target_ranking_min: Mapped[int] = mapped_column(Integer, default=1)
    target_ranking_max: Mapped[int] = mapped_column(Integer, default=200)
    criteria_json: Mapped[str] = mapped_column(Text, default=lambda: json.dumps(DEFAULT_FIT_CRITERIA))
