"""Tests for prospect reconciliation and the upsert/insert-or-ignore writers."""
from __future__ import annotations

from datetime import UTC, date, datetime

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from courtiq.errors import PersistenceConflict
from courtiq.extractors import ExternalPlayerRecord, MatchRecord
from courtiq.models import Base, MatchResult, Prospect, RankingHistory, Recruit, UTRHistory
from courtiq.reconcile import (
    RISING_THRESHOLD,
    ingest_matches,
    insert_history,
    load_prior_ranks,
    rank_movement,
    reconcile,
    tracked_external_ids,
    upsert_prospects,
)

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    sess = factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def recruit(session: Session) -> Recruit:
    r = Recruit(name="Zoe Zed", tennisrecruiting_id="555", itf_player_id="800555")
    session.add(r)
    session.flush()
    return r


def _player(external_id: str, rank: int, source: str = "tennisrecruiting", **kw) -> ExternalPlayerRecord:
    return ExternalPlayerRecord(source=source, external_id=external_id, name=f"Player {external_id}", rank=rank, **kw)


def _count(session: Session, model) -> int:
    return session.execute(select(func.count(model.id))).scalar_one()


# ---------------------------------------------------------------------------
# Tests: reconcile (pure)
# ---------------------------------------------------------------------------


class TestRankMovement:
    def test_positive_means_moved_up(self):
        assert rank_movement(40, 25) == 15

    def test_negative_means_dropped(self):
        assert rank_movement(20, 25) == -5


class TestReconcile:
    def test_first_sight_has_zero_movement(self):
        (row,) = reconcile([_player("1", 30)], {}, now=NOW)
        assert (row.current_rank, row.previous_rank, row.rank_movement, row.is_rising) == (30, 30, 0, False)
        assert row.last_synced_at == NOW

    def test_movement_against_prior_snapshot(self):
        rows = reconcile(
            [_player("1", 25), _player("2", 25), _player("3", 25)],
            {"1": 40, "2": 30, "3": 20},
            now=NOW,
        )
        assert [(r.previous_rank, r.rank_movement, r.is_rising) for r in rows] == [
            (40, 15, True),
            (30, 5, False),
            (20, -5, False),
        ]

    def test_rising_threshold_is_inclusive(self):
        (row,) = reconcile([_player("1", 50)], {"1": 50 + RISING_THRESHOLD}, now=NOW)
        assert row.rank_movement == RISING_THRESHOLD
        assert row.is_rising is True

    def test_tracked_ids_are_excluded(self):
        rows = reconcile([_player("1", 1), _player("2", 2)], {}, excluded_ids={"2"}, now=NOW)
        assert [r.external_id for r in rows] == ["1"]

    def test_first_duplicate_in_batch_wins(self):
        rows = reconcile([_player("1", 5), _player("1", 9)], {}, now=NOW)
        assert [(r.external_id, r.current_rank) for r in rows] == [("1", 5)]

    def test_source_rank_movement_is_not_used(self):
        (row,) = reconcile([_player("1", 20, source="itf", rank_movement=-50)], {"1": 22}, now=NOW)
        assert row.rank_movement == 2

    def test_record_attributes_carried_through(self):
        (row,) = reconcile(
            [_player("7", 3, source="itf", nationality="GBR", birth_year=2008, class_year=2027, location="London")],
            {}, now=NOW,
        )
        assert (row.source, row.nationality, row.birth_year, row.class_year, row.location) == (
            "itf", "GBR", 2008, 2027, "London",
        )

    def test_reapplying_current_ranks_is_a_fixed_point(self):
        fresh = [_player("1", 12), _player("2", 40), _player("3", 7)]
        first = reconcile(fresh, {"1": 30, "2": 35}, now=NOW)
        snapshot = {r.external_id: r.current_rank for r in first}

        second = reconcile(fresh, snapshot, now=NOW)
        assert all(r.previous_rank == r.current_rank for r in second)
        assert all(r.rank_movement == 0 and not r.is_rising for r in second)

        third = reconcile(fresh, {r.external_id: r.current_rank for r in second}, now=NOW)
        assert third == second


# ---------------------------------------------------------------------------
# Tests: database writers
# ---------------------------------------------------------------------------


class TestUpsertProspects:
    def test_insert_then_update_in_place(self, session):
        upsert_prospects(session, reconcile([_player("1", 30), _player("2", 50)], {}, now=NOW))
        session.commit()
        assert _count(session, Prospect) == 2

        prior = load_prior_ranks(session, "tennisrecruiting")
        assert prior == {"1": 30, "2": 50}

        upsert_prospects(session, reconcile([_player("1", 15)], prior, now=NOW))
        session.commit()
        assert _count(session, Prospect) == 2
        row = session.execute(
            select(Prospect.current_rank, Prospect.previous_rank, Prospect.rank_movement, Prospect.is_rising)
            .where(Prospect.external_id == "1")
        ).one()
        assert tuple(row) == (15, 30, 15, True)

    def test_same_external_id_in_two_sources(self, session):
        upsert_prospects(session, reconcile([_player("1", 3)], {}, now=NOW))
        upsert_prospects(session, reconcile([_player("1", 9, source="itf")], {}, now=NOW))
        session.commit()
        assert _count(session, Prospect) == 2
        assert load_prior_ranks(session, "itf") == {"1": 9}

    def test_empty_batch(self, session):
        assert upsert_prospects(session, []) == 0


class TestTrackedExternalIds:
    def test_per_source_columns(self, session, recruit):
        session.add(Recruit(name="No Ids"))
        session.flush()
        assert tracked_external_ids(session, "tennisrecruiting") == {"555"}
        assert tracked_external_ids(session, "itf") == {"800555"}


class TestIngestMatches:
    RECORDS = [
        MatchRecord(tournament_name="Winter Nationals", round="R32", opponent_name="Mary Major", result="W",
                    score="6-3 6-4", opponent_ranking=45),
        MatchRecord(tournament_name="Winter Nationals", round="R16", opponent_name="Nina North", result="L"),
    ]

    def test_duplicates_are_dropped(self, session, recruit):
        assert ingest_matches(session, recruit.id, "tennisrecruiting", self.RECORDS) == 2
        session.commit()
        assert ingest_matches(session, recruit.id, "tennisrecruiting", self.RECORDS) == 0
        session.commit()
        assert _count(session, MatchResult) == 2

    def test_partial_overlap_counts_only_new_rows(self, session, recruit):
        ingest_matches(session, recruit.id, "tennisrecruiting", self.RECORDS[:1])
        assert ingest_matches(session, recruit.id, "tennisrecruiting", self.RECORDS) == 1

    def test_stored_fields(self, session, recruit):
        ingest_matches(session, recruit.id, "tennisrecruiting", self.RECORDS[:1])
        session.commit()
        row = session.execute(select(MatchResult)).scalars().one()
        assert (row.source, row.round, row.opponent_ranking, row.score) == ("tennisrecruiting", "R32", 45, "6-3 6-4")

    def test_empty(self, session, recruit):
        assert ingest_matches(session, recruit.id, "itf", []) == 0


class TestInsertHistory:
    def test_same_day_duplicate_conflicts(self, session, recruit):
        day = date(2026, 10, 1)
        insert_history(session, RankingHistory, recruit.id, 40, day, "cron")
        with pytest.raises(PersistenceConflict):
            insert_history(session, RankingHistory, recruit.id, 35, day, "cron")
        session.commit()
        values = session.execute(select(RankingHistory.national_ranking)).scalars().all()
        assert values == [40]

    def test_different_days(self, session, recruit):
        insert_history(session, UTRHistory, recruit.id, 10.5, date(2026, 9, 1), "manual")
        insert_history(session, UTRHistory, recruit.id, 10.8, date(2026, 10, 1), "manual")
        session.commit()
        assert _count(session, UTRHistory) == 2
