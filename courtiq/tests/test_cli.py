"""CLI tests: commands run against a throwaway SQLite file."""
from __future__ import annotations

import json
from datetime import date

import pytest
from sqlalchemy import select
from typer.testing import CliRunner

from courtiq.cli import app
from courtiq.db import session_scope
from courtiq.models import Interaction, ProgramProfile, Prospect, Recruit

runner = CliRunner()

LIST_PAGE = (
    "<html><body><h2>National Rankings</h2><table>"
    '<tr><td>1</td><td><a href="/player.asp?id=11">Ana Alvarez</a></td></tr>'
    '<tr><td>2</td><td><a href="/player.asp?id=12">Bea Brown</a></td></tr>'
    "</table></body></html>"
)

ITF_PAYLOAD = {"items": [
    {"playerId": "1", "rank": 40, "playerGivenName": "Ana", "playerFamilyName": "Alvarez",
     "playerNationalityCode": "USA"},
    {"playerId": "2", "rank": 41, "playerGivenName": "Bruna", "playerFamilyName": "Silva",
     "playerNationalityCode": "BRA"},
]}


@pytest.fixture()
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'cli.db'}"


def _invoke(db_url: str, *args: str):
    return runner.invoke(app, ["--db-url", db_url, "--json", *args])


class TestInitDb:
    def test_creates_schema_and_profile(self, db_url):
        result = _invoke(db_url, "init-db")
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {"status": "ok", "database_url": db_url}
        with session_scope() as session:
            assert session.execute(select(ProgramProfile)).scalars().first() is not None


class TestImportList:
    def test_saved_page_becomes_prospects(self, db_url, tmp_path):
        page = tmp_path / "list.html"
        page.write_text(LIST_PAGE, encoding="utf-8")

        result = _invoke(db_url, "import-list", str(page), "--class-year", "2028")

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert (payload["fetched"], payload["upserted"]) == (2, 2)
        with session_scope() as session:
            names = session.execute(select(Prospect.name).order_by(Prospect.current_rank)).scalars().all()
        assert names == ["Ana Alvarez", "Bea Brown"]

    def test_missing_file_is_usage_error(self, db_url, tmp_path):
        result = _invoke(db_url, "import-list", str(tmp_path / "nope.html"))
        assert result.exit_code != 0


class TestSyncItfFromFile:
    def test_imports_only_eligible_players(self, db_url, tmp_path):
        saved = tmp_path / "itf.json"
        saved.write_text(json.dumps(ITF_PAYLOAD), encoding="utf-8")

        result = _invoke(db_url, "sync-itf", "--from-file", str(saved))

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert (payload["total_fetched"], payload["after_filter"], payload["upserted"]) == (2, 1, 1)

    def test_malformed_file_is_usage_error(self, db_url, tmp_path):
        saved = tmp_path / "itf.json"
        saved.write_text("<html>challenge</html>", encoding="utf-8")

        result = _invoke(db_url, "sync-itf", "--from-file", str(saved))

        assert result.exit_code == 2
        assert "not valid JSON" in result.output


class TestFetchMatches:
    def test_unknown_recruit(self, db_url):
        assert _invoke(db_url, "init-db").exit_code == 0
        with session_scope() as session:
            assert session.execute(select(Recruit)).first() is None
        result = _invoke(db_url, "fetch-matches", "999")
        assert result.exit_code != 0


class TestExportContacts:
    @pytest.fixture()
    def seeded(self, db_url):
        assert _invoke(db_url, "init-db").exit_code == 0
        with session_scope() as session:
            ivy = Recruit(name="Ivy Ito", class_year=2027, national_ranking=35)
            zoe = Recruit(name="Zoe Zhu", class_year=2028)
            session.add_all([ivy, zoe])
            session.flush()
            session.add_all([
                Interaction(recruit_id=ivy.id, type="call", contact_date=date(2026, 9, 1), author="Coach K"),
                Interaction(recruit_id=zoe.id, type="visit", contact_date=date(2026, 10, 5)),
            ])
            session.commit()
            return ivy.id

    def test_stdout(self, db_url, seeded):
        result = runner.invoke(app, ["--db-url", db_url, "export-contacts"])
        assert result.exit_code == 0, result.output
        assert result.stdout.splitlines() == [
            "recruit_name,recruit_ranking,class_year,contact_date,contact_type,notes,coach_name",
            "Zoe Zhu,,2028,2026-10-05,visit,,",
            "Ivy Ito,35,2027,2026-09-01,call,,Coach K",
        ]

    def test_file_for_one_recruit(self, db_url, seeded, tmp_path):
        out = tmp_path / "arms.csv"
        result = _invoke(db_url, "export-contacts", "--recruit-id", str(seeded), "--output", str(out))
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {"output": str(out), "rows": 1}
        assert out.read_text(encoding="utf-8").splitlines()[1] == "Ivy Ito,35,2027,2026-09-01,call,,Coach K"
