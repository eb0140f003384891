"""Tests for the recruit brief prompt and the LLM client wrapper."""
from __future__ import annotations

from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from courtiq.brief import (
    BRIEF_MAX_TOKENS,
    BRIEF_SYSTEM_PROMPT,
    LLMCallError,
    LLMClient,
    build_recruit_dossier,
    generate_brief,
)
from courtiq.models import Interaction, Recruit


def _recruit(**overrides) -> Recruit:
    fields = dict(
        id=7, name="Ivy Ito", class_year=2027, nationality="USA", location="Austin, TX",
        national_ranking=35, utr_rating=10.456, plays="LHP", priority="High",
        fit_score=None, status="Contacted", notes="",
    )
    fields.update(overrides)
    return Recruit(**fields)


class TestBuildRecruitDossier:
    def test_fields_and_newest_contact_first(self):
        interactions = [
            Interaction(type="call", contact_date=date(2026, 9, 1), notes="Intro", author="Coach K"),
            Interaction(type="visit", contact_date=date(2026, 10, 5), notes="Campus tour", author=""),
        ]
        dossier = build_recruit_dossier(_recruit(), interactions)

        assert "National Ranking: #35" in dossier
        assert "UTR: 10.46" in dossier
        assert "Program Fit Score: Not scored" in dossier
        assert "No scouting notes added yet." in dossier
        assert dossier.index("VISIT on 2026-10-05") < dossier.index("CALL on 2026-09-01: Intro (logged by Coach K)")

    def test_unranked_without_history(self):
        dossier = build_recruit_dossier(_recruit(national_ranking=None, utr_rating=None), [])
        assert "National Ranking: Unranked" in dossier
        assert "UTR: Unknown" in dossier
        assert "No interactions logged yet." in dossier


class TestGenerateBrief:
    @pytest.mark.asyncio
    async def test_strips_completion(self):
        client = MagicMock(spec=LLMClient)
        client.complete = AsyncMock(return_value="  Aggressive lefty with a big serve.\n")

        brief = await generate_brief(_recruit(), [], client)

        assert brief == "Aggressive lefty with a big serve."
        system, user = client.complete.await_args.args
        assert system == BRIEF_SYSTEM_PROMPT
        assert "Name: Ivy Ito" in user

    @pytest.mark.asyncio
    async def test_empty_completion_raises(self):
        client = MagicMock(spec=LLMClient)
        client.complete = AsyncMock(return_value="   ")
        with pytest.raises(LLMCallError):
            await generate_brief(_recruit(), [], client)


class TestLLMClient:
    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            LLMClient("gemini")

    def test_default_model(self):
        assert LLMClient("anthropic").model == "claude-haiku-4-5-20251001"
        assert LLMClient("anthropic", "claude-sonnet-4-5").model == "claude-sonnet-4-5"

    @pytest.mark.asyncio
    async def test_anthropic_text_blocks_are_joined(self):
        client = LLMClient("anthropic")
        create = AsyncMock(return_value=SimpleNamespace(
            content=[SimpleNamespace(text="Strong "), SimpleNamespace(text="baseliner.")],
        ))
        client._client = SimpleNamespace(messages=SimpleNamespace(create=create))

        assert await client.complete("sys", "user") == "Strong baseliner."
        assert create.await_args.kwargs["max_tokens"] == BRIEF_MAX_TOKENS
        assert create.await_args.kwargs["system"] == "sys"

    @pytest.mark.asyncio
    async def test_provider_error_is_wrapped(self):
        client = LLMClient("anthropic")
        create = AsyncMock(side_effect=RuntimeError("rate limited"))
        client._client = SimpleNamespace(messages=SimpleNamespace(create=create))

        with pytest.raises(LLMCallError, match="rate limited"):
            await client.complete("sys", "user")
