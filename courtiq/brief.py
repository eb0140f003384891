"""Coach-ready recruit briefs from a hosted LLM."""
from __future__ import annotations

import logging
import os
from typing import Any, Sequence

from courtiq.models import Interaction, Recruit

log = logging.getLogger(__name__)

BRIEF_MAX_TOKENS = 300

DEFAULT_MODELS = {
    "anthropic": "claude-haiku-4-5-20251001",
    "openai": "gpt-4o-mini",
}


class LLMCallError(Exception):
    """The provider call failed or produced no brief."""


BRIEF_SYSTEM_PROMPT = """\
You are an assistant helping a college tennis coach evaluate a recruit. \
Write a concise, coach-ready brief of 3-4 sentences. Focus on playing \
identity, program fit, relationship status, and any risks or open questions. \
Be direct and practical; this is for a busy coach, not a report. Do not use \
headers or bullet points. Write in plain prose as if briefing the head coach \
before a call.
"""


class LLMClient:
    """Plain-text completions from Anthropic or OpenAI.

    API keys come from ``ANTHROPIC_API_KEY`` / ``OPENAI_API_KEY``.
    """

    def __init__(self, provider: str = "anthropic", model: str | None = None):
        if provider not in DEFAULT_MODELS:
            raise ValueError(f"Unknown LLM provider: {provider!r}")
        self.provider = provider
        self.model = model or DEFAULT_MODELS[provider]
        self._client: Any
        if provider == "anthropic":
            import anthropic
            self._client = anthropic.AsyncAnthropic(api_key=os.environ.get("ANTHROPIC_API_KEY"))
        else:
            import openai
            self._client = openai.AsyncOpenAI(api_key=os.environ.get("OPENAI_API_KEY"))

    async def complete(self, system: str, user: str) -> str:
        try:
            if self.provider == "anthropic":
                response = await self._client.messages.create(
                    model=self.model,
                    max_tokens=BRIEF_MAX_TOKENS,
                    system=system,
                    messages=[{"role": "user", "content": user}],
                )
                return "".join(getattr(block, "text", "") for block in response.content)
            response = await self._client.chat.completions.create(
                model=self.model,
                max_tokens=BRIEF_MAX_TOKENS,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
            return response.choices[0].message.content or ""
        except Exception as exc:
            raise LLMCallError(f"{self.provider} call failed: {exc}") from exc


def build_recruit_dossier(recruit: Recruit, interactions: Sequence[Interaction]) -> str:
    ranking = f"#{recruit.national_ranking}" if recruit.national_ranking else "Unranked"
    utr = f"{recruit.utr_rating:.2f}" if recruit.utr_rating is not None else "Unknown"
    fit = f"{recruit.fit_score}/100" if recruit.fit_score is not None else "Not scored"

    if interactions:
        history = "\n".join(
            f"{i.type.upper()} on {i.contact_date.isoformat()}: {i.notes}"
            + (f" (logged by {i.author})" if i.author else "")
            for i in sorted(interactions, key=lambda i: i.contact_date, reverse=True)
        )
    else:
        history = "No interactions logged yet."

    return (
        "RECRUIT INFORMATION:\n"
        f"Name: {recruit.name}\n"
        f"Class Year: {recruit.class_year or 'Unknown'}\n"
        f"Nationality: {recruit.nationality or 'Unknown'}\n"
        f"Location: {recruit.location or 'Unknown'}\n"
        f"National Ranking: {ranking}\n"
        f"UTR: {utr}\n"
        f"Plays: {recruit.plays}\n"
        f"Priority: {recruit.priority}\n"
        f"Program Fit Score: {fit}\n"
        f"Status: {recruit.status}\n\n"
        "SCOUTING NOTES:\n"
        f"{recruit.notes or 'No scouting notes added yet.'}\n\n"
        "INTERACTION HISTORY:\n"
        f"{history}"
    )


async def generate_brief(
    recruit: Recruit, interactions: Sequence[Interaction], client: LLMClient,
) -> str:
    brief = (await client.complete(BRIEF_SYSTEM_PROMPT, build_recruit_dossier(recruit, interactions))).strip()
    if not brief:
        raise LLMCallError("LLM returned an empty brief")
    log.info("Generated brief for recruit %s (%d chars)", recruit.id, len(brief))
    return brief
