from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from courtiq.config import Settings, get_settings

log = logging.getLogger(__name__)

TR_BASE = "https://www.tennisrecruiting.net"
ITF_BASE = "https://www.itftennis.com"

ITF_RANKINGS_URL = (
    f"{ITF_BASE}/tennis/api/PlayerRankApi/GetPlayerRankings"
    "?circuitCode=JT&playerTypeCode=B&ageCategoryCode=&juniorRankingType=itf"
    "&take=500&skip=0&isOrderAscending=true"
)

_ACCEPT_HTML = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"


def itf_player_slug(name: str) -> str:
    slug = re.sub(r"\s+", "-", (name or "").strip().lower())
    return re.sub(r"[^a-z0-9-]", "", slug)


class SourceClient:
    """Outbound HTTP for both ranking sites.

    One instance wraps one ``httpx.AsyncClient`` and is shared for the life
    of the process.  Every ``fetch_*`` method returns ``None`` instead of
    raising when the site is unreachable, slow or answers non-2xx.
    """

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(self.settings.request_timeout_seconds),
            headers={
                "User-Agent": self.settings.user_agent,
                "Accept": _ACCEPT_HTML,
                "Accept-Language": "en-US,en;q=0.9",
            },
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> SourceClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # -- transport -----------------------------------------------------------

    async def _get(
        self, url: str, *, referer: str | None = None, timeout: float | None = None,
        accept: str | None = None,
    ) -> httpx.Response | None:
        headers: dict[str, str] = {}
        if referer:
            headers["Referer"] = referer
        if accept:
            headers["Accept"] = accept
        try:
            resp = await self._client.get(
                url, headers=headers,
                timeout=httpx.Timeout(timeout or self.settings.request_timeout_seconds),
            )
        except httpx.TimeoutException:
            log.warning("Timed out fetching %s", url)
            return None
        except httpx.HTTPError as exc:
            log.warning("Failed to fetch %s: %s", url, exc)
            return None
        if resp.status_code >= 400:
            log.warning("HTTP %s for %s", resp.status_code, url)
            return None
        return resp

    async def _get_text(self, url: str, **kwargs: Any) -> str | None:
        resp = await self._get(url, **kwargs)
        return resp.text if resp is not None else None

    # -- tennisrecruiting ----------------------------------------------------

    async def fetch_player_page(self, tennisrecruiting_id: str) -> str | None:
        params = httpx.QueryParams({"id": tennisrecruiting_id})
        return await self._get_text(f"{TR_BASE}/player.asp?{params}", referer=f"{TR_BASE}/")

    async def fetch_list_page(self, list_id: int, page: int) -> str | None:
        return await self._get_text(f"{TR_BASE}/list.asp?id={list_id}&page={page}", referer=f"{TR_BASE}/")

    async def fetch_tr_activity(self, tennisrecruiting_id: str) -> str | None:
        params = httpx.QueryParams({"id": tennisrecruiting_id})
        return await self._get_text(f"{TR_BASE}/player/activity.asp?{params}", referer=f"{TR_BASE}/")

    # -- ITF -----------------------------------------------------------------

    async def fetch_itf_activity(self, name: str, itf_player_id: str, nationality: str | None) -> str | None:
        """ITF sits behind bot protection; expect this to fail server-side more often than not."""
        nat = ((nationality or "usa").lower())[:3]
        url = f"{ITF_BASE}/en/players/{itf_player_slug(name)}/{itf_player_id}/{nat}/jt/s/activity"
        return await self._get_text(url, referer=f"{ITF_BASE}/en/players/")

    async def fetch_itf_rankings(self) -> Any | None:
        resp = await self._get(
            ITF_RANKINGS_URL, timeout=self.settings.itf_timeout_seconds, accept="application/json",
        )
        if resp is None:
            return None
        try:
            return resp.json()
        except ValueError:
            log.warning("ITF rankings response was not JSON (%d bytes)", len(resp.content))
            return None
