from __future__ import annotations

from typing import Any

import httpx
from nonebot.log import logger

from guardbot.config import DEFAULT_USER_AGENT
from guardbot.errors import SourceUnavailable
from guardbot.models import GuardPage

ROOM_INFO_API = "https://api.live.bilibili.com/room/v1/Room/get_info"
ANCHOR_INFO_API = "https://api.live.bilibili.com/live_user/v1/UserInfo/get_anchor_in_room"
GUARD_LIST_API = "https://api.live.bilibili.com/xlive/app-room/v2/guardTab/topListNew"


class GuardListClient:
    """Bilibili live API client for guard lists and room lookups.

    ``http_client`` may be injected (e.g. with an ``httpx.MockTransport``);
    otherwise the instance creates and owns its own client.
    """

    def __init__(
        self,
        *,
        page_size: int = 20,
        timeout_s: float = 10.0,
        user_agent: str = DEFAULT_USER_AGENT,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.page_size = page_size
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            headers={"user-agent": user_agent},
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_data(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise SourceUnavailable(f"request to {url} failed: {exc}") from exc

        if response.status_code != 200:
            raise SourceUnavailable(
                f"{url} answered {response.status_code}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise SourceUnavailable(f"{url} returned a non-JSON body") from exc

        if not isinstance(payload, dict) or payload.get("code") != 0:
            code = payload.get("code") if isinstance(payload, dict) else None
            raise SourceUnavailable(f"{url} returned code {code}")
        data = payload.get("data")
        if not isinstance(data, dict):
            raise SourceUnavailable(f"{url} returned no data block")
        return data

    async def fetch_page(self, channel_id: str, owner_id: int, page: int) -> GuardPage:
        data = await self._get_data(
            GUARD_LIST_API,
            {
                "page": page,
                "roomid": channel_id,
                "ruid": owner_id,
                "page_size": self.page_size,
                "typ": 5,
                "platform": "web",
            },
        )
        info = data.get("info")
        if not isinstance(info, dict) or not isinstance(info.get("page"), int):
            raise SourceUnavailable(f"guard list page {page} of room {channel_id} has no page info")

        top = data.get("top3") or []
        entries = data.get("list") or []
        return GuardPage(
            page=page,
            total_pages=info["page"],
            top_entries=top if isinstance(top, list) else [],
            list_entries=entries if isinstance(entries, list) else [],
        )

    async def resolve_owner_id(self, channel_id: str) -> int | None:
        try:
            data = await self._get_data(ROOM_INFO_API, {"room_id": channel_id})
        except SourceUnavailable as exc:
            logger.warning("Owner lookup for room {} failed: {}", channel_id, exc)
            return None

        uid = data.get("uid")
        if isinstance(uid, bool) or not isinstance(uid, int) or uid <= 0:
            logger.warning("Owner lookup for room {} returned no uid", channel_id)
            return None
        return uid

    async def resolve_display_name(self, channel_id: str) -> str | None:
        try:
            data = await self._get_data(ANCHOR_INFO_API, {"roomid": channel_id})
        except SourceUnavailable as exc:
            logger.warning("Anchor name lookup for room {} failed: {}", channel_id, exc)
            return None

        info = data.get("info")
        uname = info.get("uname") if isinstance(info, dict) else None
        if not isinstance(uname, str) or not uname.strip():
            return None
        return uname.strip()
