from __future__ import annotations

import asyncio
from typing import Protocol

from nonebot.log import logger

from guardbot.cache import LookupCache
from guardbot.errors import MalformedRosterError, SourceUnavailable
from guardbot.models import GuardPage, MemberRecord
from guardbot.parser import parse_member_records


class RosterSource(Protocol):
    async def fetch_page(self, channel_id: str, owner_id: int, page: int) -> GuardPage: ...

    async def resolve_owner_id(self, channel_id: str) -> int | None: ...


def owner_cache_key(channel_id: str) -> str:
    return f"ruid:{channel_id}"


def merge_pages(pages: dict[int, GuardPage], total_pages: int) -> list[MemberRecord]:
    """Flatten fetched pages into one roster.

    Pages are walked by page number, top entries before the list entries of
    the same page. The first occurrence of a member id wins.
    """
    members: list[MemberRecord] = []
    seen: set[int] = set()
    for page_no in range(1, total_pages + 1):
        page = pages.get(page_no)
        if page is None:
            continue
        for entries in (page.top_entries, page.list_entries):
            for record in parse_member_records(entries):
                if record.member_id in seen:
                    continue
                seen.add(record.member_id)
                members.append(record)
    return members


class RosterAssembler:
    def __init__(self, source: RosterSource, owner_cache: LookupCache) -> None:
        self.source = source
        self.owner_cache = owner_cache

    async def resolve_owner_id(self, channel_id: str) -> int | None:
        key = owner_cache_key(channel_id)
        cached = await self.owner_cache.get(key)
        if not cached.ok:
            logger.warning("Owner cache read for room {} failed: {}", channel_id, cached.error)
        if cached.value:
            try:
                return int(cached.value)
            except ValueError:
                logger.warning("Drop unreadable cached owner id for room {}", channel_id)
                await self.owner_cache.expire(key)

        owner_id = await self.source.resolve_owner_id(channel_id)
        if owner_id is None:
            return None

        stored = await self.owner_cache.set(key, str(owner_id))
        if not stored.ok:
            logger.warning("Owner cache write for room {} failed: {}", channel_id, stored.error)
        return owner_id

    async def _fetch_first_page(self, channel_id: str, owner_id: int) -> GuardPage:
        page = await self.source.fetch_page(channel_id, owner_id, 1)
        if page.total_pages <= 0:
            raise MalformedRosterError(
                f"room {channel_id} reported {page.total_pages} guard pages"
            )
        return page

    async def _fetch_page_safely(
        self, channel_id: str, owner_id: int, page_no: int
    ) -> GuardPage | None:
        try:
            return await self.source.fetch_page(channel_id, owner_id, page_no)
        except SourceUnavailable as exc:
            logger.warning("Guard page {} of room {} skipped: {}", page_no, channel_id, exc)
            return None

    async def assemble(self, channel_id: str) -> list[MemberRecord]:
        owner_id = await self.resolve_owner_id(channel_id)
        if owner_id is None:
            logger.error("No owner id for room {}, skip guard collection", channel_id)
            return []

        try:
            first = await self._fetch_first_page(channel_id, owner_id)
        except (SourceUnavailable, MalformedRosterError) as exc:
            logger.error("No guard data for room {}: {}", channel_id, exc)
            return []

        total_pages = first.total_pages
        pages: dict[int, GuardPage] = {1: first}
        if total_pages > 1:
            fetched = await asyncio.gather(
                *(
                    self._fetch_page_safely(channel_id, owner_id, page_no)
                    for page_no in range(2, total_pages + 1)
                )
            )
            for page_no, page in zip(range(2, total_pages + 1), fetched):
                if page is not None:
                    pages[page_no] = page

        members = merge_pages(pages, total_pages)
        logger.info(
            "Assembled {} guards for room {} from {}/{} pages",
            len(members),
            channel_id,
            len(pages),
            total_pages,
        )
        return members
