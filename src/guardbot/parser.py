from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from nonebot.log import logger

from guardbot.errors import MalformedRecordError
from guardbot.models import MemberRecord, TierLevel


def _int_or_zero(value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def _text_or(value: object, default: str) -> str:
    if not isinstance(value, str) or not value:
        return default
    return value


def parse_member_record(raw: object) -> MemberRecord:
    if not isinstance(raw, dict):
        raise MalformedRecordError("guard entry is not an object")

    uinfo = raw.get("uinfo")
    if not isinstance(uinfo, dict):
        raise MalformedRecordError("guard entry has no uinfo block")

    uid = uinfo.get("uid")
    if isinstance(uid, bool) or not isinstance(uid, int) or uid == 0:
        raise MalformedRecordError(f"guard entry has invalid uid {uid!r}")

    base = uinfo.get("base")
    medal = uinfo.get("medal")
    if not isinstance(base, dict):
        raise MalformedRecordError(f"guard entry {uid} has no base block")
    if not isinstance(medal, dict):
        raise MalformedRecordError(f"guard entry {uid} has no medal block")

    return MemberRecord(
        member_id=uid,
        display_name=_text_or(base.get("name"), "Unknown"),
        avatar_url=_text_or(base.get("face"), ""),
        tier_level=TierLevel.from_raw(medal.get("guard_level")),
        tier_sub_level=_int_or_zero(medal.get("level")),
        tier_badge_name=_text_or(medal.get("name"), ""),
        continuous_months=_int_or_zero(raw.get("accompany")),
        rank=_int_or_zero(raw.get("rank")),
        owner_id=_int_or_zero(raw.get("ruid")),
    )


def parse_member_records(entries: Iterable[Any]) -> list[MemberRecord]:
    parsed: list[MemberRecord] = []
    for entry in entries:
        try:
            parsed.append(parse_member_record(entry))
        except MalformedRecordError as exc:
            logger.warning("Skip malformed guard entry: {}", exc)
    return parsed
