from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any


class TierLevel(IntEnum):
    UNKNOWN = 0
    GOVERNOR = 1  # 总督
    ADMIRAL = 2  # 提督
    CAPTAIN = 3  # 舰长

    @classmethod
    def from_raw(cls, value: object) -> TierLevel:
        if isinstance(value, bool) or not isinstance(value, int):
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


KNOWN_TIERS = (TierLevel.GOVERNOR, TierLevel.ADMIRAL, TierLevel.CAPTAIN)


def utc_now() -> datetime:
    return datetime.now(UTC)


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True, frozen=True)
class MemberRecord:
    member_id: int
    display_name: str
    avatar_url: str
    tier_level: TierLevel
    tier_sub_level: int
    tier_badge_name: str
    continuous_months: int
    rank: int
    owner_id: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.member_id,
            "name": self.display_name,
            "face": self.avatar_url,
            "guard_level": int(self.tier_level),
            "level": self.tier_sub_level,
            "medal_name": self.tier_badge_name,
            "accompany": self.continuous_months,
            "rank": self.rank,
            "ruid": self.owner_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemberRecord:
        return cls(
            member_id=int(data["uid"]),
            display_name=str(data.get("name") or "Unknown"),
            avatar_url=str(data.get("face") or ""),
            tier_level=TierLevel.from_raw(data.get("guard_level")),
            tier_sub_level=int(data.get("level") or 0),
            tier_badge_name=str(data.get("medal_name") or ""),
            continuous_months=int(data.get("accompany") or 0),
            rank=int(data.get("rank") or 0),
            owner_id=int(data.get("ruid") or 0),
        )


@dataclass(slots=True)
class Roster:
    captured_at: datetime
    members: list[MemberRecord] = field(default_factory=list)

    @classmethod
    def capture(cls, members: list[MemberRecord]) -> Roster:
        return cls(captured_at=utc_now(), members=list(members))

    @property
    def timestamp(self) -> str:
        return format_timestamp(self.captured_at)

    @property
    def total_count(self) -> int:
        return len(self.members)

    @property
    def tier_counts(self) -> dict[TierLevel, int]:
        counts = {tier: 0 for tier in KNOWN_TIERS}
        for member in self.members:
            if member.tier_level in counts:
                counts[member.tier_level] += 1
            else:
                counts[TierLevel.UNKNOWN] = counts.get(TierLevel.UNKNOWN, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "totalCount": self.total_count,
            "guardLevelCounts": {str(int(k)): v for k, v in self.tier_counts.items()},
            "users": [m.to_dict() for m in self.members],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Roster:
        return cls(
            captured_at=parse_timestamp(data["timestamp"]),
            members=[MemberRecord.from_dict(u) for u in data.get("users") or []],
        )


@dataclass(slots=True)
class ChangeRecord:
    captured_at: datetime
    added: list[MemberRecord] = field(default_factory=list)
    removed: list[MemberRecord] = field(default_factory=list)

    @property
    def timestamp(self) -> str:
        return format_timestamp(self.captured_at)

    @property
    def is_empty(self) -> bool:
        return not self.added and not self.removed

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "added": [m.to_dict() for m in self.added],
            "removed": [m.to_dict() for m in self.removed],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeRecord:
        return cls(
            captured_at=parse_timestamp(data["timestamp"]),
            added=[MemberRecord.from_dict(u) for u in data.get("added") or []],
            removed=[MemberRecord.from_dict(u) for u in data.get("removed") or []],
        )


@dataclass(slots=True)
class ChannelEntry:
    channel_id: str
    display_name: str = ""
    owner_id: int | None = None
    last_updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "roomId": self.channel_id,
            "name": self.display_name,
            "ruid": self.owner_id,
            "lastUpdated": (
                format_timestamp(self.last_updated_at) if self.last_updated_at else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChannelEntry:
        last_updated = data.get("lastUpdated")
        owner_id = data.get("ruid")
        return cls(
            channel_id=str(data.get("roomId") or ""),
            display_name=str(data.get("name") or ""),
            owner_id=int(owner_id) if owner_id else None,
            last_updated_at=parse_timestamp(last_updated) if last_updated else None,
        )


@dataclass(slots=True)
class GuardPage:
    page: int
    total_pages: int
    top_entries: list[dict[str, Any]] = field(default_factory=list)
    list_entries: list[dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class CollectResult:
    roster: Roster
    change: ChangeRecord | None


@dataclass(slots=True)
class CollectOutcome:
    channel_id: str
    display_name: str
    member_count: int | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None
