from __future__ import annotations

from collections.abc import Iterable

from guardbot.models import ChangeRecord, MemberRecord, Roster


def member_ids(members: Iterable[MemberRecord]) -> set[int]:
    return {m.member_id for m in members}


def added_members(previous: Roster, current: Roster) -> list[MemberRecord]:
    known = member_ids(previous.members)
    return [m for m in current.members if m.member_id not in known]


def removed_members(previous: Roster, current: Roster) -> list[MemberRecord]:
    remaining = member_ids(current.members)
    return [m for m in previous.members if m.member_id not in remaining]


def diff_rosters(previous: Roster, current: Roster) -> ChangeRecord | None:
    # Only membership counts; tier or name changes of a kept member are not a change.
    change = ChangeRecord(
        captured_at=current.captured_at,
        added=added_members(previous, current),
        removed=removed_members(previous, current),
    )
    if change.is_empty:
        return None
    return change
