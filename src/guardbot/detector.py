from __future__ import annotations

from guardbot.models import ChangeRecord, Roster
from guardbot.repository import SnapshotStore
from guardbot.setops import diff_rosters


class ChangeDetector:
    def __init__(self, store: SnapshotStore) -> None:
        self._store = store

    async def detect_changes(self, channel_id: str, new_roster: Roster) -> ChangeRecord | None:
        """Diff ``new_roster`` against the room's stored latest roster.

        Must run before ``new_roster`` is saved, otherwise the latest pointer
        already refers to it. The first roster of a room is a baseline and
        yields no change.
        """
        previous = await self._store.get_latest(channel_id)
        if previous is None:
            return None
        if previous.captured_at == new_roster.captured_at:
            return None
        return diff_rosters(previous, new_roster)
