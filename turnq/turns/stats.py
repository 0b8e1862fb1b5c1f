from __future__ import annotations

from collections.abc import Iterable

import redis

from turnq.turns.base import RedisKeys


# Extra tags beyond this are dropped, not rejected.
MAX_TAGS_PER_ADVANCE = 3


def select_tags(tags: Iterable[object] | None) -> list[str]:
    """Return the keyword tags that should be counted for one advancement.

    Only the first MAX_TAGS_PER_ADVANCE supplied tags are considered; empty ones
    and repeats among them are skipped.
    """

    if not tags:
        return []
    out: list[str] = []
    for tag in list(tags)[:MAX_TAGS_PER_ADVANCE]:
        if not tag:
            continue
        text = str(tag)
        if text not in out:
            out.append(text)
    return out


class StatisticsCounters:
    """Best-effort topic/keyword tallies. Retries double count."""

    def __init__(self, *, r: redis.Redis, keys: RedisKeys | None = None) -> None:
        self._r = r
        self.keys = keys or RedisKeys()

    def increment_topic(self, session_id: str, label: str) -> int:
        return int(self._r.hincrby(self.keys.topics(session_id), label, 1))

    def increment_keyword(self, session_id: str, tag: str) -> int:
        return int(self._r.hincrby(self.keys.keywords(session_id), tag, 1))

    def topics(self, session_id: str) -> dict[str, int]:
        return {k: int(v) for k, v in self._r.hgetall(self.keys.topics(session_id)).items()}

    def keywords(self, session_id: str) -> dict[str, int]:
        return {k: int(v) for k, v in self._r.hgetall(self.keys.keywords(session_id)).items()}
