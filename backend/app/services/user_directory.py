"""
services/user_directory.py — Read-through cache of user display data.

Used by the HTTP layer to put usernames next to the ids in settle-up and
collect-up candidates without a query per row. The ledger engine never
reads from it: balances and candidates are always computed from the
database.

Entries expire after `ttl_seconds` and the cache holds at most
`max_entries` users (least recently used evicted first). A user that does
not exist is not cached, so a newly created account shows up on the next
lookup.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Callable, Iterable


class UserDirectory:

    def __init__(
            self,
            loader: Callable[[list[int]], dict[int, dict]],
            ttl_seconds: int = 300,
            max_entries: int = 1024,
            clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Args:
            loader:      Fetches {user_id: {"id", "username", "email"}} for
                         the ids given; ids it cannot find are left out.
            ttl_seconds: How long an entry is served before reloading.
            max_entries: Upper bound on cached users.
            clock:       Monotonic seconds; injectable for tests.
        """
        self._loader = loader
        self._ttl = ttl_seconds
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[int, tuple[float, dict]] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def _fresh(self, user_id: int, now: float) -> dict | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        stored_at, user = entry
        if now - stored_at >= self._ttl:
            del self._entries[user_id]
            return None
        self._entries.move_to_end(user_id)
        return user

    def _store(self, user_id: int, user: dict, now: float) -> None:
        self._entries[user_id] = (now, user)
        self._entries.move_to_end(user_id)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    def get_many(self, user_ids: Iterable[int]) -> dict[int, dict]:
        """Returns the users it could find, loading the misses in one call."""
        wanted = list(dict.fromkeys(user_ids))
        now = self._clock()
        found: dict[int, dict] = {}

        with self._lock:
            for uid in wanted:
                user = self._fresh(uid, now)
                if user is not None:
                    found[uid] = user

        missing = [uid for uid in wanted if uid not in found]
        if missing:
            loaded = self._loader(missing)
            with self._lock:
                for uid, user in loaded.items():
                    self._store(uid, user, now)
            found.update(loaded)

        return found

    def get(self, user_id: int) -> dict | None:
        return self.get_many([user_id]).get(user_id)

    def invalidate(self, user_id: int | None = None) -> None:
        """Drops one user, or everything when user_id is None."""
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)
