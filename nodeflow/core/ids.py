"""Session-scoped unique id generation.

One ``IdGenerator`` lives for one editing session and is passed explicitly to
every component that mints ids (graph editing helpers, the preview log).
"""

import itertools
import re
import threading
from collections.abc import Iterable

_SUFFIX_RE = re.compile(r"^(?P<prefix>.+)-(?P<num>\d+)$")


class IdGenerator:
    """Monotonic per-prefix counters, e.g. ``prompt-1``, ``prompt-2``."""

    def __init__(self, existing: Iterable[str] = ()):
        self._counters: dict[str, itertools.count] = {}
        self._lock = threading.Lock()
        self.observe(existing)

    def observe(self, ids: Iterable[str]) -> None:
        """Advance counters past ids that already exist (e.g. a loaded flow)."""
        with self._lock:
            for existing_id in ids:
                match = _SUFFIX_RE.match(existing_id)
                if not match:
                    continue
                prefix = match.group("prefix")
                start = int(match.group("num")) + 1
                current = self._peek(prefix)
                if start > current:
                    self._counters[prefix] = itertools.count(start)

    def _peek(self, prefix: str) -> int:
        counter = self._counters.get(prefix)
        if counter is None:
            return 1
        value = next(counter)
        self._counters[prefix] = itertools.count(value)
        return value

    def next_id(self, prefix: str) -> str:
        with self._lock:
            counter = self._counters.setdefault(prefix, itertools.count(1))
            return f"{prefix}-{next(counter)}"
