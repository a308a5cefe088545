"""Continuation depth accounting for one top-level call."""

from contextlib import contextmanager

DEFAULT_RECURSION_LIMIT = 10


class RecursionController:
    """Tracks how many file-result continuations are active.

    depth goes up on entering continuation() and back down on leaving it,
    whatever way the block exits.
    """

    def __init__(self, limit: int = DEFAULT_RECURSION_LIMIT):
        if limit < 0:
            raise ValueError("recursion limit must be >= 0")
        self.limit = limit
        self.depth = 0
        self.max_depth = 0
        self.limit_hit = False
        self._last_request: list[str] | None = None

    def can_continue(self) -> bool:
        return self.depth < self.limit

    @contextmanager
    def continuation(self):
        self.depth += 1
        self.max_depth = max(self.max_depth, self.depth)
        try:
            yield self.depth
        finally:
            self.depth -= 1

    def note_request(self, files: list[str]) -> bool:
        """Record a Files request. False if it repeats the previous one."""
        files = list(files)
        if files == self._last_request:
            return False
        self._last_request = files
        return True

    def mark_limit_hit(self) -> None:
        self.limit_hit = True

    def begin(self) -> None:
        """Reset per-call state at the start of a top-level call."""
        self.max_depth = self.depth
        self.limit_hit = False
        self._last_request = None

    def reset(self) -> None:
        self.depth = 0
        self.begin()
