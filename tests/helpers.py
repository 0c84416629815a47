"""Producer doubles shared by the cache tests."""

from __future__ import annotations


class CountingProducer:
    """Producer returning increasing values, failing on scripted calls."""

    def __init__(self, fail_on: set[int] | None = None, start: int = 0) -> None:
        self.calls = 0
        self.fail_on = fail_on or set()
        self._next = start

    def __call__(self) -> int:
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError(f"producer failure on call {self.calls}")
        self._next += 1
        return self._next


class AlternatingProducer:
    """Producer that fails on every second invocation."""

    def __init__(self) -> None:
        self.calls = 0
        self._fail_next = False

    def __call__(self) -> str:
        self.calls += 1
        if self._fail_next:
            self._fail_next = False
            raise RuntimeError("some exception in producer")
        self._fail_next = True
        return f"value-{self.calls}"
