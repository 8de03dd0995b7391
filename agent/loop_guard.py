"""
Loop guard for the per-turn tool-calling loop.

Prevents runaway loops with:
  - A hard total-call limit (safety ceiling).
  - Per-(tool, args) duplicate tracking. Past the free passes an identical
    call is skipped and the model is told to answer from the earlier result.
"""

from __future__ import annotations

import json
from dataclasses import dataclass


@dataclass(frozen=True)
class DupVerdict:
    """Result of duplicate-call tracking for a single tool invocation.

    Attributes:
        count: Total times this (name, args) has been seen (including this call).
        blocked: If True, the caller should skip execution entirely.
        warning: Text to return to the model instead of a result, or None.
    """
    count: int
    blocked: bool
    warning: str | None


class LoopGuard:
    """Prevents runaway tool-call loops within one turn.

    Usage:
        guard = LoopGuard(max_total_calls=10)

        while True:
            # ... extract tool_calls from response ...

            reason = guard.check_limit(len(tool_calls))
            if reason:
                break

            for tc in tool_calls:
                verdict = guard.record_tool_call(tc.name, tc.args)
                if verdict.blocked:
                    # skip execution, return verdict.warning as the result
                    ...

            guard.record_calls(len(tool_calls))
    """

    def __init__(self, max_total_calls: int = 10, dup_free_passes: int = 2):
        self.max_total_calls = max_total_calls
        self.total_calls = 0
        self._dup_free_passes = dup_free_passes
        self._dup_counts: dict[tuple[str, str], int] = {}

    def check_limit(self, n_calls: int) -> str | None:
        """Check if executing n_calls would exceed the total limit.

        Returns a stop reason string or None to continue.
        """
        if n_calls <= 0:
            return None
        if self.total_calls + n_calls > self.max_total_calls:
            return (
                f"total call limit ({self.max_total_calls}) reached "
                f"after {self.total_calls} calls"
            )
        return None

    def record_calls(self, n_calls: int) -> None:
        """Record that n_calls were executed."""
        self.total_calls += n_calls

    @staticmethod
    def _dedup_key(name: str, args: dict | None) -> tuple[str, str]:
        try:
            args_str = json.dumps(args or {}, sort_keys=True, default=str)
        except (TypeError, ValueError):
            args_str = str(sorted((args or {}).items()))
        return (name, args_str)

    def record_tool_call(self, name: str, args: dict | None) -> DupVerdict:
        """Record a tool call and return a verdict on whether to execute it.

        Call this *before* executing each tool.
        """
        key = self._dedup_key(name, args)
        count = self._dup_counts.get(key, 0) + 1
        self._dup_counts[key] = count

        if count <= self._dup_free_passes:
            return DupVerdict(count=count, blocked=False, warning=None)
        return DupVerdict(
            count=count,
            blocked=True,
            warning=(
                f"BLOCKED: '{name}' has been called {count} times with identical "
                f"arguments and always returns the same result. Execution was "
                f"skipped. Use the earlier result and answer the user."
            ),
        )
