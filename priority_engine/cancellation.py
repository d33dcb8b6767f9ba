"""
Cooperative cancellation for long-running async operations.

Scope traversal and the deferred cache build check their token after every
await; a session exit cancels the token of an in-flight session enter.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from priority_engine.errors import OperationCancelled


@dataclass
class CancellationToken:
    """Per-invocation cancellation flag."""

    name: str = "operation"
    _cancelled: bool = field(default=False, repr=False)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled(self.name)


def check(token: CancellationToken | None) -> None:
    """Raise OperationCancelled if the (optional) token has fired."""
    if token is not None:
        token.raise_if_cancelled()
