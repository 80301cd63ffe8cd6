from __future__ import annotations

import asyncio

from mentor.errors import AnalysisCancelled


class CancellationToken:
    """Cooperative cancellation shared by every await point of one request.

    Work already in flight is allowed to finish; callers check the token at
    their own boundaries (between articles, between stream events).
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise AnalysisCancelled(self.reason or "cancelled")


def ensure_token(token: CancellationToken | None) -> CancellationToken:
    return token if token is not None else CancellationToken()
