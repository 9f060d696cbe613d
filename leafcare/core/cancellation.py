from __future__ import annotations

import threading

from leafcare.core.errors import RecommendationCancelled


class CancellationToken:
    """
    Cooperative cancellation signal shared between a caller and one request.

    The HTTP layer cancels it when the client goes away; the engine checks it
    around the generative call, which is the only blocking step.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RecommendationCancelled("Recommendation request was cancelled")
