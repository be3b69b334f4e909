"""Cooperative cancellation token checked at stage boundaries and inside long loops."""

from __future__ import annotations

import threading

from app.engine.errors import GenerationCancelledError


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise GenerationCancelledError()
