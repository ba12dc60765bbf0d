"""Per-category stop signals."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative stop flag owned by exactly one category run.

    The growth loop polls it at pass boundaries only, so an in-flight provider
    call always finishes and its rows are persisted before the run stops.
    """

    def __init__(self, category_id: str) -> None:
        self.category_id = category_id
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "stop requested") -> None:
        if self._reason is not None:
            return
        self._reason = reason
        logger.info(
            "Stop requested for category",
            extra={"category_id": self.category_id, "reason": reason},
        )

    def __repr__(self) -> str:
        return f"CancelToken(category_id={self.category_id!r}, cancelled={self.cancelled})"
