"""Cancellation of an in-flight phase transition."""

import structlog

from ..utils.exceptions import CancellationRefused, PhaseCancelled

logger = structlog.get_logger(__name__)


class CancellationScope:
    """
    Cancellation token for one phase transition.

    A transition can be cancelled up to the moment configuration pushes begin.
    After that, cancel() raises CancellationRefused and the transition runs to
    completion or explicit failure, so no server is left half-configured.
    """

    def __init__(self, phase: str | None = None) -> None:
        self.phase = phase
        self._cancelled = False
        self._pushing = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pushes_started(self) -> bool:
        return self._pushing

    def cancel(self) -> None:
        """
        Request cancellation.

        Raises:
            CancellationRefused: If configuration pushes already started.
        """
        if self._pushing:
            raise CancellationRefused(self.phase or "transition")
        self._cancelled = True
        logger.info("Cancellation requested", phase=self.phase)

    def check(self) -> None:
        """Raise PhaseCancelled if cancel() was called."""
        if self._cancelled:
            raise PhaseCancelled(self.phase or "transition")

    def begin_pushes(self) -> None:
        """Last cancellation point. From here on the transition cannot be cancelled."""
        self.check()
        self._pushing = True
        logger.debug("Pushes started", phase=self.phase)
