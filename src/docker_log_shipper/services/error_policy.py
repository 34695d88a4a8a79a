"""
Relay Error Policy

Decides what a failed connection to Logstash means for the rest of the
process: stop everything, or drop the failed pipeline and keep going.
"""

from enum import Enum
from typing import Callable, Optional

from docker_log_shipper.core.exceptions import RelayError
from docker_log_shipper.core.logging import logger


class RelayErrorMode(str, Enum):
    """What to do when a relay connection fails"""
    ABORT = "abort"          # Shut the whole process down with a non-zero exit
    CONTINUE = "continue"    # Drop the affected pipeline or batch only


class RelayErrorPolicy:
    def __init__(
        self,
        mode: RelayErrorMode = RelayErrorMode.ABORT,
        on_abort: Optional[Callable[[RelayError], None]] = None
    ):
        self.mode = RelayErrorMode(mode)
        self._on_abort = on_abort
        self.failure_count = 0
        self.last_error: Optional[RelayError] = None

    @property
    def aborting(self) -> bool:
        return self.mode == RelayErrorMode.ABORT

    def handle(self, error: RelayError, source: str) -> None:
        """
        Apply the policy to a relay failure

        Args:
            error: The relay failure
            source: Short description of who was writing, for the log line
        """
        self.failure_count += 1
        self.last_error = error

        if self.aborting:
            logger.critical(f"Relay error in {source}, shutting down: {error.message}")
            if self._on_abort:
                self._on_abort(error)
        else:
            logger.error(f"Relay error in {source}, continuing: {error.message}")
