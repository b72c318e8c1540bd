from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger("zakerbot.turn")


@dataclass
class TurnStep:
    """Named step of a chat turn."""
    name: str
    fn: Callable[[object], None]
    skip_if: Optional[Callable[[object], bool]] = None
    always_run: bool = False


class TurnRunner:
    """Runs chat-turn steps in order; always_run steps also run after a failure."""

    def __init__(self, steps: List[TurnStep]) -> None:
        self._steps = steps

    def run(self, context: object) -> None:
        """Purpose: Execute steps in order with skip and always-run rules.
        Inputs/Outputs: Input is a mutable turn context; no return value.
        Side Effects / State: Invokes step functions that mutate the context.
        Dependencies: Depends on TurnStep.fn and TurnStep.skip_if semantics.
        Failure Modes: The first exception stops regular steps; remaining always_run
            steps still execute, then the exception propagates.
        If Removed: The workspace cannot run a chat turn or release its busy flag.
        Testing Notes: Raise in a middle step and check the finalize step still ran.
        """
        # After a failure only cleanup steps run, then the error is re-raised.
        failure: Optional[BaseException] = None
        for step in self._steps:
            if failure is not None and not step.always_run:
                continue
            if not step.always_run and step.skip_if and step.skip_if(context):
                logger.debug("step=%s status=skipped", step.name)
                continue
            try:
                step.fn(context)
            except Exception as exc:
                if failure is not None:
                    logger.error("step=%s status=failed_during_cleanup", step.name, exc_info=True)
                    continue
                logger.error("step=%s status=failed", step.name)
                failure = exc
        if failure is not None:
            raise failure
