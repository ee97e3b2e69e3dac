"""Resume evaluation progress, fed by the socket or by a local simulation.

When the connection manager gives up reconnecting, the presentation layer
still needs a moving progress indicator: ``simulate_progress`` animates the
steps locally until a real ``resume:status`` payload arrives, at which point
the real data takes over.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from pydantic import ValidationError

from b2b_realtime.realtime.observers import Multicast, Unsubscribe

from .schemas import (
    STEP_ORDER,
    EvaluationProgress,
    EvaluationStepName,
    ResumeStatusPayload,
    StepStatus,
)

log = logging.getLogger("progress")

RESUME_STATUS_EVENT = "resume:status"


class ProgressTracker:
    def __init__(self, evaluation_id: str | None = None) -> None:
        self.state = EvaluationProgress(evaluation_id=evaluation_id)
        self._updates: Multicast[Callable[[EvaluationProgress], Any]] = Multicast("progress")
        self._real_updates = 0

    @property
    def real_updates(self) -> int:
        """Number of server payloads applied so far."""

        return self._real_updates

    def on_update(self, handler: Callable[[EvaluationProgress], Any]) -> Unsubscribe:
        return self._updates.subscribe(handler)

    def reset(self, evaluation_id: str | None = None) -> None:
        self.state = EvaluationProgress(evaluation_id=evaluation_id)
        self._real_updates = 0

    async def apply(self, payload: Any) -> bool:
        """Apply a ``resume:status`` payload; returns False when it was dropped."""

        try:
            status = ResumeStatusPayload.model_validate(payload)
        except ValidationError as exc:
            log.warning("[PROGRESS DROP] malformed payload: %s", exc.errors()[:3])
            return False

        expected = self.state.evaluation_id
        if expected and status.evaluation_id and status.evaluation_id != expected:
            log.info("[PROGRESS IGNORE] evaluation=%s expected=%s", status.evaluation_id, expected)
            return False

        self._real_updates += 1
        self.state.simulated = False
        if status.evaluation_id and not expected:
            self.state.evaluation_id = status.evaluation_id

        if status.step == EvaluationStepName.FAILED or status.status == "failed" or status.error:
            self._fail(status.error or status.details or "Evaluation failed")
        elif status.step == EvaluationStepName.COMPLETED and status.status == "completed":
            self._complete(status.scores)
        else:
            self._advance(status.step, status.status, status.progress)

        await self._updates.emit(self.state)
        return True

    async def apply_simulated(self, step: EvaluationStepName, status: str) -> None:
        self.state.simulated = True
        if step == EvaluationStepName.COMPLETED:
            self._complete(None)
        else:
            self._advance(step, status, None)
        await self._updates.emit(self.state)

    def _advance(self, step: EvaluationStepName, status: str, progress: Optional[float]) -> None:
        index = STEP_ORDER.index(step)
        now = datetime.now(timezone.utc)
        for position, entry in enumerate(self.state.steps):
            if position < index and entry.status != StepStatus.DONE:
                entry.status = StepStatus.DONE
                entry.updated_at = now
            elif position == index:
                entry.status = StepStatus.DONE if status == "completed" else StepStatus.IN_PROGRESS
                entry.updated_at = now

        self.state.current_step = step
        self.state.status = "in_progress"
        if progress is not None:
            self.state.progress_percent = progress
        else:
            done = sum(1 for entry in self.state.steps if entry.status == StepStatus.DONE)
            self.state.progress_percent = round(done * 100 / len(self.state.steps), 1)

    def _complete(self, scores: Optional[dict]) -> None:
        now = datetime.now(timezone.utc)
        for entry in self.state.steps:
            entry.status = StepStatus.DONE
            entry.updated_at = now
        self.state.current_step = EvaluationStepName.COMPLETED
        self.state.status = "completed"
        self.state.progress_percent = 100.0
        if scores is not None:
            self.state.scores = scores

    def _fail(self, error: str) -> None:
        for entry in self.state.steps:
            if entry.status == StepStatus.IN_PROGRESS:
                entry.status = StepStatus.FAILED
                entry.updated_at = datetime.now(timezone.utc)
        self.state.current_step = EvaluationStepName.FAILED
        self.state.status = "failed"
        self.state.error = error
        log.warning("[PROGRESS FAILED] evaluation=%s error=%s", self.state.evaluation_id, error)


async def simulate_progress(
    tracker: ProgressTracker,
    interval: float = 0.8,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> bool:
    """Animate the evaluation steps locally.

    Stops as soon as a real payload is applied to ``tracker``. Returns True
    when the simulation ran to completion.
    """

    if tracker.state.finished:
        return False

    baseline = tracker.real_updates
    log.info("[PROGRESS SIMULATE] evaluation=%s", tracker.state.evaluation_id)
    for step in STEP_ORDER[:-1]:
        for status in ("in_progress", "completed"):
            if tracker.real_updates != baseline:
                log.info("[PROGRESS SIMULATE] real data arrived, stopping")
                return False
            await tracker.apply_simulated(step, status)
            await sleep(interval)

    if tracker.real_updates != baseline:
        return False
    await tracker.apply_simulated(EvaluationStepName.COMPLETED, "completed")
    return True
