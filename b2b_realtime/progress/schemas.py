"""Models for the ``resume:status`` evaluation progress stream."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EvaluationStepName(str, Enum):
    UPLOAD = "upload"
    PARSABILITY_CHECK = "parsability_check"
    OCR = "ocr"
    PARSING = "parsing"
    GRADING = "grading"
    COMPLETED = "completed"
    FAILED = "failed"


STEP_ORDER: List[EvaluationStepName] = [
    EvaluationStepName.UPLOAD,
    EvaluationStepName.PARSABILITY_CHECK,
    EvaluationStepName.OCR,
    EvaluationStepName.PARSING,
    EvaluationStepName.GRADING,
    EvaluationStepName.COMPLETED,
]

_STEP_ALIASES = {"parsability": "parsability_check"}


class StepStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class EvaluationStep(BaseModel):
    name: EvaluationStepName
    status: StepStatus = StepStatus.PENDING
    updated_at: datetime | None = None


class ResumeStatusPayload(BaseModel):
    """Raw server payload. Progress is clamped to 0-100."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    evaluation_id: str | None = Field(default=None, alias="evaluationId")
    step: EvaluationStepName
    status: str = "in_progress"
    progress: float | None = None
    details: str | None = None
    error: str | None = None
    scores: Dict[str, Any] | None = None
    timestamp: datetime | None = None

    @field_validator("step", mode="before")
    @classmethod
    def _normalize_step(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            return _STEP_ALIASES.get(lowered, lowered)
        return value

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower().replace(" ", "_")
        return value

    @field_validator("progress")
    @classmethod
    def _clamp_progress(cls, value: float | None) -> float | None:
        if value is None:
            return None
        return max(0.0, min(100.0, value))


class EvaluationProgress(BaseModel):
    evaluation_id: str | None = None
    steps: List[EvaluationStep] = Field(
        default_factory=lambda: [EvaluationStep(name=name) for name in STEP_ORDER]
    )
    progress_percent: float = 0.0
    current_step: EvaluationStepName | None = None
    status: str = "pending"
    error: str | None = None
    scores: Dict[str, Any] | None = None
    simulated: bool = False

    @property
    def finished(self) -> bool:
        return self.status in ("completed", "failed")
