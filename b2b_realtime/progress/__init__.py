"""Resume evaluation progress stream with simulated fallback."""

from .schemas import EvaluationProgress, EvaluationStep, EvaluationStepName, ResumeStatusPayload, StepStatus
from .tracker import RESUME_STATUS_EVENT, ProgressTracker, simulate_progress

__all__ = [
    "EvaluationProgress",
    "EvaluationStep",
    "EvaluationStepName",
    "ProgressTracker",
    "RESUME_STATUS_EVENT",
    "ResumeStatusPayload",
    "StepStatus",
    "simulate_progress",
]
