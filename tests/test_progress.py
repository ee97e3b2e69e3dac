import pytest

from b2b_realtime.progress.schemas import EvaluationStepName, StepStatus
from b2b_realtime.progress.tracker import ProgressTracker, simulate_progress
from tests.utils import SleepRecorder


@pytest.mark.asyncio
async def test_payload_advances_steps_and_clamps_progress():
    tracker = ProgressTracker("eval-1")

    applied = await tracker.apply({"evaluationId": "eval-1", "step": "OCR", "status": "in progress", "progress": 140})

    assert applied is True
    state = tracker.state
    assert state.current_step == EvaluationStepName.OCR
    assert state.progress_percent == 100.0
    statuses = [step.status for step in state.steps]
    assert statuses[:2] == [StepStatus.DONE, StepStatus.DONE]
    assert statuses[2] == StepStatus.IN_PROGRESS
    assert statuses[3:] == [StepStatus.PENDING] * 3


@pytest.mark.asyncio
async def test_other_evaluation_is_ignored():
    tracker = ProgressTracker("eval-1")
    assert await tracker.apply({"evaluationId": "eval-2", "step": "upload"}) is False
    assert tracker.state.current_step is None


@pytest.mark.asyncio
async def test_malformed_payload_is_dropped():
    tracker = ProgressTracker()
    assert await tracker.apply({"step": "teleport"}) is False
    assert await tracker.apply("upload") is False


@pytest.mark.asyncio
async def test_completion_and_failure():
    tracker = ProgressTracker()
    updates = []
    tracker.on_update(lambda state: updates.append(state.status))

    await tracker.apply({"evaluationId": "eval-1", "step": "parsability", "status": "completed"})
    await tracker.apply({"evaluationId": "eval-1", "step": "completed", "status": "completed", "scores": {"overall": 82}})

    assert tracker.state.evaluation_id == "eval-1"
    assert tracker.state.status == "completed"
    assert tracker.state.progress_percent == 100.0
    assert tracker.state.scores == {"overall": 82}
    assert updates == ["in_progress", "completed"]

    failing = ProgressTracker()
    await failing.apply({"step": "parsing", "status": "in_progress"})
    await failing.apply({"step": "failed", "status": "failed", "error": "Unreadable PDF"})
    assert failing.state.status == "failed"
    assert failing.state.error == "Unreadable PDF"
    assert failing.state.steps[3].status == StepStatus.FAILED


@pytest.mark.asyncio
async def test_simulation_runs_to_completion():
    tracker = ProgressTracker("eval-1")
    sleeper = SleepRecorder()

    finished = await simulate_progress(tracker, interval=0.5, sleep=sleeper)

    assert finished is True
    assert tracker.state.simulated is True
    assert tracker.state.status == "completed"
    assert sleeper.delays == [0.5] * 10


@pytest.mark.asyncio
async def test_real_payload_takes_over_from_simulation():
    tracker = ProgressTracker("eval-1")

    async def real_data_arrives(seconds):
        if tracker.state.current_step == EvaluationStepName.PARSABILITY_CHECK:
            await tracker.apply({"evaluationId": "eval-1", "step": "grading", "status": "in_progress"})

    finished = await simulate_progress(tracker, interval=0.1, sleep=real_data_arrives)

    assert finished is False
    assert tracker.state.simulated is False
    assert tracker.state.current_step == EvaluationStepName.GRADING
