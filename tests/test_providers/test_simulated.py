"""Tests for the simulated generation backend."""

import pytest

from generation.errors import ApiError, CancellationRejected
from generation.job import VideoSettings
from models.enums import VideoStatus
from providers.base import PollResult
from providers.simulated import RejectingCancelClient, SimulatedGenerationClient


@pytest.mark.asyncio
async def test_job_completes_after_deterministic_polls():
    client = SimulatedGenerationClient(progress_step=25)
    job_id = await client.submit_job("A lion", VideoSettings())

    statuses = [(await client.poll_status(job_id)) for _ in range(4)]

    assert [r.progress for r in statuses] == [25, 50, 75, 100]
    assert statuses[-1].status == VideoStatus.COMPLETED
    assert statuses[-1].video_url.endswith(f"{job_id}.mp4")
    assert all(r.status == VideoStatus.PROCESSING for r in statuses[:-1])


@pytest.mark.asyncio
async def test_script_is_played_before_progression():
    client = SimulatedGenerationClient(script=[
        PollResult(status=VideoStatus.PENDING),
        ApiError("flaky"),
    ])
    job_id = await client.submit_job("A lion", VideoSettings())

    assert (await client.poll_status(job_id)).status == VideoStatus.PENDING
    with pytest.raises(ApiError):
        await client.poll_status(job_id)
    assert (await client.poll_status(job_id)).progress == 25


@pytest.mark.asyncio
async def test_fail_probability_one_always_fails():
    client = SimulatedGenerationClient(fail_probability=1.0)
    job_id = await client.submit_job("A lion", VideoSettings())

    result = await client.poll_status(job_id)

    assert result.status == VideoStatus.FAILED
    assert result.error.retryable is True


@pytest.mark.asyncio
async def test_call_log_records_every_call():
    client = SimulatedGenerationClient()
    job_id = await client.submit_job("A lion", VideoSettings())
    await client.poll_status(job_id)
    await client.cancel_job(job_id)

    assert client.submitted == [("A lion", VideoSettings())]
    assert client.polled == [job_id]
    assert client.cancelled == [job_id]


@pytest.mark.asyncio
async def test_rejecting_client_refuses_cancellation():
    client = RejectingCancelClient()

    with pytest.raises(CancellationRejected):
        await client.cancel_job("sim-1")
    assert client.cancelled == []


@pytest.mark.asyncio
async def test_enhance_prompt_extends_prompt():
    enhanced = await SimulatedGenerationClient().enhance_prompt("A lion")

    assert enhanced.startswith("A lion")
    assert len(enhanced) > len("A lion")
