"""
Veo generation client (Gemini HTTP API).

Endpoints used:
    POST   /models/veo-3-fast:generateVideo                 → {"job_id": ...}
    GET    /models/veo-3-fast:getGenerationStatus/{job_id}  → status document
    DELETE /models/veo-3-fast:cancelGeneration/{job_id}
    POST   /models/gemini-pro:generateContent               → prompt enhancement
    GET    /models                                          → health check

Every request goes through _request(), which retries 429 / 5xx responses
and network errors with exponential backoff plus jitter:

    delay = base_delay * 2^attempt + random(0, 1)    (Retry-After wins if present)

Whatever still fails after the last attempt is raised as a GenerationError
subclass picked from the HTTP status (see _error_for_response).
"""

import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, Optional

import httpx

from config.settings import settings
from generation.errors import (
    ApiError,
    CancellationRejected,
    ContentPolicyViolation,
    GenerationError,
    GenerationTimeoutError,
    failure_from_external,
)
from generation.job import VideoMetadata, VideoSettings
from models.enums import GenerationStage, VideoStatus
from providers.base import AbstractGenerationClient, PollResult

logger = logging.getLogger(__name__)

MODEL = "veo-3-fast"
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
JITTER_MAX = 1.0

_STATUS_MAP = {
    "queued": VideoStatus.PENDING,
    "pending": VideoStatus.PENDING,
    "processing": VideoStatus.PROCESSING,
    "running": VideoStatus.PROCESSING,
    "completed": VideoStatus.COMPLETED,
    "succeeded": VideoStatus.COMPLETED,
    "failed": VideoStatus.FAILED,
    "cancelled": VideoStatus.CANCELLED,
}


def map_status(raw_status: Optional[str]) -> VideoStatus:
    """Unknown statuses are treated as pending (the job is still alive)."""
    if not isinstance(raw_status, str):
        return VideoStatus.PENDING
    return _STATUS_MAP.get(raw_status.lower(), VideoStatus.PENDING)


def map_stage(raw_stage: Optional[str]) -> Optional[GenerationStage]:
    try:
        return GenerationStage(raw_stage) if raw_stage else None
    except ValueError:
        return None


def map_metadata(raw: dict[str, Any]) -> VideoMetadata:
    return VideoMetadata(
        width=raw.get("width") or 0,
        height=raw.get("height") or 0,
        duration=raw.get("duration") or 0,
        fps=raw.get("fps") or 30,
        format=raw.get("format") or "mp4",
        file_size=raw.get("file_size") or 0,
        bitrate=raw.get("bitrate") or 0,
        codec=raw.get("codec") or "h264",
        processing_time=raw.get("processing_time") or 0,
    )


def _error_for_response(response: httpx.Response) -> GenerationError:
    """Map a failed HTTP response onto the error taxonomy."""
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = {}
    error_body = body.get("error") if isinstance(body, dict) else None
    message = (
        error_body.get("message") if isinstance(error_body, dict) else None
    ) or f"Generation service returned HTTP {status}"

    if status == 403:
        return ContentPolicyViolation(message)
    if status == 408:
        return GenerationTimeoutError(message)
    if status == 400:
        return ApiError(
            message, retryable=False, status_code=status,
            suggested_action="Please check your prompt and generation settings",
        )
    if status == 401:
        return ApiError(
            message, retryable=False, status_code=status,
            suggested_action="Please check your API key configuration",
        )
    if status == 429:
        return ApiError(
            message, retryable=True, status_code=status,
            suggested_action="Please wait before making more requests, or reduce duration",
        )
    return ApiError(message, retryable=status in RETRYABLE_STATUS_CODES, status_code=status)


def _json_body(response: httpx.Response) -> dict[str, Any]:
    """Decode a successful response; anything but a JSON object is an ApiError."""
    try:
        body = response.json()
    except ValueError as e:
        raise ApiError(f"Generation service returned a malformed response: {e}") from e
    if not isinstance(body, dict):
        raise ApiError(f"Generation service returned {type(body).__name__} instead of an object")
    return body


class VeoGenerationClient(AbstractGenerationClient):

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._retry_attempts = settings.VEO_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
        self._retry_base_delay = settings.VEO_RETRY_BASE_DELAY if retry_base_delay is None else retry_base_delay
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.VEO_API_BASE_URL,
            timeout=timeout or settings.VEO_REQUEST_TIMEOUT,
            transport=transport,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key if api_key is not None else settings.VEO_API_KEY}",
                "X-Client-Info": "videogen-orchestrator",
            },
        )

    @property
    def backend_name(self) -> str:
        return "veo"

    async def aclose(self) -> None:
        await self._client.aclose()

    def _backoff_delay(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                return float(retry_after)
        return self._retry_base_delay * (2 ** attempt) + random.uniform(0, JITTER_MAX)

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        for attempt in range(self._retry_attempts + 1):
            last_attempt = attempt == self._retry_attempts
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if last_attempt:
                    if isinstance(e, httpx.TimeoutException):
                        raise ApiError(f"Request to generation service timed out: {e}") from e
                    raise ApiError(f"Network error talking to generation service: {e}") from e
                delay = self._backoff_delay(attempt)
                logger.warning(
                    f"Veo request error on attempt {attempt + 1}/{self._retry_attempts + 1}: {e} "
                    f"(retrying in {delay:.1f}s)"
                )
                await self._sleep(delay)
                continue

            if response.status_code in RETRYABLE_STATUS_CODES and not last_attempt:
                delay = self._backoff_delay(attempt, response)
                logger.warning(
                    f"Veo {response.status_code} on attempt {attempt + 1}/{self._retry_attempts + 1} "
                    f"(retrying in {delay:.1f}s, {method} {url})"
                )
                await self._sleep(delay)
                continue

            if response.is_error:
                raise _error_for_response(response)
            return response

        # unreachable: the last attempt either returns or raises
        raise ApiError(f"Request to {url} failed after {self._retry_attempts + 1} attempts")

    async def submit_job(self, prompt: str, video_settings: VideoSettings) -> str:
        payload = {
            "prompt": prompt,
            "video_config": {
                "duration_seconds": video_settings.duration,
                "resolution": video_settings.resolution.value,
                "quality": video_settings.quality.value,
                "aspect_ratio": video_settings.aspect_ratio.value,
                "format": video_settings.format.value,
                "fps": 30,
                "upscale": video_settings.enable_upscaling,
                "stabilize": video_settings.enable_stabilization,
            },
            "generation_config": {
                "seed": video_settings.seed,
                "guidance_scale": video_settings.guidance_scale,
                "negative_prompt": video_settings.negative_prompt,
            },
        }
        response = await self._request("POST", f"/models/{MODEL}:generateVideo", json=payload)
        job_id = _json_body(response).get("job_id")
        if not job_id or not isinstance(job_id, str):
            raise ApiError("Generation service did not return a job id")

        logger.info(f"Veo job {job_id} submitted ({video_settings.resolution.value}, {video_settings.duration}s)")
        return job_id

    async def poll_status(self, external_job_id: str) -> PollResult:
        response = await self._request("GET", f"/models/{MODEL}:getGenerationStatus/{external_job_id}")
        data = _json_body(response)
        metadata = data.get("metadata")
        error = data.get("error")

        status = map_status(data.get("status"))
        return PollResult(
            status=status,
            progress=data.get("progress"),
            estimated_time_remaining=data.get("estimated_time_remaining"),
            stage=map_stage(data.get("stage")),
            video_url=data.get("video_url"),
            thumbnail_url=data.get("thumbnail_url"),
            metadata=map_metadata(metadata) if isinstance(metadata, dict) and metadata else None,
            error=(
                failure_from_external(error if isinstance(error, dict) else None)
                if status == VideoStatus.FAILED else None
            ),
        )

    async def cancel_job(self, external_job_id: str) -> None:
        try:
            await self._request("DELETE", f"/models/{MODEL}:cancelGeneration/{external_job_id}")
        except ApiError as e:
            if e.status_code in (409, 412):
                raise CancellationRejected(e.message) from e
            raise
        logger.info(f"Veo job {external_job_id} cancelled")

    async def enhance_prompt(self, prompt: str) -> str:
        body = {
            "contents": [{
                "parts": [{
                    "text": (
                        "Enhance this video generation prompt to be more detailed and visually "
                        "descriptive while maintaining the original intent. Make it suitable for "
                        f"AI video generation. Original prompt: \"{prompt}\""
                    )
                }]
            }],
            "generationConfig": {"maxOutputTokens": 200, "temperature": 0.7},
        }
        try:
            response = await self._request("POST", "/models/gemini-pro:generateContent", json=body)
            enhanced = response.json()["candidates"][0]["content"]["parts"][0]["text"]
        except (GenerationError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Prompt enhancement failed, using original prompt: {e}")
            return prompt

        return enhanced.strip() or prompt

    async def health_check(self) -> bool:
        try:
            response = await self._client.get("/models")
        except httpx.HTTPError as e:
            logger.warning(f"Veo health check failed: {e}")
            return False
        return response.status_code == 200
