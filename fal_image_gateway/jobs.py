"""Submit, poll and collect fal queue jobs.

A job moves ``SUBMITTED -> POLLING -> COMPLETED | FAILED | TIMEOUT``. Each
step lives in its own coroutine (:meth:`JobDriver.submit` and
:meth:`JobDriver.poll_once`) so it can be exercised without real timers;
:func:`next_state` decides the transition after every poll and
:meth:`JobDriver.run` loops until it leaves the active states.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from fal_image_gateway.capabilities.schema import ModelCapability
from fal_image_gateway.errors import (
    GatewayError,
    GenerationFailedError,
    GenerationTimeoutError,
    UpstreamProtocolError,
    UpstreamSubmissionError,
)

logger = logging.getLogger("uvicorn.error")

DEFAULT_POLL_INTERVAL_SECONDS = 2.0
DEFAULT_POLL_MAX_ATTEMPTS = 45

_FAILED_STATUSES = {"FAILED", "ERROR"}


class JobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


_ACTIVE_STATES = {JobState.SUBMITTED, JobState.POLLING}


@dataclass(frozen=True, slots=True)
class JobHandle:
    request_id: str | None
    status_url: str
    response_url: str


@dataclass(slots=True)
class JobResult:
    urls: list[str] = field(default_factory=list)
    revised_prompt: str | None = None


@dataclass(slots=True)
class PollOutcome:
    state: JobState
    result: JobResult | None = None
    error: GatewayError | None = None


def _auth_headers(credential: str) -> dict[str, str]:
    return {"Authorization": f"Key {credential}"}


def _non_empty_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _absolute_http_url(value: Any) -> str | None:
    text = _non_empty_str(value)
    if text is None:
        return None
    try:
        url = httpx.URL(text)
    except httpx.InvalidURL:
        return None
    if url.scheme not in ("http", "https") or not url.host:
        return None
    return text


def parse_job_handle(body: Any, *, submit_endpoint: str) -> JobHandle:
    if not isinstance(body, dict):
        raise UpstreamProtocolError("Fal API did not return a JSON object on submission.")

    request_id = _non_empty_str(body.get("request_id"))
    status_url = _absolute_http_url(body.get("status_url"))
    response_url = _absolute_http_url(body.get("response_url"))
    if request_id is not None:
        base = f"{submit_endpoint.rstrip('/')}/requests/{request_id}"
        status_url = status_url or f"{base}/status"
        response_url = response_url or base
    if status_url is None or response_url is None:
        raise UpstreamProtocolError("Fal API did not return valid polling URLs.")
    return JobHandle(
        request_id=request_id,
        status_url=status_url,
        response_url=response_url,
    )


def describe_submission_error(response: httpx.Response) -> str:
    text = response.text
    try:
        body = response.json()
    except ValueError:
        return text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("detail"):
        detail = body["detail"]
        return detail if isinstance(detail, str) else json.dumps(detail)
    return json.dumps(body)


def _url_of(item: Any) -> str | None:
    if isinstance(item, str):
        return _non_empty_str(item)
    if isinstance(item, dict):
        return _non_empty_str(item.get("url"))
    return None


def _urls_from_images(body: dict[str, Any]) -> list[str]:
    images = body.get("images")
    if not isinstance(images, list):
        return []
    return [url for url in (_url_of(img) for img in images if isinstance(img, dict)) if url]


def _urls_from_image(body: dict[str, Any]) -> list[str]:
    image = body.get("image")
    url = _url_of(image) if isinstance(image, dict) else None
    return [url] if url else []


def _urls_from_output(body: dict[str, Any]) -> list[str]:
    output = body.get("output")
    if not isinstance(output, list):
        return []
    urls: list[str] = []
    for item in output:
        if not isinstance(item, dict):
            continue
        content_type = item.get("content_type")
        if not isinstance(content_type, str) or not content_type.startswith("image/"):
            continue
        url = _url_of(item)
        if url:
            urls.append(url)
    return urls


def extract_result_urls(body: Any) -> list[str]:
    if isinstance(body, list):
        return [url for url in (_url_of(item) for item in body) if url]
    if not isinstance(body, dict):
        return []
    for extractor in (_urls_from_images, _urls_from_image, _urls_from_output):
        urls = extractor(body)
        if urls:
            return urls
    return []


def extract_revised_prompt(body: Any) -> str | None:
    if isinstance(body, dict):
        return _non_empty_str(body.get("revised_prompt"))
    return None


def next_state(outcome: PollOutcome, *, attempt: int, max_attempts: int) -> JobState:
    if outcome.state is JobState.COMPLETED and outcome.result is not None:
        return JobState.COMPLETED
    if outcome.state is JobState.FAILED and outcome.error is not None:
        return JobState.FAILED
    if attempt >= max_attempts:
        return JobState.TIMEOUT
    return JobState.POLLING


class JobDriver:
    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_attempts: int = DEFAULT_POLL_MAX_ATTEMPTS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self.poll_interval_seconds = max(0.0, float(poll_interval_seconds))
        self.max_attempts = max(1, int(max_attempts))
        self._sleep = sleep

    async def submit(
        self,
        capability: ModelCapability,
        payload: dict[str, Any],
        credential: str,
    ) -> JobHandle:
        logger.debug(
            "job_submit endpoint=%s payload=%s", capability.submit_endpoint, payload
        )
        try:
            response = await self._client.post(
                capability.submit_endpoint,
                json=payload,
                headers=_auth_headers(credential),
            )
        except httpx.RequestError as exc:
            logger.warning(
                "job_submit_request_error endpoint=%s error_type=%s error=%s",
                capability.submit_endpoint,
                exc.__class__.__name__,
                exc,
            )
            raise UpstreamSubmissionError(
                f"could not reach backend ({exc.__class__.__name__})"
            ) from exc

        logger.debug(
            "job_submit_response status=%d body=%s", response.status_code, response.text
        )
        if not response.is_success:
            detail = describe_submission_error(response)
            logger.warning(
                "job_submit_rejected endpoint=%s status=%d detail=%s",
                capability.submit_endpoint,
                response.status_code,
                detail,
            )
            raise UpstreamSubmissionError(detail, upstream_status=response.status_code)

        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamProtocolError(
                "Fal API returned a non-JSON submission response."
            ) from exc
        return parse_job_handle(body, submit_endpoint=capability.submit_endpoint)

    async def _fetch_result(
        self, handle: JobHandle, credential: str
    ) -> JobResult | None:
        try:
            response = await self._client.get(
                handle.response_url, headers=_auth_headers(credential)
            )
        except httpx.RequestError as exc:
            logger.warning(
                "job_result_request_error request_id=%s error=%s", handle.request_id, exc
            )
            return None
        if not response.is_success:
            logger.warning(
                "job_result_unavailable request_id=%s status=%d",
                handle.request_id,
                response.status_code,
            )
            return None
        try:
            body = response.json()
        except ValueError:
            logger.warning("job_result_not_json request_id=%s", handle.request_id)
            return None
        logger.debug("job_result request_id=%s body=%s", handle.request_id, body)
        return JobResult(
            urls=extract_result_urls(body),
            revised_prompt=extract_revised_prompt(body),
        )

    async def _failure_reason(self, handle: JobHandle, credential: str, status: str) -> str:
        fallback = f"Polling status indicated {status}."
        try:
            response = await self._client.get(
                handle.response_url, headers=_auth_headers(credential)
            )
        except httpx.RequestError as exc:
            logger.warning(
                "job_failure_reason_unavailable request_id=%s error=%s",
                handle.request_id,
                exc,
            )
            return fallback
        return response.text or fallback

    async def poll_once(
        self, handle: JobHandle, credential: str, attempt: int = 1
    ) -> PollOutcome:
        logger.debug(
            "job_poll request_id=%s attempt=%d/%d",
            handle.request_id,
            attempt,
            self.max_attempts,
        )
        try:
            response = await self._client.get(
                handle.status_url, headers=_auth_headers(credential)
            )
        except httpx.RequestError as exc:
            logger.warning(
                "job_status_request_error request_id=%s attempt=%d error_type=%s error=%s",
                handle.request_id,
                attempt,
                exc.__class__.__name__,
                exc,
            )
            return PollOutcome(state=JobState.POLLING)
        if not response.is_success:
            logger.warning(
                "job_status_unavailable request_id=%s attempt=%d status=%d",
                handle.request_id,
                attempt,
                response.status_code,
            )
            return PollOutcome(state=JobState.POLLING)

        try:
            status_body = response.json()
        except ValueError:
            return PollOutcome(state=JobState.POLLING)
        raw_status = status_body.get("status") if isinstance(status_body, dict) else None
        status = str(raw_status or "").upper()

        if status == "COMPLETED":
            result = await self._fetch_result(handle, credential)
            if result is not None and result.urls:
                return PollOutcome(state=JobState.COMPLETED, result=result)
            logger.warning(
                "job_completed_without_images request_id=%s attempt=%d",
                handle.request_id,
                attempt,
            )
            return PollOutcome(state=JobState.POLLING)

        if status in _FAILED_STATUSES:
            reason = await self._failure_reason(handle, credential, status)
            logger.warning(
                "job_failed request_id=%s status=%s reason=%s",
                handle.request_id,
                status,
                reason,
            )
            return PollOutcome(
                state=JobState.FAILED, error=GenerationFailedError(reason)
            )

        return PollOutcome(state=JobState.POLLING)

    async def run(
        self,
        capability: ModelCapability,
        payload: dict[str, Any],
        credential: str,
        *,
        num_images: int,
    ) -> JobResult:
        handle = await self.submit(capability, payload, credential)
        logger.info(
            "job_submitted request_id=%s endpoint=%s",
            handle.request_id,
            capability.submit_endpoint,
        )
        state = JobState.SUBMITTED
        outcome = PollOutcome(state=state)
        attempt = 0
        while state in _ACTIVE_STATES:
            attempt += 1
            await self._sleep(self.poll_interval_seconds)
            outcome = await self.poll_once(handle, credential, attempt)
            state = next_state(outcome, attempt=attempt, max_attempts=self.max_attempts)

        if state is JobState.COMPLETED and outcome.result is not None:
            logger.info(
                "job_completed request_id=%s attempts=%d images=%d",
                handle.request_id,
                attempt,
                len(outcome.result.urls),
            )
            return JobResult(
                urls=outcome.result.urls[: max(1, num_images)],
                revised_prompt=outcome.result.revised_prompt,
            )
        if state is JobState.FAILED and outcome.error is not None:
            raise outcome.error

        logger.warning(
            "job_timeout request_id=%s attempts=%d", handle.request_id, attempt
        )
        raise GenerationTimeoutError(attempt)
