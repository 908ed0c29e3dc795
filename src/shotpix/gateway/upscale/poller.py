"""Submit-then-poll client for the asynchronous 4K upscale provider.

The provider acknowledges a submission with a job id and exposes the result
at a per-job endpoint. The poller waits a short delay before the first poll,
a medium delay for the next two and a long delay thereafter, up to a fixed
number of attempts.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx

from shotpix.gateway.config import GatewayConfig
from shotpix.gateway.debug import excerpt, sanitize
from shotpix.gateway.errors import (
    GatewayError,
    GatewayTimeout,
    InvalidImageError,
    ParseError,
    ProviderError,
    ProviderUnavailable,
)
from shotpix.gateway.image.fetch import ImageFetcher, decode_data_url
from shotpix.gateway.image.schema import ImagePayload
from shotpix.gateway.log_config import logger

COMPLETED_STATUSES = frozenset({"completed", "succeeded", "success"})
FAILED_STATUSES = frozenset({"failed", "error"})
IN_PROGRESS_STATUSES = frozenset({"processing", "pending", "starting", "created"})

Sleep = Callable[[float], Awaitable[Any]]


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.SUBMITTED: frozenset({JobStatus.POLLING, JobStatus.FAILED, JobStatus.TIMED_OUT}),
    JobStatus.POLLING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.TIMED_OUT}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.TIMED_OUT: frozenset(),
}


@dataclass
class UpscaleJob:
    id: str
    status: JobStatus = JobStatus.SUBMITTED
    result_ref: str | None = None
    attempts: int = 0

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self.status]

    def advance(self, status: JobStatus, result_ref: str | None = None) -> None:
        """Move to ``status``. Re-entering the current status is a no-op; going back raises."""
        if status == self.status and not self.is_terminal:
            return
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(f"illegal upscale job transition {self.status.value} -> {status.value}")
        if status == JobStatus.COMPLETED and not result_ref:
            raise ValueError("a completed upscale job needs a result reference")
        self.status = status
        if result_ref:
            self.result_ref = result_ref


# ---------------------------------------------------------------------------
# Response shape strategies
# ---------------------------------------------------------------------------


def _nested(body: dict[str, Any], key: str) -> Any:
    data = body.get("data")
    return data.get(key) if isinstance(data, dict) else None


def _string(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def _url_of(value: Any) -> str | None:
    return _string(value.get("url")) if isinstance(value, dict) else None


JOB_ID_STRATEGIES: tuple[Callable[[dict[str, Any]], Any], ...] = (
    lambda body: body.get("id"),
    lambda body: body.get("requestId"),
    lambda body: body.get("request_id"),
    lambda body: _nested(body, "id"),
)


def _first_output(body: dict[str, Any]) -> str | None:
    outputs = _nested(body, "outputs") or body.get("outputs")
    if not isinstance(outputs, list) or not outputs:
        return None
    first = outputs[0]
    return _string(first) or _url_of(first)


OUTPUT_STRATEGIES: tuple[Callable[[dict[str, Any]], str | None], ...] = (
    lambda body: _string(body.get("output")),
    lambda body: _url_of(body.get("output")),
    lambda body: _string(_nested(body, "output")),
    lambda body: _url_of(_nested(body, "output")),
    lambda body: _string(body.get("url")),
    lambda body: _string(_nested(body, "url")),
    _first_output,
)


def extract_job_id(body: dict[str, Any]) -> str | None:
    for strategy in JOB_ID_STRATEGIES:
        value = strategy(body)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value):
            return str(value)
    return None


def extract_output(body: dict[str, Any]) -> str | None:
    for strategy in OUTPUT_STRATEGIES:
        value = strategy(body)
        if value:
            return value
    return None


def extract_status(body: dict[str, Any]) -> str:
    value = body.get("status") or _nested(body, "status")
    return value.lower() if isinstance(value, str) else ""


def _failure_text(body: dict[str, Any]) -> str:
    for value in (body.get("error"), body.get("message"), _nested(body, "error"), _nested(body, "message")):
        if isinstance(value, str) and value:
            return value
    return "Unknown error"


class UpscaleJobPoller:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_key: str | None,
        submit_endpoint: str,
        result_endpoint: str,
        target_resolution: str = "4k",
        output_format: str = "jpeg",
        max_attempts: int = 20,
        first_delay: float = 2.0,
        early_delay: float = 4.0,
        late_delay: float = 8.0,
        timeout: float = 60.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._http = http_client
        self._api_key = api_key
        self._submit_endpoint = submit_endpoint
        self._result_endpoint = result_endpoint
        self._target_resolution = target_resolution
        self._output_format = output_format
        self._max_attempts = max_attempts
        self._first_delay = first_delay
        self._early_delay = early_delay
        self._late_delay = late_delay
        self._timeout = timeout
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        http_client: httpx.AsyncClient,
        config: GatewayConfig,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> "UpscaleJobPoller":
        return cls(
            http_client,
            api_key=config.wavespeed_api_key,
            submit_endpoint=config.upscaler_endpoint,
            result_endpoint=config.upscaler_result_endpoint,
            target_resolution=config.upscaler_target_resolution,
            output_format=config.upscaler_output_format,
            max_attempts=config.poll_max_attempts,
            first_delay=config.poll_first_delay,
            early_delay=config.poll_early_delay,
            late_delay=config.poll_late_delay,
            timeout=config.request_timeout,
            sleep=sleep,
        )

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait before poll number ``attempt`` (zero based)."""
        if attempt == 0:
            return self._first_delay
        if attempt <= 2:
            return self._early_delay
        return self._late_delay

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def build_submit_body(self, image_ref: str) -> dict[str, Any]:
        return {
            "enable_base64_output": False,
            "enable_sync_mode": False,
            "image": image_ref,
            "output_format": self._output_format,
            "target_resolution": self._target_resolution,
        }

    async def submit(self, image_ref: str) -> UpscaleJob:
        debug = {"endpoint": self._submit_endpoint, "imageRef": image_ref}
        try:
            response = await self._http.post(
                self._submit_endpoint,
                json=self.build_submit_body(image_ref),
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise GatewayTimeout("Upscale submission timed out", debug=debug) from exc
        except httpx.HTTPError as exc:
            raise ProviderUnavailable("Upscale provider unreachable", debug={**debug, "error": str(exc)}) from exc

        if response.status_code >= 400:
            raise ProviderUnavailable(
                f"WaveSpeed API error: {response.status_code}",
                status_code=response.status_code,
                debug={**debug, "rawResponse": excerpt(response.text)},
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise ParseError("Failed to parse upscale submission response", status_code=response.status_code) from exc

        job_id = extract_job_id(body) if isinstance(body, dict) else None
        if job_id is None:
            raise ParseError(
                "WaveSpeed API did not return a request ID",
                status_code=response.status_code,
                debug={**debug, "rawResponse": sanitize(body)},
            )
        logger.info("upscale.submitted jobId=%s", job_id)
        return UpscaleJob(id=job_id)

    async def _poll_once(self, job: UpscaleJob, endpoint: str, final: bool) -> dict[str, Any] | None:
        try:
            response = await self._http.get(endpoint, headers=self._headers(), timeout=self._timeout)
        except httpx.TimeoutException:
            if final:
                raise
            logger.warning("upscale.poll timeout jobId=%s attempt=%d", job.id, job.attempts)
            return None
        except httpx.HTTPError as exc:
            if final:
                raise ProviderUnavailable(
                    "Failed to get result: upscale provider unreachable",
                    debug={"jobId": job.id, "endpoint": endpoint, "error": str(exc)},
                ) from exc
            logger.warning("upscale.poll transport error jobId=%s attempt=%d error=%s", job.id, job.attempts, exc)
            return None

        if response.status_code >= 400:
            if final:
                raise ProviderUnavailable(
                    f"Failed to get result: {response.status_code}",
                    status_code=response.status_code,
                    debug={"jobId": job.id, "rawResponse": excerpt(response.text)},
                )
            logger.warning("upscale.poll status=%d jobId=%s attempt=%d", response.status_code, job.id, job.attempts)
            return None

        try:
            body = response.json()
        except ValueError as exc:
            if final:
                raise ParseError("Failed to parse upscale result", status_code=response.status_code) from exc
            logger.warning("upscale.poll unparseable jobId=%s attempt=%d", job.id, job.attempts)
            return None
        if not isinstance(body, dict):
            if final:
                raise ParseError("Unexpected upscale result shape", status_code=response.status_code)
            return None
        return body

    async def poll(self, job: UpscaleJob) -> str:
        """Poll until the job completes and return its output reference."""
        endpoint = self._result_endpoint.format(job_id=job.id)
        job.advance(JobStatus.POLLING)

        for attempt in range(self._max_attempts):
            await self._sleep(self.delay_for(attempt))
            job.attempts = attempt + 1
            final = attempt == self._max_attempts - 1
            try:
                body = await self._poll_once(job, endpoint, final)
            except httpx.TimeoutException as exc:
                job.advance(JobStatus.TIMED_OUT)
                raise GatewayTimeout("Upscale result request timed out", debug={"jobId": job.id}) from exc
            except GatewayError:
                job.advance(JobStatus.FAILED)
                raise
            if body is None:
                continue

            status = extract_status(body)
            logger.debug("upscale.poll jobId=%s attempt=%d status=%s", job.id, job.attempts, status or "-")

            if status in COMPLETED_STATUSES:
                output = extract_output(body)
                if output is None:
                    job.advance(JobStatus.FAILED)
                    raise ParseError(
                        "Upscale job completed without an output",
                        debug={"jobId": job.id, "rawResponse": sanitize(body)},
                    )
                job.advance(JobStatus.COMPLETED, output)
                return output
            if status in FAILED_STATUSES:
                job.advance(JobStatus.FAILED)
                raise ProviderError(
                    f"Upscaling failed: {_failure_text(body)}",
                    debug={"jobId": job.id, "rawResponse": sanitize(body)},
                )
            if status in IN_PROGRESS_STATUSES:
                continue

            output = extract_output(body)
            if output is not None:
                job.advance(JobStatus.COMPLETED, output)
                return output

        job.advance(JobStatus.TIMED_OUT)
        raise GatewayTimeout(
            f"Upscaling timed out after {self._max_attempts} polling attempts",
            debug={"jobId": job.id},
        )

    async def download(self, result_ref: str) -> ImagePayload:
        if result_ref.startswith("data:"):
            try:
                return decode_data_url(result_ref)
            except InvalidImageError as exc:
                raise ParseError("Invalid base64 data URL format", debug={"resultRef": result_ref[:100]}) from exc
        try:
            return await ImageFetcher(self._http, timeout=self._timeout).fetch(result_ref)
        except InvalidImageError as exc:
            raise ProviderError(
                "Failed to download upscaled image",
                status_code=exc.status_code,
                debug={"resultRef": result_ref},
            ) from exc

    async def upscale(self, image_ref: str) -> ImagePayload:
        """Upscale the image at ``image_ref`` (URL or data URL) and return the result bytes."""
        if not self._api_key:
            raise GatewayError("WAVESPEED_API_KEY is required")
        if not image_ref or not image_ref.startswith(("https://", "http://", "data:")):
            raise InvalidImageError("Upscale source must be an http(s) or data URL")

        job = await self.submit(image_ref)
        result_ref = await self.poll(job)
        payload = await self.download(result_ref)
        logger.info(
            "upscale.completed jobId=%s attempts=%d mimeType=%s bytes=%d",
            job.id,
            job.attempts,
            payload.mime_type,
            len(payload),
        )
        return payload
