import asyncio
import base64
import json

import httpx
import pytest

from shotpix.gateway.errors import GatewayTimeout, InvalidImageError, ParseError, ProviderError, ProviderUnavailable
from shotpix.gateway.upscale.poller import (
    JobStatus,
    UpscaleJob,
    UpscaleJobPoller,
    extract_job_id,
    extract_output,
)
from tests.gateway.helpers import json_response, make_image_bytes

SUBMIT = "https://api.wavespeed.ai/api/v3/wavespeed-ai/image-upscaler"
RESULT = "https://api.wavespeed.ai/api/v3/predictions/{job_id}/result"
OUTPUT_URL = "https://cdn.wavespeed.ai/outputs/job-1.jpeg"
UPSCALED = make_image_bytes(64, 48)


class _FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _FakeProvider:
    """Serves the submit response, then one scripted poll response per call."""

    def __init__(self, submit: httpx.Response, polls: list[httpx.Response]) -> None:
        self.submit = submit
        self.polls = list(polls)
        self.submitted: list[dict] = []
        self.poll_count = 0
        self.downloads = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.headers["Authorization"] == "Bearer wavespeed-key"
            self.submitted.append(json.loads(request.content))
            return self.submit
        if str(request.url) == OUTPUT_URL:
            self.downloads += 1
            return httpx.Response(200, content=UPSCALED, headers={"content-type": "image/jpeg"})
        assert str(request.url) == RESULT.format(job_id="job-1")
        response = self.polls[min(self.poll_count, len(self.polls) - 1)]
        self.poll_count += 1
        return response


def _poller(make_http_client, provider, sleep, **kwargs) -> UpscaleJobPoller:
    return UpscaleJobPoller(
        make_http_client(provider),
        api_key="wavespeed-key",
        submit_endpoint=SUBMIT,
        result_endpoint=RESULT,
        sleep=sleep,
        **kwargs,
    )


def _status(status: str, **extra) -> httpx.Response:
    return json_response({"data": {"status": status, **extra}})


async def test_missing_job_id_fails_without_polling(make_http_client) -> None:
    provider = _FakeProvider(json_response({"data": {"status": "created"}}), [])
    sleep = _FakeSleep()

    with pytest.raises(ParseError, match="request ID"):
        await _poller(make_http_client, provider, sleep).upscale("https://img.example.com/a.jpg")

    assert provider.poll_count == 0
    assert sleep.delays == []


async def test_processing_then_completed_returns_output(make_http_client) -> None:
    provider = _FakeProvider(
        json_response({"data": {"id": "job-1"}}),
        [_status("processing"), _status("processing"), _status("completed", outputs=[OUTPUT_URL])],
    )
    sleep = _FakeSleep()

    payload = await _poller(make_http_client, provider, sleep).upscale("https://img.example.com/a.jpg")

    assert payload.data == UPSCALED
    assert payload.mime_type == "image/jpeg"
    assert provider.poll_count == 3
    assert provider.downloads == 1
    assert sleep.delays == [2.0, 4.0, 4.0]
    assert provider.submitted[0] == {
        "enable_base64_output": False,
        "enable_sync_mode": False,
        "image": "https://img.example.com/a.jpg",
        "output_format": "jpeg",
        "target_resolution": "4k",
    }


async def test_failed_status_aborts_immediately(make_http_client) -> None:
    provider = _FakeProvider(
        json_response({"id": "job-1"}),
        [_status("failed", error="image too large"), _status("completed", outputs=[OUTPUT_URL])],
    )

    with pytest.raises(ProviderError, match="image too large"):
        await _poller(make_http_client, provider, _FakeSleep()).upscale("https://img.example.com/a.jpg")

    assert provider.poll_count == 1


async def test_attempt_cap_raises_timeout(make_http_client) -> None:
    provider = _FakeProvider(json_response({"requestId": "job-1"}), [_status("pending")])
    sleep = _FakeSleep()

    with pytest.raises(GatewayTimeout):
        await _poller(make_http_client, provider, sleep, max_attempts=5).upscale("https://img.example.com/a.jpg")

    assert provider.poll_count == 5
    assert sleep.delays == [2.0, 4.0, 4.0, 8.0, 8.0]


async def test_completed_without_output_is_parse_error(make_http_client) -> None:
    provider = _FakeProvider(json_response({"request_id": "job-1"}), [json_response({"status": "succeeded"})])

    with pytest.raises(ParseError, match="without an output"):
        await _poller(make_http_client, provider, _FakeSleep()).upscale("https://img.example.com/a.jpg")


async def test_non_2xx_poll_is_retried(make_http_client) -> None:
    provider = _FakeProvider(
        json_response({"id": "job-1"}),
        [httpx.Response(502, text="bad gateway"), json_response({"status": "success", "output": OUTPUT_URL})],
    )

    payload = await _poller(make_http_client, provider, _FakeSleep()).upscale("https://img.example.com/a.jpg")

    assert payload.data == UPSCALED
    assert provider.poll_count == 2


async def test_non_2xx_on_final_attempt_raises(make_http_client) -> None:
    provider = _FakeProvider(json_response({"id": "job-1"}), [httpx.Response(500, text="boom")])

    poller = _poller(make_http_client, provider, _FakeSleep(), max_attempts=2)

    with pytest.raises(ProviderUnavailable) as excinfo:
        await poller.upscale("https://img.example.com/a.jpg")

    assert excinfo.value.status_code == 500
    assert provider.poll_count == 2


async def test_data_url_output_is_decoded(make_http_client) -> None:
    data_url = "data:image/png;base64," + base64.b64encode(b"png-bytes").decode()
    polls = [json_response({"status": "completed", "output": data_url})]
    provider = _FakeProvider(json_response({"id": "job-1"}), polls)

    payload = await _poller(make_http_client, provider, _FakeSleep()).upscale("https://img.example.com/a.jpg")

    assert payload.data == b"png-bytes"
    assert payload.mime_type == "image/png"
    assert provider.downloads == 0


async def test_unknown_status_with_output_completes(make_http_client) -> None:
    provider = _FakeProvider(json_response({"id": "job-1"}), [json_response({"url": OUTPUT_URL})])

    payload = await _poller(make_http_client, provider, _FakeSleep()).upscale("https://img.example.com/a.jpg")

    assert payload.data == UPSCALED


async def test_submit_error_is_provider_unavailable(make_http_client) -> None:
    provider = _FakeProvider(httpx.Response(401, text="unauthorized"), [])

    with pytest.raises(ProviderUnavailable) as excinfo:
        await _poller(make_http_client, provider, _FakeSleep()).upscale("https://img.example.com/a.jpg")

    assert excinfo.value.status_code == 401


async def test_rejects_non_url_source(make_http_client) -> None:
    provider = _FakeProvider(json_response({"id": "job-1"}), [])

    with pytest.raises(InvalidImageError):
        await _poller(make_http_client, provider, _FakeSleep()).upscale("presets/a.jpg")

    assert provider.submitted == []


async def test_cancellation_propagates_from_sleep(make_http_client) -> None:
    async def _cancelled_sleep(delay: float) -> None:
        raise asyncio.CancelledError()

    provider = _FakeProvider(json_response({"id": "job-1"}), [_status("processing")])

    with pytest.raises(asyncio.CancelledError):
        await _poller(make_http_client, provider, _cancelled_sleep).upscale("https://img.example.com/a.jpg")

    assert provider.poll_count == 0


def test_delay_tiers_increase() -> None:
    poller = UpscaleJobPoller(httpx.AsyncClient(), api_key="k", submit_endpoint=SUBMIT, result_endpoint=RESULT)

    assert [poller.delay_for(attempt) for attempt in range(5)] == [2.0, 4.0, 4.0, 8.0, 8.0]


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ({"id": "a"}, "a"),
        ({"requestId": "b"}, "b"),
        ({"request_id": "c"}, "c"),
        ({"data": {"id": "d"}}, "d"),
        ({"id": "", "data": {"id": "e"}}, "e"),
        ({"data": {}}, None),
    ],
)
def test_job_id_strategies(body: dict, expected) -> None:
    assert extract_job_id(body) == expected


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ({"output": "u1"}, "u1"),
        ({"output": {"url": "u2"}}, "u2"),
        ({"data": {"output": "u3"}}, "u3"),
        ({"data": {"output": {"url": "u4"}}}, "u4"),
        ({"url": "u5"}, "u5"),
        ({"data": {"url": "u6"}}, "u6"),
        ({"outputs": ["u7"]}, "u7"),
        ({"data": {"outputs": [{"url": "u8"}]}}, "u8"),
        ({"data": {"outputs": []}}, None),
    ],
)
def test_output_strategies(body: dict, expected) -> None:
    assert extract_output(body) == expected


def test_job_transitions_are_monotonic() -> None:
    job = UpscaleJob(id="job-1")

    job.advance(JobStatus.POLLING)
    job.advance(JobStatus.POLLING)
    job.advance(JobStatus.COMPLETED, "https://cdn/x.jpg")

    assert job.result_ref == "https://cdn/x.jpg"
    with pytest.raises(ValueError):
        job.advance(JobStatus.POLLING)
    with pytest.raises(ValueError):
        UpscaleJob(id="job-2").advance(JobStatus.COMPLETED, "https://cdn/y.jpg")
    with pytest.raises(ValueError):
        UpscaleJob(id="job-3", status=JobStatus.POLLING).advance(JobStatus.COMPLETED)


class _FlakyProvider(_FakeProvider):
    """Raises a connection error on the first ``failures`` polls."""

    def __init__(self, failures: int, polls: list[httpx.Response]) -> None:
        super().__init__(json_response({"id": "job-1"}), polls)
        self.failures = failures
        self.poll_requests = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and str(request.url) != OUTPUT_URL:
            self.poll_requests += 1
            if self.poll_requests <= self.failures:
                raise httpx.ConnectError("connection reset", request=request)
        return super().__call__(request)


async def test_connection_error_poll_is_retried(make_http_client) -> None:
    provider = _FlakyProvider(1, [_status("completed", outputs=[OUTPUT_URL])])

    poller = _poller(make_http_client, provider, _FakeSleep(), max_attempts=3)

    payload = await poller.upscale("https://img.example.com/a.jpg")

    assert payload.data == UPSCALED
    assert provider.poll_requests == 2


async def test_connection_error_on_final_attempt_fails_the_job(make_http_client) -> None:
    provider = _FlakyProvider(3, [_status("processing")])
    poller = _poller(make_http_client, provider, _FakeSleep(), max_attempts=3)
    job = UpscaleJob(id="job-1")

    with pytest.raises(ProviderUnavailable) as excinfo:
        await poller.poll(job)

    assert job.status == JobStatus.FAILED
    assert job.attempts == 3
    assert excinfo.value.debug["jobId"] == "job-1"
