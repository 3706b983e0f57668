from __future__ import annotations

import json
import logging

import httpx
import pytest

from app.clients.errors import (
    ApiError,
    AuthenticationError,
    NetworkError,
    NotFoundError,
    PromptValidationError,
    QuotaExceededError,
    RateLimitError,
    TaskFailedError,
)
from app.clients.kie import KieClient, RetryPolicy


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def build_client(handler, sleep=None, api_key="secret") -> KieClient:
    return KieClient(
        api_key=api_key,
        base_url="https://api.test/api/v1",
        callback_url="https://callback.test/hook",
        retry=RetryPolicy(max_attempts=3, base_delay=1.0, sleep=sleep or FakeSleep()),
        transport=httpx.MockTransport(handler),
    )


def status_payload(status="SUCCESS", variants=None, **extra):
    data = {"taskId": "task-1", "status": status, "response": {"sunoData": variants or []}}
    data.update(extra)
    return {"code": 200, "msg": "success", "data": data}


def test_submit_posts_prompt_and_returns_task_id():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "abc123"}})

    task_id = build_client(handler).submit("calm piano loop", style="lofi")

    assert task_id == "abc123"
    assert seen["url"] == "https://api.test/api/v1/generate"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {
        "prompt": "calm piano loop",
        "model": "V4_5PLUS",
        "customMode": False,
        "instrumental": True,
        "style": "lofi",
        "callBackUrl": "https://callback.test/hook",
    }


def test_submit_accepts_snake_case_task_id():
    def handler(request):
        return httpx.Response(200, json={"code": 0, "data": {"task_id": "snake"}})

    assert build_client(handler).submit("x") == "snake"


@pytest.mark.parametrize("prompt", ["", "   ", "a" * 3001])
def test_submit_validates_prompt_without_network(prompt):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(PromptValidationError):
        build_client(handler).submit(prompt)
    assert calls == []


def test_prompt_at_maximum_length_is_accepted():
    def handler(request):
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "t"}})

    assert build_client(handler).submit("a" * 3000) == "t"


def test_missing_api_key_raises_authentication_error():
    def handler(request):  # pragma: no cover - never reached
        raise AssertionError("no request expected")

    with pytest.raises(AuthenticationError):
        build_client(handler, api_key="").submit("prompt")


def test_network_errors_are_retried_until_success():
    sleep = FakeSleep()
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) <= 2:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"code": 200, "data": {"taskId": "ok"}})

    assert build_client(handler, sleep).submit("prompt") == "ok"
    assert len(attempts) == 3
    assert sleep.calls == [1.0, 2.0]


def test_authentication_error_is_not_retried():
    sleep = FakeSleep()
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(401, json={"msg": "bad key"})

    with pytest.raises(AuthenticationError) as excinfo:
        build_client(handler, sleep).submit("prompt")
    assert len(attempts) == 1
    assert sleep.calls == []
    assert excinfo.value.status_code == 401


def test_rate_limit_exhausts_retries_and_reraises():
    sleep = FakeSleep()
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(429, json={"msg": "slow down"})

    with pytest.raises(RateLimitError):
        build_client(handler, sleep).submit("prompt")
    assert len(attempts) == 3
    assert sleep.calls == [1.0, 2.0]


def test_timeouts_are_classified_as_network_errors():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(NetworkError):
        build_client(handler).poll_status("task-1")


@pytest.mark.parametrize(
    ("status_code", "error"),
    [(402, QuotaExceededError), (404, NotFoundError), (400, ApiError), (500, ApiError)],
)
def test_http_errors_are_classified_without_retry(status_code, error):
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(status_code, json={"msg": "nope"})

    with pytest.raises(error) as excinfo:
        build_client(handler).submit("prompt")
    assert len(attempts) == 1
    assert excinfo.value.status_code == status_code
    assert excinfo.value.body == {"msg": "nope"}


@pytest.mark.parametrize(
    ("code", "error"),
    [(401, AuthenticationError), (402, QuotaExceededError), (404, NotFoundError), (500, ApiError)],
)
def test_error_codes_inside_successful_responses(code, error):
    def handler(request):
        return httpx.Response(200, json={"code": code, "msg": "provider says no"})

    with pytest.raises(error):
        build_client(handler).submit("prompt")


def test_rate_limit_code_inside_successful_response_is_retried():
    sleep = FakeSleep()
    responses = iter(
        [
            httpx.Response(200, json={"code": 430, "msg": "call frequency too high"}),
            httpx.Response(200, json={"code": 200, "data": {"taskId": "later"}}),
        ]
    )

    assert build_client(lambda request: next(responses), sleep).submit("prompt") == "later"
    assert sleep.calls == [1.0]


def test_malformed_json_is_an_api_error():
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(ApiError) as excinfo:
        build_client(handler).submit("prompt")
    assert "Invalid JSON" in str(excinfo.value)


def test_poll_status_returns_task_status():
    def handler(request):
        assert request.url.params["taskId"] == "task-1"
        return httpx.Response(200, json=status_payload("PENDING"))

    status = build_client(handler).poll_status("task-1")

    assert status.task_id == "task-1"
    assert status.is_pending
    assert not status.is_success


@pytest.mark.parametrize("status", ["failed", "GENERATE_AUDIO_FAILED", "SENSITIVE_WORD_ERROR"])
def test_poll_status_raises_on_failed_task(status):
    def handler(request):
        return httpx.Response(200, json=status_payload(status, errorMessage="content policy"))

    with pytest.raises(TaskFailedError, match="content policy"):
        build_client(handler).poll_status("task-1")


def test_poll_status_logs_unknown_status_and_missing_fields(caplog):
    def handler(request):
        return httpx.Response(200, json={"code": 200, "data": {"status": "WARMING_UP"}})

    with caplog.at_level(logging.WARNING, logger="app.clients.kie"):
        status = build_client(handler).poll_status("task-1")

    assert status.status == "WARMING_UP"
    messages = " ".join(record.getMessage() for record in caplog.records)
    assert "taskId" in messages
    assert "WARMING_UP" in messages


def test_poll_status_rejects_blank_task_id():
    with pytest.raises(ValueError):
        build_client(lambda request: httpx.Response(200, json={})).poll_status(" ")


def test_fetch_result_skips_variants_without_audio():
    variants = [
        {"audioUrl": "https://cdn.test/a.mp3", "title": "A", "duration": 181.4, "audioId": "a"},
        {"audioUrl": "", "title": "broken"},
        "not-a-dict",
        {"title": "no url"},
        {"audioUrl": "https://cdn.test/b.mp3", "duration": "n/a", "modelName": "chirp"},
    ]

    def handler(request):
        return httpx.Response(200, json=status_payload("SUCCESS", variants))

    clips = build_client(handler).fetch_result("task-1")

    assert [clip.audio_url for clip in clips] == ["https://cdn.test/a.mp3", "https://cdn.test/b.mp3"]
    assert clips[0].duration == pytest.approx(181.4)
    assert clips[1].duration is None
    assert clips[1].model_name == "chirp"


@pytest.mark.parametrize("payload", [None, {}, {"response": None}, {"response": {"sunoData": "x"}}])
def test_parse_clips_tolerates_empty_shapes(payload):
    assert build_client(lambda request: httpx.Response(200)).parse_clips(payload) == []


def test_download_audio_writes_file(tmp_path):
    def handler(request):
        return httpx.Response(200, content=b"ID3audio")

    target = tmp_path / "nested" / "clip.mp3"
    path = build_client(handler).download_audio("https://cdn.test/a.mp3", target)

    assert path == target
    assert target.read_bytes() == b"ID3audio"


def test_download_audio_failure_is_network_error(tmp_path):
    sleep = FakeSleep()

    def handler(request):
        return httpx.Response(503)

    with pytest.raises(NetworkError):
        build_client(handler, sleep).download_audio("https://cdn.test/a.mp3", tmp_path / "a.mp3")
    assert len(sleep.calls) == 2


def test_retry_delays_increase():
    policy = RetryPolicy(base_delay=0.5)
    delays = [policy.delay(attempt) for attempt in range(1, 5)]
    assert delays == sorted(delays)
    assert len(set(delays)) == len(delays)
