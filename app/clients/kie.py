from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar

import httpx

from app.clients.errors import (
    ApiError,
    AuthenticationError,
    GenerationApiError,
    NetworkError,
    NotFoundError,
    PromptValidationError,
    QuotaExceededError,
    RateLimitError,
    TaskFailedError,
)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0
    sleep: Callable[[float], None] = time.sleep
    retry_on: tuple[type[GenerationApiError], ...] = (NetworkError, RateLimitError)

    def delay(self, attempt: int) -> float:
        return self.base_delay * attempt

    def run(self, operation: Callable[[], T], logger: Optional[logging.Logger] = None) -> T:
        log = logger or logging.getLogger(__name__)
        attempt = 0
        while True:
            attempt += 1
            try:
                return operation()
            except self.retry_on as exc:
                if attempt >= self.max_attempts:
                    raise
                delay = self.delay(attempt)
                log.info(
                    "retrying after error: %s (attempt %d/%d)",
                    exc,
                    attempt + 1,
                    self.max_attempts,
                    extra={"delay": delay, "error_type": type(exc).__name__},
                )
                self.sleep(delay)


@dataclass
class ClipMetadata:
    audio_url: str
    title: Optional[str] = None
    tags: Optional[str] = None
    duration: Optional[float] = None
    model_name: Optional[str] = None
    generated_prompt: Optional[str] = None
    audio_id: Optional[str] = None


@dataclass
class TaskStatus:
    task_id: Optional[str]
    status: Optional[str]
    error: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def normalized(self) -> str:
        return (self.status or "").strip().lower()

    @property
    def is_success(self) -> bool:
        return self.normalized in KieClient.SUCCESS_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.normalized in KieClient.PENDING_STATUSES


class KieClient:
    SUBMIT_PATH = "/generate"
    STATUS_PATH = "/generate/record-info"
    MAX_PROMPT_LENGTH = 3000

    SUCCESS_STATUSES = frozenset({"success", "completed"})
    PENDING_STATUSES = frozenset({"pending", "processing", "text_success", "first_success"})
    FAILURE_STATUSES = frozenset(
        {"failed", "create_task_failed", "generate_audio_failed", "sensitive_word_error", "callback_exception"}
    )
    KNOWN_STATUSES = SUCCESS_STATUSES | PENDING_STATUSES | FAILURE_STATUSES

    def __init__(
        self,
        api_key: str | None,
        base_url: str = "https://api.kie.ai/api/v1",
        model: str = "V4_5PLUS",
        callback_url: str | None = None,
        timeout: float = 30.0,
        retry: Optional[RetryPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.callback_url = callback_url
        self.timeout = timeout
        self.retry = retry or RetryPolicy()
        self._transport = transport
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    def submit(
        self,
        prompt: str,
        model: str | None = None,
        style: str | None = None,
        custom_mode: bool = False,
        instrumental: bool = True,
        **options: Any,
    ) -> str:
        self._validate_prompt(prompt)
        if self.callback_url and "callBackUrl" not in options:
            options["callBackUrl"] = self.callback_url
        payload: dict[str, Any] = {
            "prompt": prompt,
            "model": model or self.model,
            "customMode": custom_mode,
            "instrumental": instrumental,
        }
        if style:
            payload["style"] = style
        payload.update({key: value for key, value in options.items() if value is not None})

        body = self.retry.run(lambda: self._request("POST", self.SUBMIT_PATH, json=payload), self.log)
        data = body.get("data") or {}
        task_id = data.get("taskId") or data.get("task_id") if isinstance(data, dict) else None
        if not task_id:
            raise ApiError("Generation response missing taskId", body=body)
        self.log.info("kie task submitted", extra={"task_id": task_id, "model": payload["model"]})
        return str(task_id)

    def poll_status(self, task_id: str) -> TaskStatus:
        if not (task_id or "").strip():
            raise ValueError("Task ID cannot be blank")
        body = self.retry.run(
            lambda: self._request("GET", self.STATUS_PATH, params={"taskId": task_id}),
            self.log,
        )
        data = body.get("data")
        if not isinstance(data, dict):
            self.log.warning(
                "unexpected task status payload",
                extra={"task_id": task_id, "payload_type": type(data).__name__},
            )
            return TaskStatus(task_id=task_id, status=None)

        self.log.debug("kie task status", extra={"task_id": task_id, "payload": data})
        self._inspect_task_data(data)
        status = TaskStatus(
            task_id=data.get("taskId") or task_id,
            status=data.get("status"),
            error=data.get("errorMessage") or data.get("error"),
            payload=data,
        )
        if status.normalized in self.FAILURE_STATUSES:
            raise TaskFailedError(status.error or f"Generation failed: {status.status}", body=data)
        return status

    def fetch_result(self, task_id: str) -> List[ClipMetadata]:
        return self.parse_clips(self.poll_status(task_id).payload)

    def parse_clips(self, task_data: Any) -> List[ClipMetadata]:
        if not isinstance(task_data, dict):
            return []
        response = task_data.get("response")
        variants = response.get("sunoData") if isinstance(response, dict) else None
        if not isinstance(variants, list):
            return []
        clips: List[ClipMetadata] = []
        for variant in variants:
            if not isinstance(variant, dict):
                continue
            audio_url = variant.get("audioUrl")
            if not audio_url or not str(audio_url).strip():
                self.log.debug("skipping clip variant without audio url", extra={"audio_id": variant.get("audioId")})
                continue
            clips.append(
                ClipMetadata(
                    audio_url=str(audio_url).strip(),
                    title=variant.get("title"),
                    tags=variant.get("tags"),
                    duration=_as_float(variant.get("duration")),
                    model_name=variant.get("modelName"),
                    generated_prompt=variant.get("prompt"),
                    audio_id=variant.get("audioId"),
                )
            )
        return clips

    def download_audio(self, audio_url: str, destination: Path | str) -> Path:
        if not (audio_url or "").strip():
            raise ValueError("Audio URL cannot be blank")
        target = Path(destination)

        def _download() -> Path:
            try:
                with self._client() as client:
                    with client.stream("GET", audio_url, follow_redirects=True) as response:
                        if response.status_code != 200:
                            raise NetworkError(
                                f"Failed to download audio: HTTP {response.status_code}",
                                status_code=response.status_code,
                            )
                        target.parent.mkdir(parents=True, exist_ok=True)
                        with open(target, "wb") as f:
                            for chunk in response.iter_bytes():
                                f.write(chunk)
            except httpx.TransportError as exc:
                raise NetworkError(f"Download failed: {exc}") from exc
            return target

        path = self.retry.run(_download, self.log)
        self.log.info("clip audio downloaded", extra={"path": str(path), "bytes": path.stat().st_size})
        return path

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not self.enabled():
            raise AuthenticationError("KIE API key is not configured")
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        url = f"{self.base_url}{path}"
        try:
            with self._client() as client:
                response = client.request(method, url, headers=headers, json=json, params=params)
        except httpx.TransportError as exc:
            self.log.error("kie request failed", extra={"error": str(exc), "path": path})
            raise NetworkError(f"Network error: {exc}") from exc
        return self._handle_response(response, path)

    def _handle_response(self, response: httpx.Response, path: str) -> dict[str, Any]:
        status = response.status_code
        if 200 <= status < 300:
            body = self._parse_body(response)
            code = body.get("code")
            if code not in (None, 0, 200):
                message = body.get("msg") or body.get("message") or "unknown error"
                raise self._error_for_code(code, f"API error {code}: {message}", body)
            return body

        error_body: Any
        try:
            error_body = response.json()
        except ValueError:
            error_body = response.text
        message = error_body.get("msg") or error_body.get("message") if isinstance(error_body, dict) else None
        self.log.error("kie HTTP error", extra={"status": status, "body": error_body, "path": path})
        if status == 401:
            raise AuthenticationError("Authentication failed. Check your API key", status, error_body)
        if status == 402:
            raise QuotaExceededError(f"Quota exceeded: {message or 'insufficient credits'}", status, error_body)
        if status == 404:
            raise NotFoundError(f"Not found: {message or path}", status, error_body)
        if status == 429:
            raise RateLimitError("Rate limit exceeded. Please wait before making more requests", status, error_body)
        raise ApiError(f"HTTP {status}: {message or 'unexpected response'}", status, error_body)

    def _parse_body(self, response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise ApiError(f"Invalid JSON response: {exc}", response.status_code, response.text) from exc
        if not isinstance(body, dict):
            raise ApiError("Unexpected response shape", response.status_code, body)
        return body

    def _error_for_code(self, code: Any, message: str, body: dict[str, Any]) -> GenerationApiError:
        lowered = message.lower()
        if code == 401:
            return AuthenticationError(message, code, body)
        if code in (405, 429, 430):
            return RateLimitError(message, code, body)
        if code == 402 or "credit" in lowered or "quota" in lowered:
            return QuotaExceededError(message, code, body)
        if code == 404:
            return NotFoundError(message, code, body)
        return ApiError(message, code if isinstance(code, int) else None, body)

    def _validate_prompt(self, prompt: str) -> None:
        if not (prompt or "").strip():
            raise PromptValidationError("Prompt cannot be blank")
        if len(prompt) > self.MAX_PROMPT_LENGTH:
            raise PromptValidationError(f"Prompt is too long (maximum {self.MAX_PROMPT_LENGTH} characters)")

    def _inspect_task_data(self, data: dict[str, Any]) -> None:
        for required in ("taskId", "status"):
            if required not in data:
                self.log.warning(
                    "missing field %s in task status response",
                    required,
                    extra={"keys": sorted(data.keys())},
                )
        status = data.get("status")
        if status and str(status).strip().lower() not in self.KNOWN_STATUSES:
            self.log.warning("unexpected task status value: %r", status)


def _as_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
