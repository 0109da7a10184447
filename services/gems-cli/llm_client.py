"""HTTP client for an OpenAI-compatible chat/completions API.

Uses httpx with separate connect and overall timeouts, and tenacity to retry
connection failures (with exponential backoff) before any output is produced.
Streaming replies are consumed as Server-Sent Events and forwarded fragment by
fragment while being accumulated.
"""

import enum
import json
import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from models import APIRequest

logger = logging.getLogger(__name__)

SSE_PREFIX = "data: "
SSE_DONE = "[DONE]"

# curl-compatible exit codes for transport failures
EXIT_GENERIC = 1
EXIT_CONNECT_FAILED = 7
EXIT_TIMEOUT = 28
EXIT_EMPTY_REPLY = 52
EXIT_RECV_FAILED = 56


class LLMClientError(Exception):
    """Base for API client failures."""

    exit_code = EXIT_GENERIC


class NetworkError(LLMClientError):
    """Transport-level failure (connect, timeout, broken connection)."""

    def __init__(self, message: str, exit_code: int = EXIT_GENERIC):
        super().__init__(message)
        self.exit_code = exit_code


class APIError(LLMClientError):
    """API answered with an error status or an unusable body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is None:
            return message
        return f"{message} (HTTP {self.status_code})"


class EmptyResponseError(LLMClientError):
    """Call succeeded but produced no completion text."""


class _ConnectFailed(Exception):
    """Internal: connection could not be opened (retryable)."""

    def __init__(self, cause: httpx.HTTPError):
        super().__init__(str(cause))
        self.cause = cause


class ResponseKind(enum.Enum):
    OK = "ok"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResponseCheck:
    ok: bool
    kind: ResponseKind
    message: str
    status: int | None


def classify_response(body: str, status: int | str) -> ResponseCheck:
    """Classify an HTTP response body and status code. No I/O."""
    try:
        code = int(status)
    except (TypeError, ValueError):
        code = None

    if not body:
        logger.debug("API Error: Empty response received")
        return ResponseCheck(False, ResponseKind.UNKNOWN, "Empty response received", code)

    if code in (200, 201):
        logger.debug("API call successful (HTTP %s)", code)
        return ResponseCheck(True, ResponseKind.OK, "OK", code)

    if code == 400:
        check = ResponseCheck(False, ResponseKind.CLIENT_ERROR, _error_message(body, "Bad Request"), code)
    elif code == 401:
        check = ResponseCheck(False, ResponseKind.CLIENT_ERROR, "Unauthorized - check your API key", code)
    elif code == 404:
        check = ResponseCheck(False, ResponseKind.CLIENT_ERROR, _error_message(body, "Not Found"), code)
    elif code == 429:
        check = ResponseCheck(False, ResponseKind.CLIENT_ERROR, "Rate limit exceeded", code)
    elif code in (500, 502, 503):
        check = ResponseCheck(False, ResponseKind.SERVER_ERROR, f"Server error (HTTP {code})", code)
    else:
        check = ResponseCheck(False, ResponseKind.UNKNOWN, f"Unexpected HTTP status {status}", code)

    logger.debug("API Error (HTTP %s): %s", status, check.message)
    return check


def _error_message(body: str, default: str) -> str:
    """``error.message`` from a JSON error body, else ``default``."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return default
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        message = data["error"].get("message")
        if message:
            return str(message)
    return default


def _stream_error_message(raw: str) -> str:
    """Message for a stream that never produced data: the API's error, if any."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return "Empty or invalid response"
    if not isinstance(data, dict):
        return "Empty or invalid response"

    error = data.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if error:
        return error if isinstance(error, str) else json.dumps(error)
    return "Unknown error"


def _network_exit_code(exc: Exception) -> int:
    if isinstance(exc, httpx.TimeoutException):
        return EXIT_TIMEOUT
    if isinstance(exc, httpx.ConnectError):
        return EXIT_CONNECT_FAILED
    if isinstance(exc, httpx.RemoteProtocolError):
        return EXIT_EMPTY_REPLY
    if isinstance(exc, httpx.ReadError):
        return EXIT_RECV_FAILED
    return EXIT_GENERIC


def build_api_url(base_url: str, path: str = "") -> str:
    """Join base URL and path with exactly one slash between them."""
    base = base_url.rstrip("/")
    if not path:
        return base
    if not path.startswith("/"):
        path = "/" + path
    return base + path


class LLMClient:
    """Client for the chat/completions and models endpoints."""

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 120,
        connect_timeout: float = 10,
        reasoning_effort: str = "",
        retry_attempts: int = 1,
        retry_delay: float = 1.0,
        retry_backoff: float = 2.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = float(timeout)
        self._reasoning_effort = reasoning_effort or None
        self._retry_attempts = max(1, retry_attempts)
        self._retry_delay = retry_delay
        self._retry_backoff = retry_backoff

        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.Client(
            headers=headers,
            timeout=httpx.Timeout(
                connect=float(connect_timeout),
                read=self._timeout,
                write=30.0,
                pool=30.0,
            ),
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "LLMClient":
        return cls(
            base_url=settings.api_base_url,
            api_key=settings.api_key,
            timeout=settings.api_timeout,
            connect_timeout=settings.api_connect_timeout,
            reasoning_effort=settings.reasoning_effort,
            retry_attempts=settings.api_retry_attempts,
            retry_delay=settings.api_retry_delay,
            retry_backoff=settings.api_retry_backoff,
            **kwargs,
        )

    def close(self):
        self._client.close()

    def url(self, path: str) -> str:
        return build_api_url(self._base_url, path)

    def _payload(self, model: str, prompt: str, stream: bool) -> dict:
        request = APIRequest(
            model=model,
            prompt=prompt,
            stream=stream,
            reasoning_effort=self._reasoning_effort,
        )
        payload = request.to_payload()
        logger.debug("API payload: %s", json.dumps(payload, ensure_ascii=False))
        logger.debug("Calling API: %s", self.url("chat/completions"))
        return payload

    def _send_with_retry(self, request: httpx.Request, stream: bool = False) -> httpx.Response:
        """Send ``request``, retrying connection failures. Raises NetworkError."""

        @retry(
            retry=retry_if_exception_type(_ConnectFailed),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(
                multiplier=self._retry_delay,
                exp_base=self._retry_backoff,
                max=60,
            ),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "LLM API unreachable, retrying in %.1fs (attempt %d/%d)",
                state.next_action.sleep,  # type: ignore[union-attr]
                state.attempt_number,
                self._retry_attempts,
            ),
        )
        def _do_send() -> httpx.Response:
            try:
                return self._client.send(request, stream=stream)
            except (httpx.ConnectError, httpx.ConnectTimeout) as e:
                raise _ConnectFailed(e) from e

        try:
            return _do_send()
        except _ConnectFailed as e:
            logger.debug("Network error: cannot connect to %s: %s", request.url, e.cause)
            raise NetworkError(f"Cannot connect to LLM API: {e.cause}", _network_exit_code(e.cause)) from e.cause
        except httpx.HTTPError as e:
            logger.debug("Network error calling %s: %s", request.url, e)
            raise NetworkError(f"LLM API request failed: {e}", _network_exit_code(e)) from e

    def call(
        self,
        model: str,
        prompt: str,
        on_delta: Callable[[str], None] | None = None,
        stream: bool = True,
    ) -> str:
        """Run one completion and return its text.

        In streaming mode every fragment is passed to ``on_delta`` as soon as it
        arrives; the return value is the concatenation of those fragments.
        """
        if not stream:
            return self._complete(model, prompt)

        parts: list[str] = []
        for delta in self.stream_deltas(model, prompt):
            parts.append(delta)
            if on_delta is not None:
                on_delta(delta)
        return "".join(parts)

    def stream_deltas(self, model: str, prompt: str) -> Iterator[str]:
        """Yield content fragments of a streaming completion in arrival order.

        Raises APIError if the stream carried no data events, NetworkError on
        transport failure or when the overall timeout expires.
        """
        request = self._client.build_request(
            "POST", self.url("chat/completions"), json=self._payload(model, prompt, stream=True)
        )
        deadline = time.monotonic() + self._timeout
        response = self._send_with_retry(request, stream=True)

        found_data = False
        captured: list[str] = []
        try:
            for line in response.iter_lines():
                if time.monotonic() > deadline:
                    raise NetworkError(f"Operation timed out after {self._timeout:.0f} seconds", EXIT_TIMEOUT)

                if not line.startswith(SSE_PREFIX):
                    captured.append(line)
                    continue

                data = line[len(SSE_PREFIX):]
                if data == SSE_DONE:
                    break

                try:
                    event = json.loads(data)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed SSE data line: %s", data[:200])
                    continue
                found_data = True

                delta = _delta_content(event)
                if delta:
                    yield delta
        except httpx.HTTPError as e:
            logger.debug("Stream interrupted: %s", e)
            raise NetworkError(f"LLM API stream failed: {e}", _network_exit_code(e)) from e
        finally:
            response.close()

        if not found_data:
            raw = "\n".join(captured).strip()
            logger.debug("No streaming data received. HTTP Status: %s", response.status_code)
            logger.debug("Raw response: %s", raw)
            raise APIError(_stream_error_message(raw), response.status_code)

    def _complete(self, model: str, prompt: str) -> str:
        """Non-streaming round trip. Missing content gives an empty string."""
        request = self._client.build_request(
            "POST", self.url("chat/completions"), json=self._payload(model, prompt, stream=False)
        )
        response = self._send_with_retry(request)
        return _message_content(response.text)

    def call_with_error_handling(
        self,
        model: str,
        prompt: str,
        stream: bool = True,
        on_delta: Callable[[str], None] | None = None,
    ) -> str:
        """Like ``call`` but classifies the HTTP status of non-streaming replies.

        The streaming path already reports its own errors, so it is delegated
        to ``call`` unchanged.
        """
        if stream:
            return self.call(model, prompt, on_delta=on_delta, stream=True)

        request = self._client.build_request(
            "POST", self.url("chat/completions"), json=self._payload(model, prompt, stream=False)
        )
        response = self._send_with_retry(request)

        check = classify_response(response.text, response.status_code)
        if not check.ok:
            raise APIError(check.message, response.status_code)
        return _message_content(response.text)

    def list_models(self) -> list[str]:
        """Model ids served by the API, sorted."""
        request = self._client.build_request("GET", self.url("models"), timeout=30.0)
        response = self._send_with_retry(request)

        check = classify_response(response.text, response.status_code)
        if not check.ok:
            raise APIError(f"Failed to retrieve models from API: {check.message}", response.status_code)

        try:
            data = response.json().get("data") or []
        except (json.JSONDecodeError, AttributeError):
            data = []
        models = sorted(
            str(item["id"]) for item in data if isinstance(item, dict) and item.get("id")
        )
        if not models:
            logger.debug("API response: %s", response.text)
            raise APIError("No models found or invalid API response format", response.status_code)
        return models


def _delta_content(event) -> str:
    try:
        content = event["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return ""
    return content if isinstance(content, str) else ""


def _message_content(body: str) -> str:
    try:
        data = json.loads(body)
        content = data["choices"][0]["message"].get("content")
    except (json.JSONDecodeError, KeyError, IndexError, TypeError, AttributeError):
        return ""
    return content if isinstance(content, str) else ""
