"""Single-shot HTTPS transport for the chat-completions endpoint."""

import json
import urllib.error
import urllib.request

from .report import MalformedResponse, TransportError

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
COMPLETIONS_PATH = "/chat/completions"
DEFAULT_TIMEOUT = 120


def _error_message(status: int, body: str) -> str:
    """Prefer the structured ``{"error": {"message": ...}}`` field."""
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, TypeError):
        data = None
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return f"API error ({status}): {error['message']}"
    return f"API error ({status}): {body}"


class ChatTransport:
    """POSTs a fully-built request body and returns the parsed JSON.

    No retries: the caller decides what to do with a failure.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout: int = DEFAULT_TIMEOUT,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @property
    def url(self) -> str:
        return self.base_url + COMPLETIONS_PATH

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def post_request(self, body: dict) -> dict:
        payload = json.dumps(body).encode()
        req = urllib.request.Request(
            self.url,
            data=payload,
            headers=self.headers(),
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = resp.status
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace")
            raise TransportError(_error_message(e.code, raw)) from e
        except (urllib.error.URLError, OSError) as e:
            reason = getattr(e, "reason", e)
            raise TransportError(f"HTTP request failed: {reason}") from e

        if status != 200:
            raise TransportError(_error_message(status, raw))

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedResponse(f"Failed to parse response JSON: {e}") from e
        if not isinstance(data, dict):
            raise MalformedResponse("Failed to parse response JSON: expected an object")
        return data
