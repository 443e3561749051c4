import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from errors import (
    EmptyResponse,
    InvalidCredential,
    ProviderError,
    ProviderTimeout,
    RateLimited,
    RequestRejected,
    UnknownProviderError,
)
from storage import Turn

logger = logging.getLogger(__name__)

INVALID_KEY_MARKERS = ("api_key_invalid", "api key not valid", "api key expired", "api key invalid")


def classify_http_error(response: httpx.Response) -> ProviderError:
    """Map a non-2xx provider response onto the failure taxonomy."""
    status = response.status_code
    body = response.text[:500]
    lowered = body.lower()

    if status == 429 or "resource_exhausted" in lowered:
        return RateLimited(f"Rate limited ({status}): {body}", status)
    if status in (401, 403):
        return InvalidCredential(f"Credential refused ({status}): {body}", status)
    if status == 400:
        if any(marker in lowered for marker in INVALID_KEY_MARKERS):
            return InvalidCredential(f"Invalid API key: {body}", status)
        return RequestRejected(f"Request rejected: {body}", status)
    return UnknownProviderError(f"Provider error {status}: {body}", status)


def extract_text(data: Dict[str, Any]) -> str:
    """Join the visible text parts of the first candidate."""
    candidates = data.get("candidates") or []
    if not candidates:
        reason = (data.get("promptFeedback") or {}).get("blockReason")
        raise EmptyResponse(f"No candidates returned (blockReason={reason})")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(p.get("text", "") for p in parts if not p.get("thought"))
    if not text.strip():
        finish = candidates[0].get("finishReason")
        raise EmptyResponse(f"Empty text in response (finishReason={finish})")
    return text


def _discard_result(task: asyncio.Task) -> None:
    # Abandoned calls still finish in the background; retrieve the outcome
    # so asyncio does not report it as never retrieved
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Abandoned call finished with %s", type(task.exception()).__name__)


class LLMClient:
    """
    Thin client for the Gemini generateContent REST endpoint.

    Exposes the two call shapes the conversation core needs: call() replays
    prior history followed by a new message, generate() sends a single
    context-free prompt. Both race a timeout and raise a ProviderError
    subclass on failure. The client never touches the key pool or stored
    history; choosing the key and reacting to failures is the caller's job.
    """

    def __init__(
        self,
        system_instruction: str,
        model: str = "gemini-2.5-flash",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        temperature: float = 0.7,
        thinking_budget: Optional[int] = None,
        timeout: float = 55.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.system_instruction = system_instruction
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.thinking_budget = thinking_budget
        self.timeout = timeout
        # Transport timeout sits above the race so abandoned requests end eventually
        self.client = http_client or httpx.AsyncClient(timeout=120.0)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_payload(self, contents: List[Dict[str, Any]]) -> Dict[str, Any]:
        generation_config: Dict[str, Any] = {"temperature": self.temperature}
        if self.thinking_budget is not None:
            generation_config["thinkingConfig"] = {"thinkingBudget": self.thinking_budget}

        return {
            "systemInstruction": {"parts": [{"text": self.system_instruction}]},
            "contents": contents,
            "generationConfig": generation_config,
        }

    @staticmethod
    def to_contents(history: List[Turn], message: str) -> List[Dict[str, Any]]:
        contents = [{"role": t.role, "parts": [{"text": t.text}]} for t in history]
        contents.append({"role": "user", "parts": [{"text": message}]})
        return contents

    async def _post(self, api_key: str, contents: List[Dict[str, Any]]) -> str:
        headers = {"Content-Type": "application/json", "x-goog-api-key": api_key}

        try:
            response = await self.client.post(
                self.endpoint,
                json=self.build_payload(contents),
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise ProviderTimeout(f"Transport timeout: {e}")
        except httpx.HTTPError as e:
            raise UnknownProviderError(f"Transport error: {e}")

        if response.status_code >= 400:
            raise classify_http_error(response)

        try:
            data = response.json()
        except ValueError:
            raise UnknownProviderError("Response body is not JSON", response.status_code)

        return extract_text(data)

    async def _race(self, api_key: str, contents: List[Dict[str, Any]], timeout: Optional[float]) -> str:
        limit = self.timeout if timeout is None else timeout
        task = asyncio.ensure_future(self._post(api_key, contents))
        done, _ = await asyncio.wait({task}, timeout=limit)
        if not done:
            task.add_done_callback(_discard_result)
            raise ProviderTimeout(f"No response within {limit:.0f}s")
        return task.result()

    async def call(self, api_key: str, history: List[Turn], message: str,
                   timeout: Optional[float] = None) -> str:
        """Send message after replaying history (stateful shape)."""
        return await self._race(api_key, self.to_contents(history, message), timeout)

    async def generate(self, api_key: str, prompt: str, timeout: Optional[float] = None) -> str:
        """Send a single prompt with no prior context (stateless shape)."""
        return await self._race(api_key, self.to_contents([], prompt), timeout)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
