from __future__ import annotations

import json
import logging
from typing import Any, Optional, Protocol

import httpx

from skincoach.config import Settings
from skincoach.errors import ConfigurationError


logger = logging.getLogger("skincoach.vision-client")


class VisionClientError(Exception):
    """The provider answered, but not with a usable completion."""


class VisionClient(Protocol):
    async def complete(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        image_data_url: str,
    ) -> str: ...


class OpenAIVisionClient(VisionClient):
    def __init__(
        self,
        *,
        api_key: Optional[str],
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 30.0,
        max_tokens: int = 400,
        temperature: float = 0.3,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = (api_key or "").strip() or None
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._transport = transport

    async def complete(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        image_data_url: str,
    ) -> str:
        if not self._api_key:
            raise ConfigurationError("OpenAI API key missing")

        payload: dict[str, Any] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": user_prompt},
                        {"type": "image_url", "image_url": {"url": image_data_url}},
                    ],
                },
            ],
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}

        async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
            res = await client.post(f"{self._base_url}/chat/completions", headers=headers, json=payload)

        if res.status_code >= 400:
            raise httpx.HTTPStatusError("OpenAI returned error", request=res.request, response=res)

        try:
            data = res.json()
        except ValueError as exc:
            raise VisionClientError(f"non-JSON completion body: {exc}") from exc

        return _completion_text(data)


def _completion_text(data: Any) -> str:
    if not isinstance(data, dict):
        raise VisionClientError("completion body is not an object")
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise VisionClientError("completion has no choices")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if content is None:
        return ""
    if isinstance(content, list):
        # Some providers return content parts instead of a flat string.
        return "".join(str(part.get("text") or "") for part in content if isinstance(part, dict))
    return str(content)


DEMO_ANALYSIS: dict[str, Any] = {
    "face_detected": True,
    "skin_type": "combination",
    "concerns": ["acne", "oiliness"],
    "severity": {"acne": "mild", "oiliness": "moderate"},
    "notes": (
        "Cosmetic skin characteristics observed for skincare product selection. "
        "Consider a gentle routine with suitable products for your skin type."
    ),
}


class DemoVisionClient(VisionClient):
    """Canned responses for local runs without provider credentials."""

    def __init__(self, analysis: Optional[dict[str, Any]] = None) -> None:
        self._analysis = dict(analysis or DEMO_ANALYSIS)

    async def complete(
        self,
        *,
        model: str,
        system_prompt: str,
        user_prompt: str,
        image_data_url: str,
    ) -> str:
        logger.info("demo_vision_completion model=%s", model)
        return json.dumps(self._analysis)


def build_vision_client(settings: Settings) -> VisionClient:
    if settings.vision_provider == "demo":
        return DemoVisionClient()
    if not settings.openai_api_key:
        logger.warning("vision_provider=openai reason=missing_OPENAI_API_KEY analyses_will_fail")
    return OpenAIVisionClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout_s=settings.vision_timeout_s,
        max_tokens=settings.vision_max_tokens,
        temperature=settings.vision_temperature,
    )
