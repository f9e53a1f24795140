"""
Dish and restaurant identification through an OpenAI-compatible
chat-completions endpoint with image input.
"""

import base64
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)

DISH_NAME_MAX_CHARS = 100

_DISH_ONLY_PROMPT = (
    "Identify the dish in this photo. Reply with JSON only, shaped as "
    '{"dish_name": "<short dish name>"}. Keep the dish name under 6 words.'
)

_DISH_AND_RESTAURANT_PROMPT = (
    "Identify the dish in this photo and which of these nearby places it most "
    "likely came from. Places:\n{places}\n"
    "Reply with JSON only, shaped as "
    '{{"dish_name": "<short dish name>", "restaurant_name": "<one of the places>"}}. '
    "restaurant_name must be copied exactly from the list above."
)


@dataclass(frozen=True)
class Identification:
    """
    Outcome of one identification call.

    status is "parsed" (structured reply), "raw_text" (reply was not JSON,
    whole text taken as the dish), "failed" (transport or HTTP error) or
    "disabled" (no API key configured).
    """

    dish_name: Optional[str]
    restaurant_name: Optional[str]
    status: str

    @property
    def succeeded(self) -> bool:
        return self.status in {"parsed", "raw_text"}


def _clean_name(value: Any, limit: int = DISH_NAME_MAX_CHARS) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip().strip("\"'`").strip()
    if not cleaned:
        return None
    return cleaned[:limit].rstrip()


def extract_chat_message_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first_choice = choices[0]
    if not isinstance(first_choice, dict):
        return ""
    message = first_choice.get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts: List[str] = []
        for item in content:
            if not isinstance(item, dict):
                continue
            text_content = item.get("text")
            if isinstance(text_content, str) and text_content.strip():
                parts.append(text_content.strip())
        return "\n".join(parts).strip()
    return ""


def parse_chat_json_object(raw_text: str) -> Optional[Dict[str, Any]]:
    candidate = (raw_text or "").strip()
    if not candidate:
        return None

    parse_candidates = [candidate]
    if candidate.startswith("```"):
        stripped = re.sub(r"^```(?:json)?\s*", "", candidate, flags=re.IGNORECASE)
        stripped = re.sub(r"\s*```$", "", stripped)
        parse_candidates.append(stripped.strip())

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start >= 0 and end > start:
        parse_candidates.append(candidate[start : end + 1])

    for item in parse_candidates:
        try:
            parsed = json.loads(item)
        except (TypeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def build_prompt(candidate_names: Sequence[str]) -> str:
    if not candidate_names:
        return _DISH_ONLY_PROMPT
    places = "\n".join(f"- {name}" for name in candidate_names)
    return _DISH_AND_RESTAURANT_PROMPT.format(places=places)


def interpret_reply(text: str, candidate_names: Sequence[str]) -> Identification:
    parsed = parse_chat_json_object(text)
    if parsed is None:
        first_line = text.strip().splitlines()[0] if text.strip() else ""
        return Identification(
            dish_name=_clean_name(first_line),
            restaurant_name=None,
            status="raw_text",
        )
    restaurant_name = None
    if candidate_names:
        restaurant_name = _clean_name(parsed.get("restaurant_name"), limit=255)
    return Identification(
        dish_name=_clean_name(parsed.get("dish_name")),
        restaurant_name=restaurant_name,
        status="parsed",
    )


class DishIdentifier:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        api_base: str,
        api_key: str,
        model: str,
    ) -> None:
        self._http = http_client
        self._api_base = api_base.rstrip("/")
        self._api_key = api_key
        self.model = model

    @property
    def enabled(self) -> bool:
        return bool(self._api_key and self._api_base and self.model)

    async def identify(
        self,
        image: bytes,
        candidate_names: Sequence[str],
        content_type: str = "image/png",
    ) -> Identification:
        """
        Ask for a dish name, plus a restaurant chosen from `candidate_names`
        when the list is non-empty. Never raises.
        """
        if not self.enabled:
            return Identification(None, None, "disabled")

        data_url = f"data:{content_type};base64,{base64.b64encode(image).decode('ascii')}"
        payload = {
            "model": self.model,
            "temperature": 0,
            "max_tokens": 120,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_prompt(candidate_names)},
                        {"type": "image_url", "image_url": {"url": data_url}},
                    ],
                }
            ],
        }
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        try:
            response = await self._http.post(
                f"{self._api_base}/chat/completions", json=payload, headers=headers
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as exc:
            logger.warning("Dish identification call failed: %s", exc)
            return Identification(None, None, "failed")

        text = extract_chat_message_text(body)
        if not text:
            logger.warning("Dish identification returned no message text")
            return Identification(None, None, "failed")
        return interpret_reply(text, candidate_names)
