"""
Client for the text-generation backend that writes narrative insights,
media plans and recommendations from metrics or user answers.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from . import rules
from .config import Settings

logger = logging.getLogger(__name__)


class NarrativeError(RuntimeError):
    """The backend was unavailable or returned nothing usable."""


def extract_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Best-effort parse of a model reply into a JSON object.

    Markdown fences are stripped and the slice between the first "{" and the
    last "}" is parsed. Returns None when nothing parses to an object.
    """
    if not text:
        return None

    cleaned = text.replace("```json", "").replace("```", "")
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start >= 0 and end > start:
        cleaned = cleaned[start : end + 1]
    else:
        cleaned = cleaned.strip()

    try:
        parsed = json.loads(cleaned)
    except ValueError:
        logger.warning("Narrative reply is not valid JSON (%d chars)", len(text))
        return None
    return parsed if isinstance(parsed, dict) else None


class NarrativeClient:
    def __init__(self, settings: Settings, client: Optional[httpx.Client] = None):
        self.settings = settings
        self._client = client

    def _http(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.settings.anthropic_base_url,
                timeout=self.settings.timeout,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def complete(self, kind: str, payload: Dict[str, Any]) -> str:
        """Send payload under the instruction profile `kind`, return the raw reply text."""
        if kind not in rules.NARRATIVE_PROFILES:
            raise ValueError(f"Unknown narrative type: {kind!r}")
        if not self.settings.anthropic_api_key:
            raise NarrativeError("ANTHROPIC_API_KEY not configured")

        body = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "temperature": 0.3 if kind == "media_plan" else 0,
            "system": rules.NARRATIVE_PROFILES[kind],
            "messages": [{"role": "user", "content": json.dumps(payload, default=str)}],
        }
        headers = {
            "x-api-key": self.settings.anthropic_api_key,
            "anthropic-version": rules.ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

        logger.info("Requesting %s narrative from %s", kind, self.settings.model)
        try:
            response = self._http().post("/v1/messages", json=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.error("Narrative backend unreachable: %s", exc)
            raise NarrativeError(f"Narrative backend unreachable: {exc}") from exc

        if response.is_error:
            logger.error("Narrative backend error %s: %s", response.status_code, response.text[:200])
            raise NarrativeError(f"Narrative backend failed: {response.status_code}")

        try:
            content = response.json().get("content") or []
            text = content[0]["text"]
        except (ValueError, AttributeError, IndexError, KeyError, TypeError) as exc:
            raise NarrativeError("Narrative backend returned no text") from exc

        logger.debug("Narrative raw reply: %s", text[:200])
        return text

    def generate(self, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        raw = self.complete(kind, payload)
        return {"type": kind, "result": extract_json(raw), "raw": raw}
