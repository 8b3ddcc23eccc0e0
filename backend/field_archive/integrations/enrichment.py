"""AI enrichment of extracted text through the Anthropic Messages API."""

from __future__ import annotations

import re
from typing import Any

import anthropic
import orjson

from field_archive.core.config import Settings
from field_archive.core.errors import ConfigurationError, EnrichmentFailed
from field_archive.core.logging import get_logger
from field_archive.ingest.types import ReceiptFields

logger = get_logger(__name__)

_PROVIDER = "anthropic"
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
# long scans are truncated before prompting
MAX_PROMPT_CHARS = 20_000

RECEIPT_CATEGORIES = ("travel", "meals", "supplies", "lodging", "fuel", "parking", "other")

CATEGORIZE_PROMPT = """Analyze the following document and suggest appropriate tags/categories. Return ONLY a JSON object with:
- tags: array of relevant tag strings (e.g., "meeting", "field-visit", "policy", "budget", etc.)
- category: string (the primary category)
- summary: string (one sentence summary)

Content:
{text}"""

RECEIPT_PROMPT = """Extract expense/receipt data from the following text. Return ONLY valid JSON with these fields:
- vendor: string (the business/vendor name)
- date: string (in YYYY-MM-DD format)
- amount: number (the total amount)
- category: string (one of: {categories})
- description: string (brief description of the expense)

If a field cannot be determined, use null.

Text:
{text}"""


class ClaudeEnricher:
    """Tags documents and pulls receipt fields out of extracted text."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        timeout: float = 60.0,
        client: Any | None = None,
    ) -> None:
        self.model = model
        self._client = client or anthropic.Anthropic(api_key=api_key, timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ClaudeEnricher":
        if not settings.anthropic_api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY not configured", provider=_PROVIDER)
        return cls(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            timeout=settings.request_timeout_seconds,
        )

    def categorize(self, text: str) -> list[str]:
        payload = self._ask_json(CATEGORIZE_PROMPT.format(text=text[:MAX_PROMPT_CHARS]))
        tags = payload.get("tags") or []
        if not isinstance(tags, list):
            raise EnrichmentFailed("Categorization reply has non-list tags", provider=_PROVIDER)
        return [str(tag).strip() for tag in tags if str(tag).strip()]

    def extract_receipt(self, text: str) -> ReceiptFields | None:
        payload = self._ask_json(
            RECEIPT_PROMPT.format(
                categories=", ".join(RECEIPT_CATEGORIES),
                text=text[:MAX_PROMPT_CHARS],
            )
        )
        amount = _to_amount(payload.get("amount"))
        if amount is None:
            return None
        category = payload.get("category")
        return ReceiptFields(
            vendor=payload.get("vendor") or None,
            date=payload.get("date") or None,
            amount=amount,
            category=category if category in RECEIPT_CATEGORIES else "other",
            description=payload.get("description") or None,
        )

    def _ask_json(self, prompt: str, max_tokens: int = 1024) -> dict[str, Any]:
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as exc:
            raise EnrichmentFailed(f"Claude API error: {exc}", provider=_PROVIDER) from exc
        reply = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        return parse_json_object(reply)


def parse_json_object(reply: str) -> dict[str, Any]:
    """Pull the outermost ``{...}`` out of a model reply."""
    match = _JSON_OBJECT_RE.search(reply or "")
    if match is None:
        raise EnrichmentFailed("No JSON object in model reply", provider=_PROVIDER)
    try:
        payload = orjson.loads(match.group(0))
    except orjson.JSONDecodeError as exc:
        raise EnrichmentFailed(f"Unparseable model reply: {exc}", provider=_PROVIDER) from exc
    if not isinstance(payload, dict):
        raise EnrichmentFailed("Model reply is not a JSON object", provider=_PROVIDER)
    return payload


def _to_amount(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value) or None
    if isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        try:
            return float(cleaned) or None
        except ValueError:
            return None
    return None


__all__ = ["ClaudeEnricher", "parse_json_object"]
