"""
OpenAI chat-completions client helpers.

Used endpoint:
- POST /chat/completions -> {"choices": [{"message": {"content": "{...json...}"}}]}

Rate limits (429) are retried with exponential backoff; every other failure
is surfaced immediately.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any

import httpx

from . import settings

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_CONTENT_CHARS = 4000
# Upper bound for a server-provided retry-after hint.
MAX_RETRY_WAIT_S = 60.0

SENTIMENTS = ("positive", "neutral", "negative")
FALLBACK_SENTIMENT = "neutral"

SYSTEM_PROMPT = (
    "You are a helpful assistant that analyzes text content. "
    "Always respond with valid JSON only, no additional text."
)

logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
    pass


@dataclass(frozen=True)
class Analysis:
    summary: str
    sentiment: str
    keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def openai_base_url() -> str:
    return settings.env_str("OPENAI_BASE_URL", DEFAULT_BASE_URL).rstrip("/")


def openai_model() -> str:
    return settings.env_str("OPENAI_MODEL", DEFAULT_MODEL)


def openai_api_key() -> str:
    key = settings.env_str("OPENAI_API_KEY")
    if not key:
        raise CompletionError("OPENAI_API_KEY environment variable must be set.")
    return key


def user_prompt(content: str, *, max_chars: int = DEFAULT_MAX_CONTENT_CHARS) -> str:
    return (
        "Analyze the following content and provide:\n"
        "1. A brief summary (2-3 sentences)\n"
        "2. Sentiment (one of: positive, neutral, negative)\n"
        "3. Top 5 keywords (as an array)\n\n"
        f"Content: {content[:max_chars]}\n\n"
        "Respond with JSON in this exact format:\n"
        "{\n"
        '  "summary": "brief summary here",\n'
        '  "sentiment": "positive|neutral|negative",\n'
        '  "keywords": ["keyword1", "keyword2", "keyword3", "keyword4", "keyword5"]\n'
        "}"
    )


def retry_wait_s(attempt: int, retry_after: str | None) -> float:
    """
    Seconds to wait before retrying after a 429 on the given 0-based attempt.
    """
    backoff = float(2**attempt)
    if not retry_after:
        return backoff
    try:
        hinted = float(retry_after.strip())
    except ValueError:
        return backoff
    if not math.isfinite(hinted):
        return backoff
    return min(max(hinted, backoff), MAX_RETRY_WAIT_S)


def coerce_sentiment(value: Any) -> str:
    if isinstance(value, str) and value in SENTIMENTS:
        return value
    return FALLBACK_SENTIMENT


def parse_analysis(text: str) -> Analysis:
    """
    Validate the model's JSON answer and build an Analysis.
    """
    try:
        data = json.loads(text)
    except ValueError as e:
        raise CompletionError(f"Failed to parse OpenAI response as JSON: {e}") from e

    if not isinstance(data, dict):
        raise CompletionError("Invalid analysis structure from OpenAI.")

    summary = data.get("summary")
    sentiment = data.get("sentiment")
    keywords = data.get("keywords")
    if not isinstance(summary, str) or not summary.strip() or not sentiment or not isinstance(keywords, list):
        raise CompletionError("Invalid analysis structure from OpenAI.")

    return Analysis(
        summary=summary.strip(),
        sentiment=coerce_sentiment(sentiment),
        keywords=[str(k).strip() for k in keywords if str(k).strip()],
    )


def _message_content(data: Any) -> str:
    choices = data.get("choices") if isinstance(data, dict) else None
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if isinstance(content, str) and content.strip():
            return content
    raise CompletionError("No analysis content in OpenAI response.")


async def analyze_content(
    content: str,
    *,
    base_url: str,
    api_key: str,
    model: str = DEFAULT_MODEL,
    max_retries: int = DEFAULT_MAX_RETRIES,
    max_content_chars: int = DEFAULT_MAX_CONTENT_CHARS,
    timeout_s: float = 60.0,
    temperature: float = 0.3,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Analysis:
    """
    Summarize `content` and classify its sentiment and keywords.
    """
    if not content or not content.strip():
        raise CompletionError("Content cannot be empty.")

    payload: dict[str, Any] = {
        "model": model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt(content, max_chars=max_content_chars)},
        ],
        "response_format": {"type": "json_object"},
        "temperature": temperature,
    }
    headers = {"Authorization": f"Bearer {api_key}"}

    logger.info("openai_analyze_start chars=%s model=%s", len(content), model)

    async with httpx.AsyncClient(base_url=base_url, timeout=timeout_s, transport=transport) as client:
        attempt = 0
        while True:
            try:
                resp = await client.post("/chat/completions", json=payload, headers=headers)
            except httpx.HTTPError as e:
                raise CompletionError(f"OpenAI request failed: {e}") from e

            if resp.status_code == 429 and attempt < max_retries:
                wait_s = retry_wait_s(attempt, resp.headers.get("retry-after"))
                logger.warning(
                    "openai_rate_limited wait_s=%s retry=%s/%s",
                    wait_s,
                    attempt + 1,
                    max_retries,
                )
                await asyncio.sleep(wait_s)
                attempt += 1
                continue

            if not resp.is_success:
                body = resp.text[:500]
                raise CompletionError(f"OpenAI API error: {resp.status_code} {resp.reason_phrase}. {body}")
            break

    try:
        data = resp.json()
    except ValueError as e:
        raise CompletionError(f"Failed to parse OpenAI response: {e}") from e

    analysis = parse_analysis(_message_content(data))
    logger.info(
        "openai_analyze_complete sentiment=%s keywords=%s",
        analysis.sentiment,
        len(analysis.keywords),
    )
    return analysis


async def analyze(content: str, *, transport: httpx.AsyncBaseTransport | None = None) -> Analysis:
    """
    `analyze_content` with configuration taken from the environment.
    """
    return await analyze_content(
        content,
        base_url=openai_base_url(),
        api_key=openai_api_key(),
        model=openai_model(),
        max_retries=settings.env_int("OPENAI_MAX_RETRIES", DEFAULT_MAX_RETRIES),
        max_content_chars=settings.env_int("ANALYSIS_MAX_CONTENT_CHARS", DEFAULT_MAX_CONTENT_CHARS),
        timeout_s=settings.env_float("OPENAI_TIMEOUT_S", 60.0),
        transport=transport,
    )
