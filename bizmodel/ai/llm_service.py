"""
llm_service.py — Mistral async generation layer for the AI proxy.

Components:
  BUSINESS_FIT_SYSTEM_PROMPT   — consultant persona for the fit analysis
  build_business_fit_prompt()  — quiz answers + required JSON shape
  generate_completion()        — async Mistral call under a semaphore and a hard timeout
  parse_json_content()         — tolerant JSON extraction (strips ``` fences)
  generate_business_fit_analysis() — completion + parse

No module-level asyncio.Semaphore — semaphore is created in main.py lifespan
and passed as a parameter (avoids RuntimeError: no running event loop at import).

No HTTPException anywhere — this is pure business logic, HTTP layer is routes.py.
"""
import asyncio
import json
import logging
import re
from typing import Any, Optional

import httpx
from mistralai import Mistral
from mistralai.models import SDKError

from bizmodel.config import settings
from bizmodel.errors import AIServiceTimeout, UpstreamProviderError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Mistral API constants
# ---------------------------------------------------------------------------

DEFAULT_MAX_TOKENS = 1200
DEFAULT_TEMPERATURE = 0.7
BUSINESS_FIT_MAX_TOKENS = 1500


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

BUSINESS_FIT_SYSTEM_PROMPT = (
    "You are a business consultant specializing in helping people find the right "
    "business model based on their personality, skills, and goals. "
    "Respond with valid JSON only."
)

_BUSINESS_FIT_SHAPE = """{
  "recommendations": [
    {
      "businessModel": "string",
      "fitScore": number,
      "analysis": "string",
      "risks": "string",
      "timeToProfit": "string",
      "requiredSkills": ["string"],
      "marketOpportunity": "string"
    }
  ],
  "summary": "string"
}"""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def build_business_fit_prompt(quiz_data: dict[str, Any]) -> str:
    return (
        "Based on the following quiz responses, provide a business fit analysis.\n\n"
        f"Quiz Data: {json.dumps(quiz_data, indent=2, default=str)}\n\n"
        "Provide the top 3 recommended business models with a detailed analysis, "
        "risk assessment, time to profitability, required skills and the market "
        "opportunity for each.\n\n"
        f"Format the response as JSON with this structure:\n{_BUSINESS_FIT_SHAPE}"
    )


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

async def generate_completion(
    client: Mistral,
    messages: list[dict[str, str]],
    semaphore: asyncio.Semaphore,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    temperature: float = DEFAULT_TEMPERATURE,
    json_mode: bool = False,
    timeout: Optional[float] = None,
) -> dict[str, Any]:
    """
    One chat completion. The timeout covers the wait for the semaphore too,
    so a saturated pool fails fast instead of queueing forever.

    Returns {content, usage, model}.
    Raises AIServiceTimeout (retryable) / UpstreamProviderError.
    """
    timeout = settings.ai_timeout_seconds if timeout is None else timeout
    kwargs: dict[str, Any] = {
        "model": settings.ai_model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    async def _call():
        async with semaphore:
            return await client.chat.complete_async(**kwargs)

    logger.info(
        "Calling Mistral API model=%s messages=%d max_tokens=%d",
        settings.ai_model, len(messages), max_tokens,
    )
    try:
        response = await asyncio.wait_for(_call(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.warning("Mistral API call timed out after %.1fs", timeout)
        raise AIServiceTimeout(
            "AI service timed out. Please try again.",
            details={"timeoutSeconds": timeout},
        ) from exc
    except (SDKError, httpx.HTTPError) as exc:
        logger.error("Mistral API error: %s", exc)
        raise UpstreamProviderError("AI service error", details=str(exc)) from exc

    content: str = response.choices[0].message.content or ""
    usage = getattr(response, "usage", None)
    logger.info("Mistral response received content_len=%d", len(content))
    return {
        "content": content,
        "usage": {
            "promptTokens": getattr(usage, "prompt_tokens", None),
            "completionTokens": getattr(usage, "completion_tokens", None),
            "totalTokens": getattr(usage, "total_tokens", None),
        } if usage is not None else None,
        "model": getattr(response, "model", settings.ai_model),
    }


def parse_json_content(content: str) -> dict[str, Any]:
    """Model output → dict. Code fences are tolerated; anything else is an upstream error."""
    cleaned = _FENCE_RE.sub("", content.strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("AI returned non-JSON content content_len=%d", len(content))
        raise UpstreamProviderError("AI service returned an invalid analysis") from exc
    if not isinstance(parsed, dict):
        raise UpstreamProviderError("AI service returned an invalid analysis")
    return parsed


async def generate_business_fit_analysis(
    client: Mistral,
    quiz_data: dict[str, Any],
    semaphore: asyncio.Semaphore,
    timeout: Optional[float] = None,
) -> dict[str, Any]:
    result = await generate_completion(
        client,
        [
            {"role": "system", "content": BUSINESS_FIT_SYSTEM_PROMPT},
            {"role": "user", "content": build_business_fit_prompt(quiz_data)},
        ],
        semaphore,
        max_tokens=BUSINESS_FIT_MAX_TOKENS,
        json_mode=True,
        timeout=timeout,
    )
    return parse_json_content(result["content"])
