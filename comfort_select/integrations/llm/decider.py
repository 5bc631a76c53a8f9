"""LLM decider: prompt in, validated :class:`Decision` out.

Calls ``litellm.acompletion`` with a strict ``json_schema`` response format.
Refusals, timeouts, transport failures and non-conformant output all raise
:class:`DecisionError` so the cycle can fall back to the no-op decision.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from comfort_select.models.schemas import Decision
from comfort_select.models.site import SiteConfig

from .schema import DecisionValidationError, response_format, validate_decision

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "Return ONLY JSON that matches the provided schema. "
    "Never claim to be real people; treat named experts as an imagined panel."
)


class DecisionError(Exception):
    """Raised when the decider cannot produce a schema-conformant decision."""


class DecisionTimeoutError(DecisionError):
    """Raised when the decider call exceeds its timeout."""


def _require_litellm() -> Any:
    try:
        import litellm

        return litellm
    except Exception as e:  # pragma: no cover
        raise RuntimeError("litellm is required. Install with: pip install litellm") from e


def _model_string(provider: str, model: str) -> str:
    if "/" in model or provider in ("", "openai"):
        return model
    return f"{provider}/{model}"


@dataclass(frozen=True, slots=True)
class DecisionResponse:
    decision: Decision
    response_id: str | None = None


def parse_decision_content(content: str) -> Any:
    """Parse the model's JSON text, tolerating markdown fences."""
    text = content.strip()
    if text.startswith("```"):
        text = "\n".join(line for line in text.splitlines() if not line.startswith("```"))
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        m = re.search(r"\{.*\}", text, re.DOTALL)
        if m:
            try:
                return json.loads(m.group())
            except json.JSONDecodeError:
                pass
        raise DecisionError(f"No JSON found in decider response: {text[:200]!r}") from None


class LLMDecider:
    """Single-provider structured-output decider."""

    def __init__(
        self,
        *,
        provider: str,
        model: str,
        api_key: str | None,
        site_config: SiteConfig,
        curator_labels: Sequence[str],
        base_url: str | None = None,
        timeout_s: float = 30.0,
    ) -> None:
        self.provider = provider
        self.model = model
        self.api_key = api_key or None
        self.base_url = base_url
        self.timeout_s = timeout_s
        self.site_config = site_config
        self.curator_labels = list(curator_labels)
        self._response_format = response_format(site_config, self.curator_labels)

    @property
    def model_name(self) -> str:
        return _model_string(self.provider, self.model)

    async def decide(self, prompt: str) -> DecisionResponse:
        litellm = _require_litellm()
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            response = await asyncio.wait_for(
                litellm.acompletion(
                    model=self.model_name,
                    messages=messages,
                    response_format=self._response_format,
                    api_key=self.api_key,
                    base_url=self.base_url,
                    timeout=self.timeout_s,
                ),
                timeout=self.timeout_s,
            )
        except TimeoutError as exc:
            raise DecisionTimeoutError(f"decider timed out after {self.timeout_s}s") from exc
        except Exception as exc:
            if "timeout" in type(exc).__name__.lower():
                raise DecisionTimeoutError(f"decider timed out: {exc}") from exc
            raise DecisionError(f"decider call failed: {exc}") from exc

        try:
            message = response.choices[0].message
            refusal = getattr(message, "refusal", None)
            content = message.content or ""
        except (IndexError, AttributeError, TypeError, KeyError) as exc:
            raise DecisionError(f"decider returned a malformed completion: {exc!r}") from exc
        if refusal:
            raise DecisionError(f"decider refused: {refusal}")
        if not isinstance(content, str):
            raise DecisionError(f"decider returned non-text content: {type(content).__name__}")
        if not content.strip():
            raise DecisionError("decider returned an empty response")

        data = parse_decision_content(content)
        try:
            decision = validate_decision(data, self.site_config, self.curator_labels)
        except DecisionValidationError as exc:
            raise DecisionError(str(exc)) from exc

        response_id = getattr(response, "id", None)
        logger.info(
            "Decision received from %s (confidence=%.2f, response_id=%s)",
            self.model_name,
            decision.confidence_0_1,
            response_id,
        )
        return DecisionResponse(decision=decision, response_id=response_id)


__all__ = [
    "DecisionError",
    "DecisionResponse",
    "DecisionTimeoutError",
    "LLMDecider",
    "parse_decision_content",
]
