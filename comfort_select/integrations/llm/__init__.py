"""comfort-select LLM integration package.

This package provides:
- LLMDecider: litellm structured-output decision call
- Strict decision JSON schema built from the site config
- Prompt template and assets loading
"""

from .decider import DecisionError, DecisionResponse, DecisionTimeoutError, LLMDecider
from .prompts import PromptAssets, PromptTemplate, load_prompt_assets, load_prompt_template
from .schema import DecisionValidationError, build_decision_json_schema, validate_decision

__all__ = [
    "DecisionError",
    "DecisionResponse",
    "DecisionTimeoutError",
    "DecisionValidationError",
    "LLMDecider",
    "PromptAssets",
    "PromptTemplate",
    "build_decision_json_schema",
    "load_prompt_assets",
    "load_prompt_template",
    "validate_decision",
]
