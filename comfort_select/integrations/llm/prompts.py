"""Prompt template and assets for the decision panel.

Templates are plain text files with ``string.Template`` placeholders
(``$weather_line``, ``$history_csv``, ...). The version recorded with every
cycle is ``<file name>#<first 8 hex chars of sha256(source)>``.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path
from string import Template

from comfort_select.models.site import SiteConfig, load_site_config, parse_curators_json
from comfort_select.result import Err, FailureReason, Ok, Result, read_text_file

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_PATH = Path(__file__).resolve().parents[2] / "prompt_templates" / "default.md"

PLACEHOLDERS = frozenset(
    {
        "site_id",
        "site_label",
        "site_address",
        "site_notes",
        "timezone",
        "curators",
        "panel_size",
        "weather_line",
        "sensors_observed_at",
        "sensor_lines",
        "room_summaries",
        "adjacency",
        "devices",
        "features",
        "history_summary",
        "history_csv",
    }
)


class PromptTemplateError(Exception):
    """Raised when a prompt template cannot be loaded."""


def curator_label(name: str) -> str:
    return f"{name} (imagined panel)"


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    path: Path
    version: str
    source: str

    def render(self, context: dict[str, str]) -> str:
        return Template(self.source).substitute(context)


def parse_prompt_template(source: str, path: Path) -> Result[PromptTemplate]:
    template = Template(source)
    if not template.is_valid():
        return Err(FailureReason.parse_failed, f"invalid placeholder syntax in {path}")
    unknown = set(template.get_identifiers()) - PLACEHOLDERS
    if unknown:
        return Err(
            FailureReason.validation_failed,
            f"unknown placeholder(s) in {path}: {', '.join(sorted(unknown))}",
        )
    digest = hashlib.sha256(source.encode("utf-8")).hexdigest()[:8]
    return Ok(PromptTemplate(path=path, version=f"{path.name}#{digest}", source=source))


def load_prompt_template(path: str | Path | None = None) -> PromptTemplate:
    resolved = Path(path).resolve() if path else DEFAULT_TEMPLATE_PATH
    raw = read_text_file(resolved)
    if isinstance(raw, Err):
        raise PromptTemplateError(f"Failed to read prompt template: {raw.detail}")
    parsed = parse_prompt_template(raw.value, resolved)
    if isinstance(parsed, Err):
        raise PromptTemplateError(parsed.detail)
    return parsed.value


@dataclass(frozen=True, slots=True)
class PromptAssets:
    site_config: SiteConfig
    curators: list[str]
    curator_labels: list[str]
    template: PromptTemplate


def build_prompt_assets(
    site_config: SiteConfig,
    template: PromptTemplate,
    curators_json: str | None = None,
) -> PromptAssets:
    """Combine site config and template, optionally overriding the curator panel."""
    curators = list(site_config.curators)
    if curators_json:
        override = parse_curators_json(curators_json)
        if isinstance(override, Ok):
            curators = override.value
        else:
            logger.warning(
                "Ignoring curators override (%s): %s", override.reason, override.detail
            )
    return PromptAssets(
        site_config=site_config.with_curators(curators),
        curators=curators,
        curator_labels=[curator_label(c) for c in curators],
        template=template,
    )


def load_prompt_assets(
    site_config_path: str | Path,
    prompt_template_path: str | Path | None = None,
    curators_json: str | None = None,
) -> PromptAssets:
    return build_prompt_assets(
        load_site_config(site_config_path),
        load_prompt_template(prompt_template_path),
        curators_json,
    )


__all__ = [
    "DEFAULT_TEMPLATE_PATH",
    "PLACEHOLDERS",
    "PromptAssets",
    "PromptTemplate",
    "PromptTemplateError",
    "build_prompt_assets",
    "curator_label",
    "load_prompt_assets",
    "load_prompt_template",
    "parse_prompt_template",
]
