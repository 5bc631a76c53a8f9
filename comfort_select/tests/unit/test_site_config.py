"""Unit tests for site config loading, prompt assets and the Result helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from pydantic import ValidationError

from comfort_select.integrations.llm.prompts import (
    PromptTemplateError,
    build_prompt_assets,
    load_prompt_assets,
    load_prompt_template,
    parse_prompt_template,
)
from comfort_select.models.site import (
    SiteConfig,
    SiteConfigError,
    hash_site_config,
    load_site_config,
    parse_curators_json,
    parse_site_config,
)
from comfort_select.result import Err, FailureReason, Ok, load_json_file, read_text_file

REPO_ROOT = Path(__file__).resolve().parents[3]


# ===========================================================================
# Result helpers
# ===========================================================================


class TestResult:
    def test_missing_file_is_not_found(self, tmp_path: Path) -> None:
        result = read_text_file(tmp_path / "nope.txt")
        assert isinstance(result, Err)
        assert result.reason == FailureReason.not_found
        assert result.unwrap_or("default") == "default"

    def test_directory_is_io_error(self, tmp_path: Path) -> None:
        result = read_text_file(tmp_path)
        assert isinstance(result, Err)
        assert result.reason == FailureReason.io_error

    def test_bad_json_is_parse_failed(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        result = load_json_file(path)
        assert isinstance(result, Err)
        assert result.reason == FailureReason.parse_failed

    def test_ok_unwrap(self, tmp_path: Path) -> None:
        path = tmp_path / "good.json"
        path.write_text('{"a": 1}', encoding="utf-8")
        result = load_json_file(path)
        assert isinstance(result, Ok)
        assert result.ok
        assert result.unwrap() == {"a": 1}

    def test_err_unwrap_raises(self) -> None:
        with pytest.raises(ValueError):
            Err(FailureReason.validation_failed, "bad").unwrap()


# ===========================================================================
# Site config
# ===========================================================================


class TestSiteConfig:
    def test_valid_config(self, site_config: SiteConfig) -> None:
        assert site_config.device("kitchen_transom") is not None
        assert site_config.device("missing") is None
        assert [s.id for s in site_config.sensors_in_room("living")] == ["living_center", "living_radiator"]
        assert [r.id for r in site_config.interior_rooms] == ["kitchen", "bathroom", "living", "bedroom"]
        assert site_config.connections[0].from_room == "living"

    @pytest.mark.parametrize(
        "mutate,message",
        [
            (lambda d: d["rooms"].append({"id": "kitchen", "label": "Dup"}), "duplicate rooms id"),
            (lambda d: d["sensors"].append({"id": "x", "room_id": "attic"}), "unknown room attic"),
            (
                lambda d: d["devices"].append({"id": "fan", "room_id": "attic", "kind": "plug", "label": "Fan"}),
                "unknown room attic",
            ),
            (lambda d: d["features"][0].update({"a": "ghost"}), "unknown sensor ghost"),
            (lambda d: d["connections"].append({"from": "kitchen", "to": "attic"}), "unknown room"),
            (lambda d: d["rooms"][0].update({"connected_room_ids": ["attic"]}), "unknown room attic"),
        ],
    )
    def test_reference_integrity(self, site_data: dict[str, Any], mutate: Any, message: str) -> None:
        mutate(site_data)
        result = parse_site_config(site_data)
        assert isinstance(result, Err)
        assert result.reason == FailureReason.validation_failed
        assert message in result.detail

    def test_config_is_immutable(self, site_config: SiteConfig) -> None:
        with pytest.raises(ValidationError):
            site_config.site.id = "changed"  # type: ignore[misc]

    def test_load_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(SiteConfigError):
            load_site_config(tmp_path / "missing.json")

    def test_load_invalid_file_raises(self, tmp_path: Path, site_data: dict[str, Any]) -> None:
        site_data["curators"] = []
        path = tmp_path / "site.json"
        path.write_text(json.dumps(site_data), encoding="utf-8")
        with pytest.raises(SiteConfigError):
            load_site_config(path)

    def test_shipped_config_loads(self) -> None:
        config = load_site_config(REPO_ROOT / "config" / "site.config.json")
        assert {d.id for d in config.devices} == {
            "kitchen_transom",
            "bathroom_transom",
            "kitchen_vornado_630",
            "living_vornado_630",
        }

    def test_hash_is_stable_and_content_sensitive(self, site_data: dict[str, Any]) -> None:
        a = SiteConfig.model_validate(site_data)
        b = SiteConfig.model_validate(json.loads(json.dumps(site_data)))
        assert hash_site_config(a) == hash_site_config(b)
        assert len(hash_site_config(a)) == 64
        site_data["site"]["label"] = "Changed"
        assert hash_site_config(SiteConfig.model_validate(site_data)) != hash_site_config(a)


# ===========================================================================
# Curators and prompt assets
# ===========================================================================


class TestPromptAssets:
    def test_parse_curators_json(self) -> None:
        assert parse_curators_json('["A", "B"]') == Ok(["A", "B"])
        bad = parse_curators_json('["A", ""]')
        assert isinstance(bad, Err) and bad.reason == FailureReason.validation_failed
        broken = parse_curators_json("[oops")
        assert isinstance(broken, Err) and broken.reason == FailureReason.parse_failed

    def test_curators_override(self, site_config: SiteConfig) -> None:
        assets = build_prompt_assets(site_config, load_prompt_template(), '["Physicist"]')
        assert assets.curators == ["Physicist"]
        assert assets.curator_labels == ["Physicist (imagined panel)"]
        assert assets.site_config.curators == ["Physicist"]

    def test_invalid_override_falls_back_to_site_curators(self, site_config: SiteConfig) -> None:
        assets = build_prompt_assets(site_config, load_prompt_template(), "{not json")
        assert assets.curators == site_config.curators

    def test_template_version_tracks_content(self, tmp_path: Path) -> None:
        path = tmp_path / "t.md"
        first = parse_prompt_template("Hello $site_label", path)
        second = parse_prompt_template("Hello $site_id", path)
        assert isinstance(first, Ok) and isinstance(second, Ok)
        assert first.value.version.startswith("t.md#")
        assert first.value.version != second.value.version

    def test_unknown_placeholder_rejected(self, tmp_path: Path) -> None:
        result = parse_prompt_template("Hello $who", tmp_path / "t.md")
        assert isinstance(result, Err)
        assert result.reason == FailureReason.validation_failed

    def test_missing_template_raises(self, tmp_path: Path) -> None:
        with pytest.raises(PromptTemplateError):
            load_prompt_template(tmp_path / "missing.md")

    def test_load_prompt_assets_from_files(self) -> None:
        assets = load_prompt_assets(REPO_ROOT / "config" / "site.config.json")
        assert assets.template.version.startswith("default.md#")
        assert len(assets.curator_labels) == len(assets.curators)
