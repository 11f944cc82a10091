from __future__ import annotations

import json

import pytest

from lms_core.config import load_settings, merge_dicts
from lms_core.config.loader import OVERRIDES_ENV_VAR
from lms_core.config.schema import CertificateConfig


def test_merge_dicts_is_recursive():
    merged = merge_dicts({"a": {"b": 1, "c": 2}, "d": 1}, {"a": {"c": 3}})
    assert merged == {"a": {"b": 1, "c": 3}, "d": 1}


def test_load_settings_reads_yaml_and_env_overrides(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "storage:\n  backend: memory\ngrading:\n  default_passing_score: 80\n",
        encoding="utf-8",
    )
    monkeypatch.setenv(OVERRIDES_ENV_VAR, json.dumps({"grading": {"default_points": 5}}))

    settings = load_settings(config_file)

    assert settings.storage.backend == "memory"
    assert settings.grading.default_passing_score == 80
    assert settings.grading.default_points == 5
    assert settings.certificates.id_prefix == "CERT"


def test_missing_explicit_config_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "absent.yaml")


def test_invalid_values_are_rejected(tmp_path, monkeypatch):
    monkeypatch.delenv(OVERRIDES_ENV_VAR, raising=False)
    config_file = tmp_path / "config.yaml"
    config_file.write_text("grading:\n  default_passing_score: 150\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(config_file)


def test_bad_override_json_is_reported(tmp_path, monkeypatch):
    config_file = tmp_path / "config.yaml"
    config_file.write_text("{}\n", encoding="utf-8")
    monkeypatch.setenv(OVERRIDES_ENV_VAR, "{not json")
    with pytest.raises(ValueError, match=OVERRIDES_ENV_VAR):
        load_settings(config_file)


def test_certificate_prefix_may_not_contain_dash():
    with pytest.raises(ValueError):
        CertificateConfig(id_prefix="MY-CERT")
