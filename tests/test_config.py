"""Tests for environment-driven configuration."""

import pytest

from docquad.config import PipelineConfig


def test_defaults():
    config = PipelineConfig.from_env({})
    assert config == PipelineConfig()
    assert config.analysis_width == 640
    assert config.strategy_budget_ms == 25.0
    assert config.enable_lsd is True


def test_reads_prefixed_variables():
    config = PipelineConfig.from_env({
        "DOCQUAD_ANALYSIS_WIDTH": "480",
        "DOCQUAD_STRATEGY_BUDGET_MS": "40",
        "DOCQUAD_ENABLE_LSD": "off",
        "DOCQUAD_LOG_LEVEL": "debug",
        "UNRELATED": "1",
    })
    assert config.analysis_width == 480
    assert config.strategy_budget_ms == 40.0
    assert config.enable_lsd is False
    assert config.log_level == "DEBUG"


def test_blank_values_keep_defaults():
    assert PipelineConfig.from_env({"DOCQUAD_CAPTURE_WIDTH": "  "}).capture_width == 1000


@pytest.mark.parametrize("key, value", [
    ("DOCQUAD_ANALYSIS_WIDTH", "wide"),
    ("DOCQUAD_ENABLE_LSD", "maybe"),
    ("DOCQUAD_LOG_LEVEL", "LOUD"),
])
def test_unparseable_value(key, value):
    with pytest.raises(ValueError, match=key):
        PipelineConfig.from_env({key: value})


@pytest.mark.parametrize("kwargs", [
    {"analysis_width": 0},
    {"strategy_budget_ms": -1.0},
    {"accept_confidence": 1.5},
])
def test_validation(kwargs):
    with pytest.raises(ValueError):
        PipelineConfig(**kwargs)


def test_dotenv_file_is_loaded(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("DOCQUAD_ANALYSIS_WIDTH=320\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DOCQUAD_ANALYSIS_WIDTH", raising=False)
    try:
        assert PipelineConfig.from_env().analysis_width == 320
    finally:
        monkeypatch.delenv("DOCQUAD_ANALYSIS_WIDTH", raising=False)


def test_orientation_flag():
    assert PipelineConfig().correct_orientation is False
    assert PipelineConfig.from_env({"DOCQUAD_CORRECT_ORIENTATION": "yes"}).correct_orientation is True
