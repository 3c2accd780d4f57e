"""
DocQuad Config - Environment-driven settings and logging setup

Settings come from DOCQUAD_* environment variables, optionally provided by
a .env file (python-dotenv). Algorithm constants stay on their classes;
only deployment knobs live here.

Usage:
    from docquad.config import PipelineConfig, configure_logging

    config = PipelineConfig.from_env()
    configure_logging(config.log_level)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from dotenv import load_dotenv


LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
ENV_PREFIX = "DOCQUAD_"


def _load_env() -> Optional[str]:
    """Load the first .env file found; explicit environment variables win."""
    possible_paths = [
        Path(__file__).resolve().parents[2] / ".env",  # src/docquad/../../.env
        Path.cwd() / ".env",
        Path.home() / ".env",
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path, override=False)
            return str(env_path)
    return None


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _parse_level(value: str) -> str:
    level = value.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"unknown log level: {value!r}")
    return level


@dataclass
class PipelineConfig:
    """Deployment settings for the detection pipeline."""
    analysis_width: int = 640
    capture_width: int = 1000
    strategy_budget_ms: float = 25.0
    accept_confidence: float = 0.65
    enable_lsd: bool = True
    correct_orientation: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        if self.analysis_width <= 0 or self.capture_width <= 0:
            raise ValueError("analysis_width and capture_width must be positive")
        if self.strategy_budget_ms < 0:
            raise ValueError("strategy_budget_ms must not be negative")
        if not 0.0 <= self.accept_confidence <= 1.0:
            raise ValueError("accept_confidence must be in [0, 1]")

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        load_dotenv_file: bool = True
    ) -> "PipelineConfig":
        """
        Build a config from DOCQUAD_* variables.

        Args:
            environ: Mapping to read instead of os.environ (tests)
            load_dotenv_file: Load a .env file into os.environ first

        Raises:
            ValueError: a variable is set but cannot be parsed
        """
        if environ is None:
            if load_dotenv_file:
                _load_env()
            environ = os.environ

        parsers: Dict[str, Callable[[str], object]] = {
            "analysis_width": int,
            "capture_width": int,
            "strategy_budget_ms": float,
            "accept_confidence": float,
            "enable_lsd": _parse_bool,
            "correct_orientation": _parse_bool,
            "log_level": _parse_level,
        }

        values = {}
        for field_name, parse in parsers.items():
            key = ENV_PREFIX + field_name.upper()
            raw = environ.get(key)
            if raw is None or raw.strip() == "":
                continue
            try:
                values[field_name] = parse(raw)
            except ValueError as e:
                raise ValueError(f"Invalid value for {key}: {e}") from e

        return cls(**values)


def configure_logging(level: str = "INFO"):
    """Root logging setup for applications; library code never calls this."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
