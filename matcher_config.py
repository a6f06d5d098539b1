"""
Configuration for episode-matcher.

Values come from environment variables first, then from
$HOME/.episode-matcher/config.toml, e.g.:

    tvdb_api_key = "your-key"
    ocr_engine = "tesseract"
    tail_seconds = 20
"""

import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from media_tools import DEFAULT_SAMPLE_FPS, DEFAULT_TAIL_SECONDS
from text_recognizer import OCR_ENGINES

CONFIG_DIR_NAME = ".episode-matcher"


class ConfigError(Exception):
    """Configuration is missing or unusable."""


@dataclass
class MatcherConfig:
    tvdb_api_key: str
    cache_path: Path
    ocr_engine: str = "easyocr"
    ocr_gpu: bool = False
    tail_seconds: float = DEFAULT_TAIL_SECONDS
    sample_fps: float = DEFAULT_SAMPLE_FPS


def config_dir() -> Path:
    if os.getenv("EPISODE_MATCHER_HOME"):
        return Path(os.environ["EPISODE_MATCHER_HOME"])
    home = os.getenv("HOME")
    return Path(home) / CONFIG_DIR_NAME if home else Path(CONFIG_DIR_NAME)


def read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Could not read config file {path}: {e}") from e


def _setting(name: str, file_values: Dict[str, Any], default: Any = None) -> Any:
    env_value = os.getenv(name.upper())
    if env_value not in (None, ""):
        return env_value
    return file_values.get(name, default)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_float(name: str, value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    if number <= 0:
        raise ConfigError(f"{name} must be positive, got {value!r}")
    return number


def load_config(config_path: Optional[Path] = None) -> MatcherConfig:
    """
    Load configuration.

    Raises:
        ConfigError: no TVDB API key anywhere, or an unreadable/invalid file
    """
    base_dir = config_dir()
    file_values = read_config_file(config_path or base_dir / "config.toml")

    api_key = _setting("tvdb_api_key", file_values)
    if not api_key:
        raise ConfigError(
            "TVDB API key not found. Set TVDB_API_KEY or add tvdb_api_key = \"your-key\" "
            f"to {base_dir / 'config.toml'}"
        )

    cache_path = os.getenv("EPISODE_MATCHER_CACHE") or file_values.get("cache_path")

    ocr_engine = str(_setting("ocr_engine", file_values, "easyocr"))
    if ocr_engine not in OCR_ENGINES:
        raise ConfigError(f"ocr_engine must be one of {', '.join(OCR_ENGINES)}, got {ocr_engine!r}")

    return MatcherConfig(
        tvdb_api_key=str(api_key),
        cache_path=Path(cache_path).expanduser() if cache_path else base_dir / "cache.json",
        ocr_engine=ocr_engine,
        ocr_gpu=_as_bool(_setting("ocr_gpu", file_values, False)),
        tail_seconds=_as_float("tail_seconds", _setting("tail_seconds", file_values, DEFAULT_TAIL_SECONDS)),
        sample_fps=_as_float("sample_fps", _setting("sample_fps", file_values, DEFAULT_SAMPLE_FPS)),
    )
