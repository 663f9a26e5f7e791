"""XDG config loading for the session broker."""

from __future__ import annotations

import sys
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from shellmux.logging import LOG_LEVELS, normalize_level

DEFAULT_CONFIG_PATH = Path("~/.config/shellmux/config.toml").expanduser()
DEFAULT_COLS = 80
DEFAULT_ROWS = 30
DEFAULT_TERM_NAME = "xterm-color"
DEFAULT_READ_CHUNK_SIZE = 4096
MAX_READ_CHUNK_SIZE = 65536
DEFAULT_CELL_WIDTH = 9
DEFAULT_CELL_HEIGHT = 17


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    default_cols: int = Field(default=DEFAULT_COLS, ge=1)
    default_rows: int = Field(default=DEFAULT_ROWS, ge=1)
    term_name: str = DEFAULT_TERM_NAME
    read_chunk_size: int = Field(default=DEFAULT_READ_CHUNK_SIZE, ge=1, le=MAX_READ_CHUNK_SIZE)
    cell_width: int = Field(default=DEFAULT_CELL_WIDTH, ge=1)
    cell_height: int = Field(default=DEFAULT_CELL_HEIGHT, ge=1)
    warn_on_cwd_fallback: bool = True
    log_level: str = "INFO"

    @field_validator("term_name")
    @classmethod
    def _validate_term_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("TERM name cannot be empty")
        return stripped

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = normalize_level(value)
        if normalized not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return normalized


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _positive_int(value: object, *, upper: int | None = None) -> int | None:
    # bool is an int subclass; TOML booleans must not become sizes.
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    if value < 1:
        return None
    if upper is not None and value > upper:
        return None
    return value


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    for key in ("default_cols", "default_rows", "cell_width", "cell_height"):
        candidate = _positive_int(raw.get(key))
        if candidate is not None:
            setattr(cfg, key, candidate)

    chunk_size = _positive_int(raw.get("read_chunk_size"), upper=MAX_READ_CHUNK_SIZE)
    if chunk_size is not None:
        cfg.read_chunk_size = chunk_size

    term_name = raw.get("term_name", cfg.term_name)
    if isinstance(term_name, str) and term_name.strip():
        cfg.term_name = term_name

    warn_on_cwd_fallback = raw.get("warn_on_cwd_fallback", cfg.warn_on_cwd_fallback)
    if isinstance(warn_on_cwd_fallback, bool):
        cfg.warn_on_cwd_fallback = warn_on_cwd_fallback

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str) and normalize_level(log_level) in LOG_LEVELS:
        cfg.log_level = log_level

    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return AppConfig()
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()
    if not isinstance(raw, dict):
        return AppConfig()
    return _sanitize(raw)
