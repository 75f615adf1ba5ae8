"""XDG config loading/saving."""

from __future__ import annotations

import os
import sys
from contextlib import suppress
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

if sys.version_info >= (3, 11):
    import tomllib
else:  # pragma: no cover
    import tomli as tomllib

from mdshellrunner.blocks import RECOGNIZED_LANGUAGES

DEFAULT_CONFIG_PATH = Path("~/.config/mdshellrunner/config.toml").expanduser()
DEFAULT_LOG_LEVEL = "INFO"
USE_TERMINAL_ENV = "MDSHELLRUNNER_USE_TERMINAL"

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARN", "WARNING", "ERROR"}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class AppConfig(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    enabled_languages: list[str] = Field(default_factory=lambda: list(RECOGNIZED_LANGUAGES))
    use_terminal: bool = True
    enable_code_lens: bool = True
    use_python_web_view: bool = True
    python_interpreter: str = ""
    terminal_shell: str = ""
    log_level: str = DEFAULT_LOG_LEVEL

    @field_validator("enabled_languages")
    @classmethod
    def _validate_languages(cls, value: list[str]) -> list[str]:
        unknown = [item for item in value if item not in RECOGNIZED_LANGUAGES]
        if unknown:
            raise ValueError(f"Unsupported languages: {', '.join(unknown)}")
        return value

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in _VALID_LOG_LEVELS:
            raise ValueError(f"Invalid log level: {value}")
        return normalized


def get_config_path(path: str | Path | None = None) -> Path:
    if path is None:
        return DEFAULT_CONFIG_PATH
    return Path(path).expanduser()


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _toml_scalar(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return f'"{_escape(value)}"'
    if isinstance(value, list):
        return "[" + ", ".join(_toml_scalar(item) for item in value) + "]"
    raise TypeError(f"Unsupported TOML scalar type: {type(value)!r}")


def _normalize_languages(value: object) -> list[str] | None:
    if not isinstance(value, list):
        return None
    normalized: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        language = item.strip()
        if language in RECOGNIZED_LANGUAGES and language not in normalized:
            normalized.append(language)
    return normalized


def _env_flag(name: str) -> bool | None:
    raw = os.getenv(name, "").strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    return None


def _sanitize(raw: dict[str, object]) -> AppConfig:
    cfg = AppConfig()

    languages = _normalize_languages(raw.get("enabled_languages"))
    if languages is not None:
        cfg.enabled_languages = languages

    for key in ("use_terminal", "enable_code_lens", "use_python_web_view"):
        value = raw.get(key, getattr(cfg, key))
        if isinstance(value, bool):
            setattr(cfg, key, value)

    for key in ("python_interpreter", "terminal_shell"):
        value = raw.get(key, getattr(cfg, key))
        if isinstance(value, str):
            setattr(cfg, key, value.strip())

    log_level = raw.get("log_level", cfg.log_level)
    if isinstance(log_level, str) and log_level.upper() in _VALID_LOG_LEVELS:
        cfg.log_level = log_level

    use_terminal = _env_flag(USE_TERMINAL_ENV)
    if use_terminal is not None:
        cfg.use_terminal = use_terminal

    return cfg


def load_config(path: str | Path | None = None) -> AppConfig:
    resolved = get_config_path(path)
    if not resolved.exists():
        return _sanitize({})
    try:
        with resolved.open("rb") as handle:
            raw = tomllib.load(handle)
    except (tomllib.TOMLDecodeError, OSError):
        return _sanitize({})
    if not isinstance(raw, dict):
        return _sanitize({})
    return _sanitize(raw)


def save_config(config: AppConfig, path: str | Path | None = None) -> Path:
    resolved = get_config_path(path)
    resolved.parent.mkdir(parents=True, exist_ok=True)

    lines = [
        f"enabled_languages = {_toml_scalar(list(config.enabled_languages))}",
        f"use_terminal = {_toml_scalar(config.use_terminal)}",
        f"enable_code_lens = {_toml_scalar(config.enable_code_lens)}",
        f"use_python_web_view = {_toml_scalar(config.use_python_web_view)}",
        f"python_interpreter = {_toml_scalar(config.python_interpreter)}",
        f"terminal_shell = {_toml_scalar(config.terminal_shell)}",
        f"log_level = {_toml_scalar(config.log_level)}",
    ]

    resolved.write_text("\n".join(lines) + "\n", encoding="utf-8")
    with suppress(OSError):
        resolved.chmod(0o600)
    return resolved
