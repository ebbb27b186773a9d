"""
Runtime configuration loaded from the environment (and a ``.env`` file).
"""

import os
from typing import Mapping, Optional

from dotenv import load_dotenv


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


class Settings:
    """Settings for the model client, turn limits and the HTTP server."""

    def __init__(
        self,
        openai_api_key: str,
        model_name: str = "gpt-4o-mini",
        temperature: float = 0.2,
        max_retries: int = 2,
        max_tool_rounds: int = 10,
        turn_timeout: Optional[float] = 120.0,
    ):
        self.openai_api_key = openai_api_key
        self.model_name = model_name
        self.temperature = temperature
        self.max_retries = max_retries
        self.max_tool_rounds = max_tool_rounds
        self.turn_timeout = turn_timeout

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables.

        When ``environ`` is not given, a ``.env`` file is loaded first and
        ``os.environ`` is read.

        Raises
        ------
        ConfigurationError
            If ``OPENAI_API_KEY`` is missing or a numeric setting is invalid.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        api_key = environ.get("OPENAI_API_KEY", "").strip()
        if not api_key:
            raise ConfigurationError("Missing required env variable: OPENAI_API_KEY")

        turn_timeout = _parse(environ, "EQUATE_TURN_TIMEOUT", float, 120.0)

        return cls(
            openai_api_key=api_key,
            model_name=environ.get("EQUATE_MODEL", "").strip() or "gpt-4o-mini",
            temperature=_parse(environ, "EQUATE_TEMPERATURE", float, 0.2),
            max_retries=_parse(environ, "EQUATE_MAX_RETRIES", int, 2),
            max_tool_rounds=_parse(environ, "EQUATE_MAX_TOOL_ROUNDS", int, 10),
            turn_timeout=turn_timeout if turn_timeout > 0 else None,
        )


def _parse(environ: Mapping[str, str], name: str, convert, default):
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = convert(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from None
    if value < 0:
        raise ConfigurationError(f"{name} must not be negative, got {raw!r}")
    return value
