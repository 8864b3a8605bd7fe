"""
Configuration: defaults file, option resolution and runtime settings.
"""

import json
import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .constants import PLATFORM
from .errors import ToolsError, CommonErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeSettings:
    """Polling settings for the stabilization loop."""
    poll_interval_seconds: float = 5.0
    max_wait_minutes: float = 60.0

    @property
    def max_attempts(self) -> int:
        return max(1, math.ceil(self.max_wait_minutes * 60 / self.poll_interval_seconds))


def load_runtime_settings(environ: Optional[Mapping[str, str]] = None) -> RuntimeSettings:
    """
    Read polling settings from EBTOOLS_POLL_INTERVAL_SECONDS and EBTOOLS_MAX_WAIT_MINUTES.

    Raises:
        ToolsError: If a value is not a positive number
    """
    environ = os.environ if environ is None else environ
    defaults = RuntimeSettings()

    def read(name: str, default: float) -> float:
        raw = environ.get(name)
        if raw is None or raw == "":
            return default
        try:
            value = float(raw)
        except ValueError:
            value = -1
        if value <= 0:
            raise ToolsError(f"{name} must be a positive number, got \"{raw}\"", CommonErrorCode.INVALID_OPTION_VALUE)
        return value

    return RuntimeSettings(
        poll_interval_seconds=read("EBTOOLS_POLL_INTERVAL_SECONDS", defaults.poll_interval_seconds),
        max_wait_minutes=read("EBTOOLS_MAX_WAIT_MINUTES", defaults.max_wait_minutes),
    )


def _next_token(option: str, end_token: str, pos: int):
    """Read one token up to end_token; a leading double quote protects the delimiter."""
    if pos >= len(option):
        return "", pos + 1

    if option[pos] == '"':
        start = pos + 1
        end = option.find('"', start)
        if end == -1:
            return option[start:], len(option) + 1
        delimiter = option.find(end_token, end)
        return option[start:end], (len(option) if delimiter == -1 else delimiter) + 1

    end = option.find(end_token, pos)
    if end == -1:
        return option[pos:], len(option) + 1
    return option[pos:end], end + 1


def parse_key_value_option(option: Optional[str]) -> Dict[str, str]:
    """
    Parse "<key1>=<value1>;<key2>=<value2>" into an ordered dict.

    Keys and values may be wrapped in double quotes to include '=' or ';'.
    A repeated key keeps its first position and takes the last value.

    Raises:
        ToolsError: If a key is empty
    """
    parameters: Dict[str, str] = {}
    if option is None or not option.strip():
        return parameters

    pos = 0
    while pos < len(option):
        name, pos = _next_token(option, "=", pos)
        value, pos = _next_token(option, ";", pos)

        if not name:
            raise ToolsError(
                f"Error parsing option ({option}), format should be <key1>=<value1>;<key2>=<value2>",
                CommonErrorCode.COMMAND_LINE_PARSE_ERROR,
            )
        parameters[name] = value

    return parameters


class DefaultsFile:
    """
    Option defaults read from aws-beanstalk-tools-defaults.json.

    Keys are option names without leading dashes, e.g. "application" or
    "solution-stack".
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None, source: Optional[Path] = None):
        self.data = data or {}
        self.source = source

    @classmethod
    def load(cls, project_dir: Union[str, Path], config_file: Optional[str] = None) -> "DefaultsFile":
        """
        Load the defaults file from the project directory or an explicit path.

        A missing default-named file yields empty defaults; a missing explicit
        file or malformed JSON raises ToolsError.
        """
        if config_file:
            path = Path(config_file)
            if not path.is_absolute():
                path = Path(project_dir) / path
            if not path.exists():
                raise ToolsError(f"Config file {path} can not be found", CommonErrorCode.DEFAULTS_PARSE_FAIL)
        else:
            path = Path(project_dir) / PLATFORM.defaults_file_name
            if not path.exists():
                return cls()

        try:
            data = json.loads(path.read_text(encoding="utf-8-sig"))
        except (OSError, json.JSONDecodeError) as e:
            raise ToolsError(f"Error parsing default config {path}: {e}", CommonErrorCode.DEFAULTS_PARSE_FAIL, e)

        if not isinstance(data, dict):
            raise ToolsError(f"Error parsing default config {path}: expected a JSON object", CommonErrorCode.DEFAULTS_PARSE_FAIL)

        logger.debug(f"Loaded defaults from {path}")
        return cls(data, path)

    def get(self, key: str) -> Any:
        return self.data.get(key)


class OptionResolver:
    """Resolves option values: command line, then defaults file, then hard-coded default."""

    def __init__(self, defaults: Optional[DefaultsFile] = None):
        self.defaults = defaults or DefaultsFile()

    def string(self, value: Optional[str], key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
        if value is None or value == "":
            raw = self.defaults.get(key)
            value = None if raw is None or raw == "" else str(raw)
        if value is None:
            value = default
        if required and not value:
            raise ToolsError(f"Missing required parameter: --{key}", CommonErrorCode.MISSING_REQUIRED_PARAMETER)
        return value

    def boolean(self, value: Optional[bool], key: str, default: Optional[bool] = None) -> Optional[bool]:
        if value is not None:
            return value
        raw = self.defaults.get(key)
        if raw is None:
            return default
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.lower() in ("true", "false"):
            return raw.lower() == "true"
        raise ToolsError(f"Default for {key} must be true or false, got \"{raw}\"", CommonErrorCode.DEFAULTS_PARSE_FAIL)

    def integer(self, value: Optional[int], key: str, default: Optional[int] = None) -> Optional[int]:
        if value is not None:
            return value
        raw = self.defaults.get(key)
        if raw is None:
            return default
        try:
            if isinstance(raw, bool):
                raise ValueError(raw)
            return int(raw)
        except (TypeError, ValueError):
            raise ToolsError(f"Default for {key} must be an integer, got \"{raw}\"", CommonErrorCode.DEFAULTS_PARSE_FAIL)

    def key_values(self, value: Optional[str], key: str) -> Dict[str, str]:
        if value:
            return parse_key_value_option(value)
        raw = self.defaults.get(key)
        if raw is None:
            return {}
        if isinstance(raw, dict):
            return {str(k): "" if v is None else str(v) for k, v in raw.items()}
        if isinstance(raw, str):
            return parse_key_value_option(raw)
        raise ToolsError(f"Default for {key} must be an object or key=value string", CommonErrorCode.DEFAULTS_PARSE_FAIL)
