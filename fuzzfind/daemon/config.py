"""Configuration management for fuzzfind."""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import OptionsError


ResultType = Literal["plain", "line", "file_line", "ag", "file", "dir", "buffer"]


def expand_path(path: str) -> str:
    """Expand a leading ``~`` to the home directory."""
    if not path or not path.startswith("~"):
        return path
    return os.path.expanduser(path)


def collapse_home(path: str, home: Optional[str] = None) -> str:
    """Replace the home directory prefix of ``path`` with ``~``."""
    home = home if home is not None else os.path.expanduser("~")
    home = home.rstrip("/")
    if not home or home == "~":
        return path
    if path == home or path.startswith(home + "/"):
        return "~" + path[len(home):]
    return path


class FinderConfig(BaseModel):
    """Engine tunables for the finder daemon."""

    flush_interval_ms: int = 50
    stall_timeout_ms: int = 1000
    cancel_timeout_ms: int = 500
    max_display_length: int = 200
    default_max: int = 20
    channel_capacity: int = 1000
    yield_every: int = 256
    shell: str = "bash"
    log_level: str = "INFO"

    @field_validator(
        "flush_interval_ms",
        "stall_timeout_ms",
        "cancel_timeout_ms",
        "max_display_length",
        "default_max",
        "channel_capacity",
        "yield_every",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @property
    def flush_interval(self) -> float:
        return self.flush_interval_ms / 1000.0

    @property
    def stall_timeout(self) -> float:
        return self.stall_timeout_ms / 1000.0

    @property
    def cancel_timeout(self) -> float:
        return self.cancel_timeout_ms / 1000.0

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "FinderConfig":
        """Load configuration from YAML file.

        An explicit path must exist. Without one the default locations are
        searched and plain defaults are used when none of them exists.
        """
        if config_path is None:
            candidates = [
                Path("fuzzfind.yaml"),
                Path.home() / ".config" / "fuzzfind" / "config.yaml",
                Path("/etc/fuzzfind/config.yaml"),
            ]
            for candidate in candidates:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.debug("No config file found, using defaults")
                return cls()
        elif not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            yaml.safe_dump(self.model_dump(), f, default_flow_style=False)


class FinderOptions(BaseModel):
    """Options of a single ``run`` event.

    ``source`` is either a literal list of candidates, a shell command whose
    output lines are the candidates, or absent to walk the filesystem.
    """

    model_config = ConfigDict(extra="ignore")

    source: Optional[Union[List[str], str]] = None
    dir: str = ""
    pwd: str = ""
    type: ResultType = "plain"
    sink: Optional[str] = None
    function: Optional[str] = None
    remote: bool = False

    @field_validator("source", mode="before")
    @classmethod
    def validate_source(cls, v: Any) -> Any:
        # Non-string items of a literal list are skipped
        if isinstance(v, (list, tuple)):
            return [item for item in v if isinstance(item, str)]
        return v

    @field_validator("dir", "pwd", mode="before")
    @classmethod
    def validate_path(cls, v: Any) -> str:
        if v is None:
            return ""
        if not isinstance(v, str):
            raise ValueError("path must be a string")
        return expand_path(v)

    @field_validator("type", mode="before")
    @classmethod
    def validate_type(cls, v: Any) -> Any:
        return "plain" if v in (None, "") else v

    @classmethod
    def parse(cls, raw: Any) -> "FinderOptions":
        """Build options from the loosely typed map sent by the editor."""
        if isinstance(raw, FinderOptions):
            return raw
        if not isinstance(raw, dict):
            raise OptionsError(f"options must be a map, got {type(raw).__name__}")
        try:
            return cls(**{str(k): v for k, v in raw.items()})
        except ValidationError as e:
            raise OptionsError(str(e)) from e

    @property
    def base_dir(self) -> str:
        """Directory the filesystem walks start from, relative to ``pwd``."""
        return self.dir or "."

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
