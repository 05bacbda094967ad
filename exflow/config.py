"""Project configuration (.exflow.json).

Example:

    {
        "call_raises": {"executeUpdate|executeQuery|getConnection": ["SQLException"]},
        "default_call_raises": [],
        "interesting_exceptions": ["java\\\\.sql\\\\..*", "SQLException", "IOException"],
        "error_types": {"RetryableError": "IOException"},
        "unknown_throw_type": "Exception",
        "extensions": {".java": "java", ".py": "python"}
    }

call_raises decides which calls are fallible: every regex is searched in the
call text and the types of all matching entries are raised. Calls matching
no entry raise default_call_raises. Types that match none of the
interesting_exceptions patterns are dropped, so the graph only models the
errors the caller cares about.
"""

import logging
import re
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError
from .type_hierarchy import TypeHierarchy

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".exflow.json"

DEFAULT_EXTENSIONS = {
    ".py": "python",
    ".java": "java",
}


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern)


class ExflowConfig(BaseModel):
    """Fallibility rules for the front-ends. Unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")

    call_raises: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Regex searched in the call text -> error types the call raises",
    )
    default_call_raises: list[str] = Field(
        default_factory=list,
        description="Error types raised by calls no call_raises entry matches",
    )
    interesting_exceptions: list[str] = Field(default_factory=lambda: [".*"])
    error_types: dict[str, str] = Field(
        default_factory=dict,
        description="Extra error type -> parent type",
    )
    unknown_throw_type: str | None = None
    extensions: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_EXTENSIONS))

    @field_validator("call_raises", "interesting_exceptions")
    @classmethod
    def _patterns_compile(cls, value):
        for pattern in value:
            try:
                _compile(pattern)
            except re.error as e:
                raise ValueError(f"invalid pattern {pattern!r}: {e}") from e
        return value

    def is_interesting(self, error_type: str) -> bool:
        return any(_compile(p).fullmatch(error_type) for p in self.interesting_exceptions)

    def raises_for_call(self, call_text: str) -> tuple[str, ...]:
        """Error types a call may raise, filtered by interesting_exceptions."""
        matched: list[str] = []
        hit = False
        for pattern, error_types in self.call_raises.items():
            if _compile(pattern).search(call_text):
                hit = True
                matched.extend(error_types)
        if not hit:
            matched = list(self.default_call_raises)
        return tuple(dict.fromkeys(t for t in matched if self.is_interesting(t)))

    def apply_to(self, hierarchy: TypeHierarchy) -> TypeHierarchy:
        """Declare the configured error types in hierarchy (in place)."""
        for name, parent in self.error_types.items():
            hierarchy.declare(name, parent)
        return hierarchy

    def to_dict(self) -> dict:
        return self.model_dump()


def _config_error(error: ValidationError, source: str | None = None) -> ConfigError:
    """One readable ConfigError for every problem pydantic found."""
    unknown = []
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        if item["type"] == "extra_forbidden":
            unknown.append(location)
        else:
            problems.append(f"{location}: {item['msg']}" if location else item["msg"])
    if unknown:
        problems.insert(0, f"unknown configuration keys: {', '.join(sorted(unknown))}")
    message = "; ".join(problems)
    return ConfigError(f"{source}: {message}" if source else message)


def config_from_dict(data: dict) -> ExflowConfig:
    """Validate a parsed configuration mapping.

    Raises:
        ConfigError: on unknown keys, wrong value types or invalid regexes.
    """
    try:
        return ExflowConfig.model_validate(data)
    except ValidationError as e:
        raise _config_error(e) from e


def load_config(path: str | Path) -> ExflowConfig:
    """Load and validate a configuration file."""
    path = Path(path)
    try:
        config = ExflowConfig.model_validate_json(path.read_text())
    except ValidationError as e:
        raise _config_error(e, str(path)) from e
    logger.debug(f"Loaded configuration from {path}")
    return config


def find_config(project_dir: str | Path) -> ExflowConfig:
    """Configuration for project_dir: its .exflow.json, or the defaults."""
    path = Path(project_dir) / CONFIG_FILENAME
    if path.exists():
        return load_config(path)
    return ExflowConfig()
