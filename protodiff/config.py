"""
Oracle configuration.

Settings can be passed directly or read from ``PROTODIFF_*`` environment
variables via :meth:`OracleConfig.from_env`:

    PROTODIFF_ENFORCE_WEAK        require weak imports to resolve (default: 1)
    PROTODIFF_STOP_ON_FAILURE     stop the run at the first hard failure (default: 0)
    PROTODIFF_TOLERATE_FRONTEND   excuse candidate rejections of front-end-unreachable files (default: 1)
    PROTODIFF_CHECK_FIXPOINT      also check canonical forms are a fixpoint (default: 0)
    PROTODIFF_MAX_DEPTH           candidate message nesting limit (default: 100)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Optional

from protodiff.errors import ConfigError

DEFAULT_MAX_DEPTH = 100
# The candidate decoder recurses twice per nesting level
MAX_DEPTH_LIMIT = 200

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def _get_env_bool(name: str, default: bool) -> bool:
    """Get environment variable as bool."""
    val = os.environ.get(name)
    if val is None:
        return default
    norm = val.strip().lower()
    if norm in _TRUE:
        return True
    if norm in _FALSE:
        return False
    raise ConfigError(f"Environment variable {name} must be a boolean, got {val!r}")


def _get_env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    """Get environment variable as int."""
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        raise ConfigError(f"Environment variable {name} must be an integer, got {val!r}")


@dataclass(frozen=True)
class OracleConfig:
    """Configuration for a differential run.

    Attributes:
        enforce_weak_dependencies: Reference rejects files whose weak imports are unresolved.
        stop_on_failure: Stop after the first hard failure instead of accumulating.
        tolerate_frontend_asymmetry: A candidate rejection of a reference-accepted file that
            no .proto front-end could produce (e.g. empty name) passes instead of failing.
        check_fixpoint: Rebuild each canonical form in a scratch reference pool and require
            the result to be identical.
        max_depth: Candidate decoder nesting limit.
    """

    enforce_weak_dependencies: bool = True
    stop_on_failure: bool = False
    tolerate_frontend_asymmetry: bool = True
    check_fixpoint: bool = False
    max_depth: int = DEFAULT_MAX_DEPTH

    def __post_init__(self):
        if not 1 <= self.max_depth <= MAX_DEPTH_LIMIT:
            raise ConfigError(f"max_depth must be between 1 and {MAX_DEPTH_LIMIT}, got {self.max_depth}")

    @classmethod
    def from_env(cls, **overrides) -> OracleConfig:
        """Build a config from PROTODIFF_* environment variables, then apply overrides."""
        config = cls(
            enforce_weak_dependencies=_get_env_bool("PROTODIFF_ENFORCE_WEAK", True),
            stop_on_failure=_get_env_bool("PROTODIFF_STOP_ON_FAILURE", False),
            tolerate_frontend_asymmetry=_get_env_bool("PROTODIFF_TOLERATE_FRONTEND", True),
            check_fixpoint=_get_env_bool("PROTODIFF_CHECK_FIXPOINT", False),
            max_depth=_get_env_int("PROTODIFF_MAX_DEPTH", DEFAULT_MAX_DEPTH),
        )
        return replace(config, **overrides) if overrides else config


__all__ = ["OracleConfig", "DEFAULT_MAX_DEPTH", "MAX_DEPTH_LIMIT"]
