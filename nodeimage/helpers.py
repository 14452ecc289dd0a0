"""Reading Nodefile configuration from the build environment."""

from __future__ import annotations

import os

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off", ""}


def env(name: str, default: str | None = None) -> str:
    """Read a string setting, e.g. a label value or a profile name.

        pipeline.label("org.opencontainers.image.source", env("ACALA_SOURCE_URL", default="..."))
    """
    value = os.environ.get(name)
    if value is not None:
        return value
    if default is None:
        raise ValueError(
            f"{name} is not set and the Nodefile gives no default; "
            f"export it before running nodeimage or call env({name!r}, default=...)"
        )
    return default


def env_flag(name: str, default: bool = False) -> bool:
    """Read an on/off setting such as ``pipeline.locked``."""
    value = os.environ.get(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in _TRUE:
        return True
    if normalized in _FALSE:
        return False
    raise ValueError(f"{name}={value!r} is not a boolean (use one of 1/0, true/false, yes/no, on/off)")
