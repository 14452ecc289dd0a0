"""Build profiles: named compilation configurations.

A profile decides the cargo flag used for compilation and, from that, the
directory under ``target/`` where the executable lands. The artifact path is
a pure function of the profile, so the stage boundary never has to search.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path

from nodeimage.errors import CompilationFailure, PrerequisiteFailure

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "release"

# Aliases accepted on the command line for cargo's built-in profiles.
_ALIASES = {"debug": "dev"}


@dataclass(frozen=True)
class BuildProfile:
    """A resolved build profile.

    name is the cargo profile name, target_dir the directory under target/
    cargo writes its outputs to for that profile.
    """

    name: str
    target_dir: str
    optimized: bool

    @property
    def cargo_flag(self) -> str:
        if self.name == "release":
            return "--release"
        return f"--profile {self.name}"


_BUILTIN: dict[str, BuildProfile] = {
    "release": BuildProfile("release", "release", optimized=True),
    "dev": BuildProfile("dev", "debug", optimized=False),
}


def read_cargo_manifest(source: str | Path) -> dict:
    """Parse the top-level Cargo.toml of a source tree."""
    manifest = Path(source) / "Cargo.toml"
    if not manifest.is_file():
        raise PrerequisiteFailure(f"No Cargo.toml found in source tree {str(source)!r}")
    with open(manifest, "rb") as f:
        return tomllib.load(f)


def custom_profiles(source: str | Path) -> dict[str, BuildProfile]:
    """Profiles declared as [profile.<name>] in the source tree's Cargo.toml."""
    declared = read_cargo_manifest(source).get("profile", {})
    profiles: dict[str, BuildProfile] = {}
    for name, table in declared.items():
        if name in _BUILTIN or name in ("test", "bench"):
            continue
        inherits = table.get("inherits", "release") if isinstance(table, dict) else "release"
        profiles[name] = BuildProfile(name, name, optimized=inherits != "dev")
    return profiles


def resolve_profile(name: str | None = None, source: str | Path | None = None) -> BuildProfile:
    """Resolve a profile name to a BuildProfile.

    Built-in profiles always resolve. Any other name must be declared in the
    Cargo.toml of ``source``; without a source tree it is rejected.

    Raises:
        CompilationFailure: The profile is not known.
    """
    requested = name or DEFAULT_PROFILE
    canonical = _ALIASES.get(requested, requested)
    if canonical in _BUILTIN:
        return _BUILTIN[canonical]

    if source is not None:
        declared = custom_profiles(source)
        if canonical in declared:
            logger.debug("Using custom profile %r from Cargo.toml", canonical)
            return declared[canonical]
        known = sorted([*_BUILTIN, *declared])
    else:
        known = sorted(_BUILTIN)

    raise CompilationFailure(
        f"Unknown build profile {requested!r}. Known profiles: {', '.join(known)}"
    )
