"""Rust toolchain descriptor.

Describes which toolchains rustup installs in the builder, which one is the
default for compilation, and which secondary targets each toolchain needs
(for example a WebAssembly target used by the node's runtime blob).
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

_RUSTUP_URL = "https://sh.rustup.rs"

RUSTUP_HOME = "/usr/local/rustup"
CARGO_HOME = "/usr/local/cargo"


def _default_extra() -> dict[str, list[str]]:
    return {"nightly": ["wasm32-unknown-unknown"]}


@dataclass
class Toolchain:
    """Pinned toolchain set for the builder.

    - default="1.83.0": toolchain used by cargo build
    - targets: secondary targets for the default toolchain
    - extra: additional toolchains and their targets, e.g. {"nightly": ["wasm32-unknown-unknown"]}

    Pass extra={} when the source tree does not need a secondary toolchain.
    """

    default: str = "stable"
    targets: list[str] = field(default_factory=list)
    extra: dict[str, list[str]] = field(default_factory=_default_extra)

    @classmethod
    def from_source(cls, source: str | Path) -> Toolchain | None:
        """Read a rust-toolchain.toml or legacy rust-toolchain file, if any."""
        root = Path(source)
        toml_file = root / "rust-toolchain.toml"
        legacy = root / "rust-toolchain"

        if toml_file.is_file():
            with open(toml_file, "rb") as f:
                table = tomllib.load(f).get("toolchain", {})
        elif legacy.is_file():
            text = legacy.read_text().strip()
            if text.startswith("["):
                table = tomllib.loads(text).get("toolchain", {})
            else:
                table = {"channel": text}
        else:
            return None

        channel = table.get("channel")
        if not channel:
            raise ValueError(f"Toolchain file in {str(root)!r} does not name a channel")
        # A pinned file is authoritative: no implicit extra toolchains.
        return cls(default=channel, targets=list(table.get("targets", [])), extra={})

    def toolchains(self) -> dict[str, list[str]]:
        """All toolchains to install, mapped to their targets, default last."""
        merged = {name: list(targets) for name, targets in self.extra.items() if name != self.default}
        merged[self.default] = list(self.targets) + list(self.extra.get(self.default, []))
        return merged

    def env(self) -> dict[str, str]:
        return {
            "RUSTUP_HOME": RUSTUP_HOME,
            "CARGO_HOME": CARGO_HOME,
            "PATH": f"{CARGO_HOME}/bin:$PATH",
        }

    def to_commands(self) -> list[str]:
        """Generate commands to install rustup and every pinned toolchain."""
        commands = [
            f"curl {_RUSTUP_URL} -sSf | sh -s -- -y --no-modify-path "
            "--profile minimal --default-toolchain none",
        ]
        for name, targets in self.toolchains().items():
            commands.append(f"rustup toolchain install {name}")
            for target in targets:
                commands.append(f"rustup target add {target} --toolchain {name}")
        commands.append(f"rustup default {self.default}")
        return commands
