"""Builder stage: compile the node source into a single executable."""

from __future__ import annotations

from dataclasses import dataclass, field

from nodeimage.profile import BuildProfile
from nodeimage.toolchain import Toolchain

# System prerequisites of a Substrate-style node build.
DEFAULT_BUILD_PACKAGES = [
    "cmake",
    "pkg-config",
    "libssl-dev",
    "git",
    "clang",
    "libclang-dev",
]

# Needed by the rustup installer itself.
_INSTALLER_PACKAGES = ["curl", "ca-certificates"]


@dataclass(frozen=True)
class CompiledExecutable:
    """The one artifact handed from the builder to the runtime image.

    build_path is where the builder leaves it, install_path where the runtime
    image receives its copy.
    """

    name: str
    build_path: str
    install_path: str
    profile: BuildProfile


@dataclass
class BuilderStage:
    """Isolated build environment for the node.

    Everything here lives in the toolchain and builder targets only; the
    runtime image receives nothing but the executable.
    """

    base: str
    workdir: str
    binary: str
    packages: list[str] = field(default_factory=lambda: list(DEFAULT_BUILD_PACKAGES))
    toolchain: Toolchain = field(default_factory=Toolchain)
    locked: bool = False
    env: dict[str, str] = field(default_factory=dict)
    description: str = ""

    def all_packages(self) -> list[str]:
        seen: list[str] = []
        for pkg in [*self.packages, *_INSTALLER_PACKAGES]:
            if pkg not in seen:
                seen.append(pkg)
        return seen

    def artifact_path(self, profile: BuildProfile) -> str:
        return f"{self.workdir.rstrip('/')}/target/{profile.target_dir}/{self.binary}"

    def artifact(self, profile: BuildProfile, install_dir: str = "/usr/local/bin") -> CompiledExecutable:
        return CompiledExecutable(
            name=self.binary,
            build_path=self.artifact_path(profile),
            install_path=f"{install_dir.rstrip('/')}/{self.binary}",
            profile=profile,
        )

    def prerequisite_commands(self) -> list[str]:
        """apt commands installing the system prerequisites."""
        return [
            "apt-get update",
            'apt-get dist-upgrade -y -o Dpkg::Options::="--force-confold"',
            f"apt-get install -y --no-install-recommends {' '.join(self.all_packages())}",
            "rm -rf /var/lib/apt/lists/*",
        ]

    def build_commands(self, profile: BuildProfile) -> list[str]:
        """Compile, then make sure the artifact exists where the handoff expects it."""
        build_cmd = f"cargo build {profile.cargo_flag}"
        if self.locked:
            build_cmd += " --locked"
        return [
            build_cmd,
            f"test -x {self.artifact_path(profile)}",
        ]
