"""Pipeline: the root object for node image definitions."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path

from nodeimage.builder import DEFAULT_BUILD_PACKAGES, BuilderStage, CompiledExecutable
from nodeimage.identity import ExecutionIdentity
from nodeimage.profile import BuildProfile, resolve_profile
from nodeimage.runtime import DEFAULT_KEEP, DEFAULT_PRUNE, NetworkContract, RuntimeStage
from nodeimage.toolchain import Toolchain
from nodeimage.workspace import hash_dir

logger = logging.getLogger(__name__)

DEFAULT_BASE = "phusion/baseimage:0.10.2"

_NAME_RE = re.compile(r"^[a-z][a-z0-9_-]*$")


class Pipeline:
    """Root object for defining a node image.

    Defaults reproduce a hardened Substrate-style node image: build on a
    pinned base with stable + nightly (wasm) toolchains, run as uid 1000,
    expose 30333/9933/9944 and keep state in <workdir>/data. Every knob can
    be changed before resolve().
    """

    def __init__(
        self,
        name: str,
        binary: str | None = None,
        base: str = DEFAULT_BASE,
    ):
        if not _NAME_RE.match(name):
            raise ValueError(
                f"Pipeline name {name!r} must be lowercase letters, digits, '-' or '_', "
                "starting with a letter"
            )
        self.name = name
        self.binary = binary or name

        # Base images, pinned
        self.builder_base = base
        self.runtime_base = base

        self.workdir = f"/{name}"
        self.install_dir = "/usr/local/bin"
        self.version_flag = "--version"
        self.locked = False

        # Metadata
        self.maintainer: str | None = None
        self.builder_description = f"This is the build stage for {name}. Here we create the binary."
        self.runtime_description = (
            f"This is the 2nd stage: a very small image where we copy the {name} binary."
        )

        # Internal state
        self._packages: list[str] = list(DEFAULT_BUILD_PACKAGES)
        self._toolchain: Toolchain | None = None
        self._identity: ExecutionIdentity | None = None
        self._home: str | None = None
        self._network = NetworkContract()
        self._data_dir: str | None = None
        self._keep: list[str] = list(DEFAULT_KEEP)
        self._prune: list[str] = list(DEFAULT_PRUNE)
        self._labels: dict[str, str] = {}
        self._build_env: dict[str, str] = {}

    # --- Builder ---

    def install(self, *packages: str) -> None:
        """Add system packages to the builder."""
        self._packages.extend(p for p in packages if p not in self._packages)

    def toolchain(
        self,
        default: str = "stable",
        targets: list[str] | None = None,
        extra: dict[str, list[str]] | None = None,
    ) -> None:
        """Pin the Rust toolchains. Overrides any rust-toolchain file in the source."""
        self._toolchain = Toolchain(
            default=default,
            targets=targets or [],
            extra=extra if extra is not None else {},
        )

    def build_env(self, **values: str) -> None:
        """Environment variables set for compilation only."""
        self._build_env.update(values)

    # --- Runtime ---

    def user(
        self,
        name: str,
        uid: int = 1000,
        gid: int | None = None,
        home: str | None = None,
        shell: str = "/bin/sh",
    ) -> None:
        """Set the execution identity. Without a home, it follows workdir."""
        self._identity = ExecutionIdentity(
            name=name, home=home or self.workdir, uid=uid, gid=gid, shell=shell
        )
        self._home = home

    def expose(self, p2p: int = 30333, rpc: int = 9933, ws: int = 9944) -> None:
        self._network = NetworkContract(p2p=p2p, rpc=rpc, ws=ws)

    def data(self, path: str) -> None:
        """Set the persistent data mount directory."""
        self._data_dir = path

    def keep(self, *names: str) -> None:
        """Replace the /usr/share entries preserved in the runtime image."""
        self._keep = list(names)

    def debloat(self, *paths: str, replace: bool = False) -> None:
        """Add paths removed from the runtime image after verification."""
        if replace:
            self._prune = list(paths)
        else:
            self._prune.extend(p for p in paths if p not in self._prune)

    def label(self, key: str, value: str) -> None:
        self._labels[key] = value

    # --- Resolution ---

    def identity(self) -> ExecutionIdentity:
        if self._identity is None:
            return ExecutionIdentity(name=self.name, home=self.workdir)
        return replace(self._identity, home=self._home or self.workdir)

    def resolve(
        self,
        profile: str | None = None,
        source: str | Path | None = None,
    ) -> ResolvedPipeline:
        """Resolve the definition against a build profile and, optionally, a source tree.

        With a source tree, custom cargo profiles and rust-toolchain files are
        honored and the tree's content digest is recorded.
        """
        build_profile = resolve_profile(profile, source)

        toolchain = self._toolchain
        if toolchain is None and source is not None:
            toolchain = Toolchain.from_source(source)
            if toolchain is not None:
                logger.info("Using toolchain %r pinned by the source tree", toolchain.default)
        if toolchain is None:
            toolchain = Toolchain()

        builder = BuilderStage(
            base=self.builder_base,
            workdir=self.workdir,
            binary=self.binary,
            packages=list(self._packages),
            toolchain=toolchain,
            locked=self.locked,
            env=dict(self._build_env),
            description=self.builder_description,
        )
        runtime = RuntimeStage(
            base=self.runtime_base,
            identity=self.identity(),
            network=self._network,
            data_dir=self._data_dir,
            keep=list(self._keep),
            prune=list(self._prune),
            install_dir=self.install_dir,
            version_flag=self.version_flag,
            description=self.runtime_description,
        )

        digest = hash_dir(source) if source is not None else None

        labels = {"nodeimage.profile": build_profile.name}
        if digest:
            labels["nodeimage.source-digest"] = digest
        labels.update(self._labels)

        return ResolvedPipeline(
            name=self.name,
            maintainer=self.maintainer,
            builder=builder,
            runtime=runtime,
            profile=build_profile,
            artifact=builder.artifact(build_profile, self.install_dir),
            labels=labels,
            source_digest=digest,
        )


@dataclass
class ResolvedPipeline:
    """Flat, fully-resolved pipeline ready for Dockerfile generation."""

    name: str
    maintainer: str | None
    builder: BuilderStage
    runtime: RuntimeStage
    profile: BuildProfile
    artifact: CompiledExecutable
    labels: dict[str, str] = field(default_factory=dict)
    source_digest: str | None = None

    def to_manifest(self) -> dict:
        """JSON-serializable summary of what the image will contain."""
        identity = self.runtime.identity
        return {
            "name": self.name,
            "profile": {
                "name": self.profile.name,
                "target_dir": self.profile.target_dir,
                "optimized": self.profile.optimized,
            },
            "toolchain": {
                "default": self.builder.toolchain.default,
                "toolchains": self.builder.toolchain.toolchains(),
            },
            "artifact": {
                "name": self.artifact.name,
                "build_path": self.artifact.build_path,
                "install_path": self.artifact.install_path,
            },
            "identity": {
                "name": identity.name,
                "uid": identity.uid,
                "gid": identity.group_id,
                "home": identity.home,
            },
            "ports": {
                "p2p": self.runtime.network.p2p,
                "rpc": self.runtime.network.rpc,
                "ws": self.runtime.network.ws,
            },
            "data_dir": self.runtime.data_dir,
            "cmd": [self.artifact.install_path],
            "source_digest": self.source_digest,
            "labels": dict(self.labels),
        }
