"""Runtime assembly stage: the minimal image around the compiled executable."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import PurePosixPath

from nodeimage.builder import CompiledExecutable
from nodeimage.identity import ExecutionIdentity

DEFAULT_PRUNE = [
    "/usr/lib/python*",
    "/usr/bin",
    "/usr/sbin",
    "/usr/share/man",
]

DEFAULT_KEEP = ["ca-certificates"]

_KEEP_STASH = "/tmp/nodeimage-keep"


@dataclass(frozen=True)
class NetworkContract:
    """The three ports the node listens on.

    p2p carries peer-to-peer traffic, rpc the request/response admin
    interface and ws the streaming/subscription admin interface.
    """

    p2p: int = 30333
    rpc: int = 9933
    ws: int = 9944

    def __post_init__(self) -> None:
        for role, port in (("p2p", self.p2p), ("rpc", self.rpc), ("ws", self.ws)):
            if not 1 <= port <= 65535:
                raise ValueError(f"Port for {role} out of range: {port}")
        if len(set(self.ports())) != 3:
            raise ValueError(f"Ports must be distinct, got {self.ports()}")

    def ports(self) -> tuple[int, int, int]:
        return (self.p2p, self.rpc, self.ws)


@dataclass
class RuntimeStage:
    """Steps that turn a bare base image into the shipped runtime image.

    The order of the generated steps matters: the trust store is preserved
    and the identity created before the executable arrives, the executable
    is verified before the tools used to verify it are removed, and the data
    directory is created after switching to the identity so that it owns it.
    """

    base: str
    identity: ExecutionIdentity
    network: NetworkContract = field(default_factory=NetworkContract)
    data_dir: str | None = None
    keep: list[str] = field(default_factory=lambda: list(DEFAULT_KEEP))
    prune: list[str] = field(default_factory=lambda: list(DEFAULT_PRUNE))
    install_dir: str = "/usr/local/bin"
    version_flag: str = "--version"
    description: str = ""

    def __post_init__(self) -> None:
        if self.data_dir is None:
            self.data_dir = f"{self.identity.home.rstrip('/')}/data"
        data = PurePosixPath(self.data_dir)
        home = PurePosixPath(self.identity.home)
        if not data.is_absolute():
            raise ValueError(f"Data directory must be absolute: {self.data_dir!r}")
        if data == home or home not in data.parents:
            raise ValueError(
                f"Data directory {self.data_dir!r} must live under the home of "
                f"{self.identity.name!r} ({self.identity.home!r}) so the identity can create it"
            )

    def trust_store_commands(self) -> list[str]:
        """Keep only the listed /usr/share entries, the CA bundle by default."""
        if not self.keep:
            return ["rm -rf /usr/share/*"]
        moves = " ".join(f"/usr/share/{name}" for name in self.keep)
        return [
            f"mkdir -p {_KEEP_STASH}",
            f"mv {moves} {_KEEP_STASH}/",
            "rm -rf /usr/share/*",
            f"mv {_KEEP_STASH}/* /usr/share/",
            f"rmdir {_KEEP_STASH}",
        ]

    def verify_commands(self, artifact: CompiledExecutable) -> list[str]:
        """The verification gate. Every command must succeed for the image to exist."""
        # ldd exits 0 even when a library is missing, so look for it explicitly.
        return [
            f"ldd {artifact.install_path}",
            f'! ldd {artifact.install_path} | grep "not found"',
            f"{artifact.install_path} {self.version_flag}",
        ]

    def shrink_commands(self) -> list[str]:
        return [f"rm -rf {path}" for path in self.prune]

    def data_commands(self) -> list[str]:
        return [f"mkdir -p {self.data_dir}"]
