"""Execution identity for the node process inside the runtime image."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ExecutionIdentity:
    """A non-privileged user the node runs as.

    uid and gid are fixed so that ownership of the data mount is the same
    across rebuilds. The home directory doubles as the service's working
    directory.
    """

    name: str
    home: str
    uid: int = 1000
    gid: int | None = None
    shell: str = "/bin/sh"

    def __post_init__(self) -> None:
        if self.name == "root":
            raise ValueError("The execution identity cannot be root")
        if self.uid <= 0:
            raise ValueError(f"Execution identity {self.name!r} needs a non-zero uid, got {self.uid}")
        if self.gid is not None and self.gid <= 0:
            raise ValueError(f"Execution identity {self.name!r} needs a non-zero gid, got {self.gid}")
        if not self.home.startswith("/"):
            raise ValueError(f"Home directory must be absolute: {self.home!r}")

    @property
    def group_id(self) -> int:
        return self.uid if self.gid is None else self.gid

    @property
    def user_spec(self) -> str:
        """Value for the Dockerfile USER instruction."""
        return self.name

    def setup_commands(self) -> list[str]:
        """Generate shell commands to create the user and its group."""
        if self.group_id == self.uid:
            return [
                f"useradd -m -u {self.uid} -U -s {self.shell} -d {self.home} {self.name}",
            ]
        return [
            f"groupadd -g {self.group_id} {self.name}",
            f"useradd -m -u {self.uid} -g {self.group_id} -s {self.shell} -d {self.home} {self.name}",
        ]
