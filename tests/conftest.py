"""Shared test fixtures for nodeimage tests.

Provides a small Cargo source tree and a fake docker that records what the
pipeline asks of it.
"""

from __future__ import annotations

import io
import subprocess
import tarfile
from pathlib import Path

import pytest

from nodeimage import Pipeline

CARGO_TOML = """\
[package]
name = "acala"
version = "0.1.0"

[profile.production]
inherits = "release"
lto = true

[profile.fastdev]
inherits = "dev"
"""


def make_rootfs(dest: Path, entries: list[tuple[str, str, int]]) -> Path:
    """Write a tar archive like `docker export` does.

    entries are (path, "dir" | "file", uid).
    """
    with tarfile.open(dest, "w") as tar:
        for name, kind, uid in entries:
            info = tarfile.TarInfo(name)
            info.uid = uid
            if kind == "dir":
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            else:
                data = b"\x7fELF"
                info.size = len(data)
                info.mode = 0o755
                tar.addfile(info, io.BytesIO(data))
    return dest


GOOD_ROOTFS = [
    ("usr", "dir", 0),
    ("usr/local", "dir", 0),
    ("usr/local/bin", "dir", 0),
    ("usr/local/bin/acala", "file", 0),
    ("usr/share", "dir", 0),
    ("usr/share/ca-certificates", "dir", 0),
    ("usr/share/ca-certificates/mozilla.crt", "file", 0),
    ("acala", "dir", 1000),
    ("acala/data", "dir", 1000),
]

GOOD_CONFIG = {
    "User": "acala",
    "ExposedPorts": {"30333/tcp": {}, "9933/tcp": {}, "9944/tcp": {}},
    "Volumes": {"/acala/data": {}},
    "Cmd": ["/usr/local/bin/acala"],
    "Entrypoint": None,
}


class FakeDocker:
    """Stands in for nodeimage.docker.Docker."""

    def __init__(
        self,
        fail_target: str | None = None,
        config: dict | None = None,
        rootfs: list[tuple[str, str, int]] | None = None,
        version: str = "acala 0.1.0-abc1234-x86_64-linux-gnu",
        version_rc: int = 0,
    ):
        self.fail_target = fail_target
        self.config = dict(GOOD_CONFIG if config is None else config)
        self.rootfs = list(GOOD_ROOTFS if rootfs is None else rootfs)
        self.version = version
        self.version_rc = version_rc
        self.builds: list[dict] = []
        self.runs: list[tuple] = []
        self.contexts: list[Path] = []
        self.tags: set[str] = set()

    def build(self, context, target, dockerfile=None, tag=None, build_args=None):
        context = Path(context)
        self.contexts.append(context)
        self.builds.append(
            {
                "target": target,
                "tag": tag,
                "files": sorted(p.relative_to(context).as_posix() for p in context.rglob("*")),
            }
        )
        rc = 1 if target == self.fail_target else 0
        if tag and rc == 0:
            self.tags.add(tag)
        return subprocess.CompletedProcess(["docker", "build"], rc, stdout=f"step output for {target}\n")

    def inspect(self, image):
        return {"Id": "sha256:feed", "Config": self.config}

    def export_filesystem(self, image, dest):
        return make_rootfs(Path(dest), self.rootfs)

    def tag(self, image, tag):
        assert image in self.tags
        self.tags.add(tag)

    def untag(self, tag):
        self.tags.discard(tag)

    def run(self, image, entrypoint, *args):
        self.runs.append((image, entrypoint, *args))
        return subprocess.CompletedProcess(["docker", "run"], self.version_rc, stdout=self.version + "\n")


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """A node source tree with host build state lying around."""
    root = tmp_path / "acala"
    (root / "src").mkdir(parents=True)
    (root / "Cargo.toml").write_text(CARGO_TOML)
    (root / "src" / "main.rs").write_text('fn main() { println!("acala"); }\n')
    (root / "target" / "release").mkdir(parents=True)
    (root / "target" / "release" / "acala").write_text("stale binary")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/master\n")
    return root


@pytest.fixture
def pipeline() -> Pipeline:
    p = Pipeline("acala")
    p.maintainer = "hello@acala.network"
    return p


@pytest.fixture
def fake_docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def nodefile(tmp_path: Path) -> Path:
    path = tmp_path / "Nodefile"
    path.write_text(
        "from nodeimage import Pipeline\n"
        "\n"
        "pipeline = Pipeline('acala')\n"
        "pipeline.maintainer = 'hello@acala.network'\n"
        "pipeline.user('acala', uid=1000)\n"
    )
    return path
