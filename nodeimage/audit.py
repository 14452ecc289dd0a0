"""Post-build audit of a runtime image.

Checks what the image actually contains against what the pipeline
declared: the running identity, the network and storage contract, the
default command, the absence of build-time leftovers, and that the
executable reports its version.
"""

from __future__ import annotations

import fnmatch
import hashlib
import logging
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from nodeimage.docker import Docker
from nodeimage.errors import VerificationFailure
from nodeimage.image import ResolvedPipeline

logger = logging.getLogger(__name__)

# Paths (relative to /) that betray a leaked toolchain or package cache.
FORBIDDEN_PATTERNS = (
    "usr/local/cargo",
    "usr/local/cargo/*",
    "usr/local/rustup",
    "usr/local/rustup/*",
    "*/.cargo",
    "*/.cargo/*",
    "*/.rustup",
    "*/.rustup/*",
    "usr/bin/cc",
    "usr/bin/gcc*",
    "usr/bin/clang*",
    "usr/bin/rustc",
    "usr/bin/cargo",
    "usr/lib/llvm-*",
    "var/cache/apt/archives/*.deb",
)

# Source tree markers, relative to the builder's working directory.
_SOURCE_MARKERS = ("Cargo.toml", "Cargo.lock", "src", "target")

_ROOT_USERS = {"", "root", "0"}


@dataclass
class AuditReport:
    image: str
    findings: list[str] = field(default_factory=list)
    version: str | None = None
    files: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.findings

    @property
    def fingerprint(self) -> str:
        """Digest of the image's file set, comparable across rebuilds."""
        return "sha256:" + hashlib.sha256("\n".join(self.files).encode("utf-8")).hexdigest()

    def equivalent(self, other: AuditReport) -> bool:
        return self.files == other.files

    def raise_for_findings(self) -> None:
        if self.findings:
            details = "\n".join(f"  - {f}" for f in self.findings)
            raise VerificationFailure(f"Image {self.image!r} failed the audit:\n{details}")


def _rel(path: str) -> str:
    return path.removeprefix("./").strip("/")


def _is_root_user(user: str) -> bool:
    name = user.split(":", 1)[0]
    return name in _ROOT_USERS


def check_config(config: dict[str, Any], resolved: ResolvedPipeline) -> list[str]:
    """Check the image metadata (the "Config" object of docker image inspect)."""
    findings: list[str] = []
    runtime = resolved.runtime

    user = config.get("User") or ""
    if _is_root_user(user):
        findings.append(f"Image runs as an administrative identity ({user or 'root by default'!r})")
    elif user.split(":", 1)[0] not in (runtime.identity.name, str(runtime.identity.uid)):
        findings.append(f"Image user {user!r} is not the execution identity {runtime.identity.name!r}")

    exposed = set((config.get("ExposedPorts") or {}).keys())
    expected = {f"{port}/tcp" for port in runtime.network.ports()}
    if exposed != expected:
        findings.append(f"Exposed ports {sorted(exposed)} differ from the contract {sorted(expected)}")

    volumes = set((config.get("Volumes") or {}).keys())
    if volumes != {runtime.data_dir}:
        findings.append(f"Declared volumes {sorted(volumes)} differ from [{runtime.data_dir!r}]")

    cmd = config.get("Cmd") or []
    if cmd != [resolved.artifact.install_path]:
        findings.append(f"Default command {cmd!r} is not [{resolved.artifact.install_path!r}]")
    if config.get("Entrypoint"):
        findings.append(f"Unexpected entrypoint {config['Entrypoint']!r}")

    return findings


def check_filesystem(archive: str | Path, resolved: ResolvedPipeline) -> tuple[list[str], list[str]]:
    """Check an exported filesystem archive.

    Returns:
        (findings, sorted list of file paths in the image)
    """
    findings: list[str] = []
    files: list[str] = []
    data_rel = _rel(resolved.runtime.data_dir or "")
    workdir_rel = _rel(resolved.builder.workdir)
    source_patterns = tuple(
        pat
        for marker in _SOURCE_MARKERS
        for pat in (f"{workdir_rel}/{marker}", f"{workdir_rel}/{marker}/*")
    )
    data_entry: tarfile.TarInfo | None = None
    data_contents: list[str] = []
    has_executable = False
    install_rel = _rel(resolved.artifact.install_path)

    with tarfile.open(archive, mode="r:*") as tar:
        for member in tar:
            name = _rel(member.name)
            if not name:
                continue
            files.append(name)
            if name == install_rel:
                has_executable = True
            if name == data_rel:
                data_entry = member
            elif name.startswith(data_rel + "/"):
                data_contents.append(name)
            for pattern in (*FORBIDDEN_PATTERNS, *source_patterns):
                if fnmatch.fnmatch(name, pattern):
                    findings.append(f"Build-time leftover in image: /{name}")
                    break

    if not has_executable:
        findings.append(f"Executable missing from image: {resolved.artifact.install_path}")

    identity = resolved.runtime.identity
    if data_entry is None:
        findings.append(f"Data directory {resolved.runtime.data_dir} does not exist")
    else:
        if not data_entry.isdir():
            findings.append(f"Data mount {resolved.runtime.data_dir} is not a directory")
        if data_entry.uid != identity.uid:
            findings.append(
                f"Data directory {resolved.runtime.data_dir} is owned by uid {data_entry.uid}, "
                f"expected {identity.uid}"
            )
        if data_contents:
            findings.append(f"Data directory {resolved.runtime.data_dir} is not empty: {data_contents[:5]}")

    files.sort()
    return findings, files


def check_version(docker: Docker, image: str, resolved: ResolvedPipeline) -> tuple[list[str], str | None]:
    result = docker.run(image, resolved.artifact.install_path, resolved.runtime.version_flag)
    version = (result.stdout or "").strip()
    if result.returncode != 0:
        return [f"Executable exited with {result.returncode} when asked for its version"], None
    if not version:
        return ["Executable printed no version string"], None
    return [], version.splitlines()[0]


def audit_image(image: str, resolved: ResolvedPipeline, docker: Docker | None = None) -> AuditReport:
    """Run every check against a built image."""
    docker = docker or Docker()
    report = AuditReport(image=image)

    config = docker.inspect(image).get("Config") or {}
    report.findings.extend(check_config(config, resolved))

    with tempfile.TemporaryDirectory(prefix="nodeimage-audit-") as tmp:
        archive = docker.export_filesystem(image, Path(tmp) / "rootfs.tar")
        fs_findings, report.files = check_filesystem(archive, resolved)
        report.findings.extend(fs_findings)

    version_findings, report.version = check_version(docker, image, resolved)
    report.findings.extend(version_findings)

    logger.info(
        "Audited %s: %d file(s), %d finding(s), version %r",
        image,
        len(report.files),
        len(report.findings),
        report.version,
    )
    return report
