"""Tests for the post-build image audit."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import GOOD_CONFIG, GOOD_ROOTFS, FakeDocker, make_rootfs
from nodeimage import Pipeline
from nodeimage.audit import AuditReport, audit_image, check_config, check_filesystem
from nodeimage.errors import VerificationFailure
from nodeimage.image import ResolvedPipeline


@pytest.fixture
def resolved(pipeline: Pipeline) -> ResolvedPipeline:
    return pipeline.resolve()


class TestCheckConfig:
    def test_good_config(self, resolved: ResolvedPipeline) -> None:
        assert check_config(GOOD_CONFIG, resolved) == []

    @pytest.mark.parametrize("user", ["", "root", "0", "0:0", "root:acala"])
    def test_root_identity(self, resolved: ResolvedPipeline, user: str) -> None:
        findings = check_config({**GOOD_CONFIG, "User": user}, resolved)
        assert any("administrative identity" in f for f in findings)

    def test_numeric_identity_accepted(self, resolved: ResolvedPipeline) -> None:
        assert check_config({**GOOD_CONFIG, "User": "1000"}, resolved) == []

    def test_other_user(self, resolved: ResolvedPipeline) -> None:
        findings = check_config({**GOOD_CONFIG, "User": "nobody"}, resolved)
        assert findings == ["Image user 'nobody' is not the execution identity 'acala'"]

    def test_extra_port(self, resolved: ResolvedPipeline) -> None:
        ports = {**GOOD_CONFIG["ExposedPorts"], "22/tcp": {}}
        findings = check_config({**GOOD_CONFIG, "ExposedPorts": ports}, resolved)
        assert len(findings) == 1
        assert "Exposed ports" in findings[0]

    def test_missing_volume(self, resolved: ResolvedPipeline) -> None:
        findings = check_config({**GOOD_CONFIG, "Volumes": None}, resolved)
        assert any("Declared volumes" in f for f in findings)

    def test_command_with_arguments(self, resolved: ResolvedPipeline) -> None:
        findings = check_config({**GOOD_CONFIG, "Cmd": ["/usr/local/bin/acala", "--dev"]}, resolved)
        assert any("Default command" in f for f in findings)

    def test_entrypoint(self, resolved: ResolvedPipeline) -> None:
        findings = check_config({**GOOD_CONFIG, "Entrypoint": ["/bin/sh", "-c"]}, resolved)
        assert any("entrypoint" in f for f in findings)


class TestCheckFilesystem:
    def test_minimal_image(self, resolved: ResolvedPipeline, tmp_path: Path) -> None:
        archive = make_rootfs(tmp_path / "fs.tar", GOOD_ROOTFS)
        findings, files = check_filesystem(archive, resolved)
        assert findings == []
        assert files == sorted(name for name, _, _ in GOOD_ROOTFS)

    @pytest.mark.parametrize(
        "leftover",
        [
            "usr/local/cargo/bin/cargo",
            "usr/local/rustup/toolchains",
            "root/.cargo/registry",
            "usr/bin/clang-14",
            "var/cache/apt/archives/libssl-dev_1.1.deb",
            "acala/Cargo.toml",
            "acala/target/release/acala",
            "acala/src/main.rs",
        ],
    )
    def test_build_leftovers(self, resolved: ResolvedPipeline, tmp_path: Path, leftover: str) -> None:
        archive = make_rootfs(tmp_path / "fs.tar", [*GOOD_ROOTFS, (leftover, "file", 0)])
        findings, _ = check_filesystem(archive, resolved)
        assert findings == [f"Build-time leftover in image: /{leftover}"]

    def test_missing_executable(self, resolved: ResolvedPipeline, tmp_path: Path) -> None:
        entries = [e for e in GOOD_ROOTFS if e[0] != "usr/local/bin/acala"]
        findings, _ = check_filesystem(make_rootfs(tmp_path / "fs.tar", entries), resolved)
        assert findings == ["Executable missing from image: /usr/local/bin/acala"]

    def test_data_dir_owned_by_root(self, resolved: ResolvedPipeline, tmp_path: Path) -> None:
        entries = [e for e in GOOD_ROOTFS if e[0] != "acala/data"] + [("acala/data", "dir", 0)]
        findings, _ = check_filesystem(make_rootfs(tmp_path / "fs.tar", entries), resolved)
        assert findings == ["Data directory /acala/data is owned by uid 0, expected 1000"]

    def test_data_dir_not_empty(self, resolved: ResolvedPipeline, tmp_path: Path) -> None:
        entries = [*GOOD_ROOTFS, ("acala/data/chains", "dir", 1000)]
        findings, _ = check_filesystem(make_rootfs(tmp_path / "fs.tar", entries), resolved)
        assert len(findings) == 1
        assert "is not empty" in findings[0]

    def test_data_dir_missing(self, resolved: ResolvedPipeline, tmp_path: Path) -> None:
        entries = [e for e in GOOD_ROOTFS if e[0] != "acala/data"]
        findings, _ = check_filesystem(make_rootfs(tmp_path / "fs.tar", entries), resolved)
        assert findings == ["Data directory /acala/data does not exist"]

    def test_docker_export_style_names(self, resolved: ResolvedPipeline, tmp_path: Path) -> None:
        entries = [(f"./{name}", kind, uid) for name, kind, uid in GOOD_ROOTFS]
        findings, files = check_filesystem(make_rootfs(tmp_path / "fs.tar", entries), resolved)
        assert findings == []
        assert "usr/local/bin/acala" in files


class TestAuditImage:
    def test_passing_image(self, resolved: ResolvedPipeline) -> None:
        docker = FakeDocker()
        report = audit_image("acala:release", resolved, docker)
        assert report.ok
        assert report.version == "acala 0.1.0-abc1234-x86_64-linux-gnu"
        assert docker.runs == [("acala:release", "/usr/local/bin/acala", "--version")]
        report.raise_for_findings()

    def test_version_failure(self, resolved: ResolvedPipeline) -> None:
        report = audit_image("acala:release", resolved, FakeDocker(version_rc=127))
        assert report.version is None
        with pytest.raises(VerificationFailure, match="exited with 127"):
            report.raise_for_findings()

    def test_empty_version(self, resolved: ResolvedPipeline) -> None:
        report = audit_image("acala:release", resolved, FakeDocker(version=""))
        assert report.findings == ["Executable printed no version string"]

    def test_equivalent_file_sets(self, resolved: ResolvedPipeline) -> None:
        first = audit_image("acala:a", resolved, FakeDocker())
        second = audit_image("acala:b", resolved, FakeDocker())
        assert first.equivalent(second)
        assert first.fingerprint == second.fingerprint

        bigger = audit_image("acala:c", resolved, FakeDocker(rootfs=[*GOOD_ROOTFS, ("etc", "dir", 0)]))
        assert not first.equivalent(bigger)

    def test_report_without_findings(self) -> None:
        AuditReport(image="x").raise_for_findings()
