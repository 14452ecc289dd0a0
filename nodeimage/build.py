"""Build driver: run the pipeline stage by stage.

Targets are built strictly in order (toolchain, builder, assemble, runtime),
each reusing the layers of the one before. The first failing target aborts
the build with the failure class for that target. When the image is
audited, the runtime target is built under a throwaway candidate tag and
only promoted to the requested tag once the audit is clean, so neither a
failed build nor a failed audit leaves a tagged image behind.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path

from nodeimage.audit import AuditReport, audit_image
from nodeimage.compile import TARGETS, DockerfileCompiler
from nodeimage.docker import Docker, tail
from nodeimage.errors import TARGET_FAILURES
from nodeimage.image import Pipeline, ResolvedPipeline
from nodeimage.profile import read_cargo_manifest
from nodeimage.workspace import Workspace, stage_context

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    tag: str
    resolved: ResolvedPipeline
    report: AuditReport | None = None


def _check_binary_declared(source: str | Path, binary: str) -> None:
    manifest = read_cargo_manifest(source)
    names = {b.get("name") for b in manifest.get("bin", [])}
    package = manifest.get("package", {}).get("name")
    if package:
        names.add(package)
    if binary not in names and "workspace" not in manifest:
        logger.warning(
            "Cargo.toml in %s does not declare a binary named %r; the build may not produce it",
            source,
            binary,
        )


def default_tag(resolved: ResolvedPipeline) -> str:
    return f"{resolved.name}:{resolved.profile.name}"


def candidate_tag(resolved: ResolvedPipeline) -> str:
    return f"{resolved.name}:candidate-{uuid.uuid4().hex[:12]}"


def run_build(
    pipeline: Pipeline,
    source: str | Path,
    profile: str | None = None,
    tag: str | None = None,
    audit: bool = True,
    docker: Docker | None = None,
    keep_workspace: bool = False,
) -> BuildResult:
    """Build the runtime image for ``source`` under ``profile``.

    Raises:
        PipelineError: One of its subclasses, naming where the build failed.
    """
    docker = docker or Docker()

    _check_binary_declared(source, pipeline.binary)
    resolved = pipeline.resolve(profile=profile, source=source)
    tag = tag or default_tag(resolved)
    built = candidate_tag(resolved) if audit else tag

    logger.info("Building %s with the %s profile", tag, resolved.profile.name)

    with Workspace(pipeline.name, keep=keep_workspace) as ws:
        stage_context(source, ws.context)
        DockerfileCompiler(resolved, ws.context).compile()

        for target in TARGETS:
            final = target == TARGETS[-1]
            logger.info("Building target %r", target)
            result = docker.build(ws.context, target, tag=built if final else None)
            if result.returncode != 0:
                failure = TARGET_FAILURES[target]
                raise failure(
                    f"Build target {target!r} failed with exit code {result.returncode}",
                    output=tail(result.stdout or ""),
                )

    build = BuildResult(tag=tag, resolved=resolved)

    if audit:
        try:
            build.report = audit_image(built, resolved, docker)
            build.report.image = tag
            build.report.raise_for_findings()
            docker.tag(built, tag)
        finally:
            docker.untag(built)

    logger.info("Image %s built", tag)
    return build
