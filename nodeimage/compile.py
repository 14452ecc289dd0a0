"""Compile a resolved Pipeline into a Dockerfile and its build context files.

Output directory layout:

    Dockerfile        four named targets: toolchain, builder, assemble, runtime
    .dockerignore     keeps host build state out of the context
    nodeimage.json    manifest of the resolved pipeline
"""

from __future__ import annotations

import json
from pathlib import Path

import jinja2

from nodeimage.image import ResolvedPipeline
from nodeimage.workspace import DEFAULT_IGNORE, ROOT_IGNORE

# Build targets in execution order.
TARGETS = ("toolchain", "builder", "assemble", "runtime")

MANIFEST_NAME = "nodeimage.json"

# Joins commands into one RUN so a failing command fails the whole layer.
_CHAIN_SEP = " && \\\n\t"


def _chain(commands: list[str]) -> str:
    return _CHAIN_SEP.join(commands)


def _quote(value: object) -> str:
    return json.dumps(str(value))


def _environment() -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.PackageLoader("nodeimage", "templates"),
        undefined=jinja2.StrictUndefined,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.filters["chain"] = _chain
    env.filters["quote"] = _quote
    return env


class DockerfileCompiler:
    """Translates a ResolvedPipeline into a Dockerfile.

    Everything is visible and inspectable: use `nodeimage emit` to see
    exactly what gets generated.
    """

    def __init__(self, resolved: ResolvedPipeline, output_dir: str | Path):
        self.resolved = resolved
        self.output = Path(output_dir)

    def render(self) -> str:
        r = self.resolved
        template = _environment().get_template("Dockerfile.j2")
        return template.render(
            name=r.name,
            maintainer=r.maintainer,
            profile=r.profile,
            builder=r.builder,
            runtime=r.runtime,
            artifact=r.artifact,
            labels=r.labels,
        )

    def compile(self) -> Path:
        """Write all files. Returns the Dockerfile path."""
        self.output.mkdir(parents=True, exist_ok=True)

        dockerfile = self._write_dockerfile()
        self._write_dockerignore()
        self._write_manifest()
        return dockerfile

    def _write_dockerfile(self) -> Path:
        path = self.output / "Dockerfile"
        path.write_text(self.render())
        return path

    def _write_dockerignore(self) -> None:
        lines = [f"**/{pattern}" for pattern in DEFAULT_IGNORE]
        lines.extend(f"/{pattern}" for pattern in ROOT_IGNORE)
        lines.extend(["Dockerfile", ".dockerignore", MANIFEST_NAME])
        (self.output / ".dockerignore").write_text("\n".join(lines) + "\n")

    def _write_manifest(self) -> None:
        manifest = self.resolved.to_manifest()
        manifest["targets"] = list(TARGETS)
        (self.output / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2, sort_keys=True) + "\n")
