"""Thin wrapper around the docker CLI."""

from __future__ import annotations

import json
import logging
import os
import subprocess
from pathlib import Path

from nodeimage.errors import PrerequisiteFailure

logger = logging.getLogger(__name__)

# Lines of build output kept on failures.
_TAIL_LINES = 40


def tail(output: str, lines: int = _TAIL_LINES) -> str:
    return "\n".join(output.rstrip().splitlines()[-lines:])


class Docker:
    """Runs docker commands. The binary comes from NODEIMAGE_DOCKER, default "docker"."""

    def __init__(self, binary: str | None = None):
        self.binary = binary or os.environ.get("NODEIMAGE_DOCKER", "docker")

    def _run(self, args: list[str], check: bool = False) -> subprocess.CompletedProcess:
        cmd = [self.binary, *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                check=check,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as e:
            raise PrerequisiteFailure(
                f"Container tool {self.binary!r} not found. Install docker or set NODEIMAGE_DOCKER."
            ) from e

    def build(
        self,
        context: str | Path,
        target: str,
        dockerfile: str | Path | None = None,
        tag: str | None = None,
        build_args: dict[str, str] | None = None,
    ) -> subprocess.CompletedProcess:
        """Build one target. Returns the completed process; the caller decides what failure means."""
        args = ["build", "--target", target]
        if dockerfile is not None:
            args.extend(["--file", str(dockerfile)])
        if tag:
            args.extend(["--tag", tag])
        for key, value in (build_args or {}).items():
            args.extend(["--build-arg", f"{key}={value}"])
        args.append(str(context))
        result = self._run(args)
        if result.stdout:
            logger.debug("docker build --target %s:\n%s", target, tail(result.stdout))
        return result

    def inspect(self, image: str) -> dict:
        """Return the image configuration from `docker image inspect`."""
        result = self._run(["image", "inspect", image])
        if result.returncode != 0:
            raise PrerequisiteFailure(f"Cannot inspect image {image!r}: {result.stdout.strip()}")
        data = json.loads(result.stdout)
        return data[0]

    def export_filesystem(self, image: str, dest: str | Path) -> Path:
        """Write the image's flattened filesystem as a tar archive to dest."""
        created = self._run(["create", image], check=False)
        if created.returncode != 0:
            raise PrerequisiteFailure(f"Cannot create a container from {image!r}: {created.stdout.strip()}")
        container = created.stdout.strip().splitlines()[-1]
        try:
            exported = self._run(["export", "--output", str(dest), container])
            if exported.returncode != 0:
                raise PrerequisiteFailure(f"Cannot export {image!r}: {exported.stdout.strip()}")
        finally:
            # -v drops the anonymous volume created for the image's VOLUME.
            self._run(["rm", "-v", container])
        return Path(dest)

    def tag(self, image: str, tag: str) -> None:
        result = self._run(["tag", image, tag])
        if result.returncode != 0:
            raise PrerequisiteFailure(f"Cannot tag {image!r} as {tag!r}: {result.stdout.strip()}")

    def untag(self, tag: str) -> None:
        """Remove a tag. The image itself goes once no tag refers to it."""
        result = self._run(["image", "rm", tag])
        if result.returncode != 0:
            logger.warning("Could not remove tag %s: %s", tag, result.stdout.strip())

    def run(self, image: str, entrypoint: str, *args: str) -> subprocess.CompletedProcess:
        return self._run(["run", "--rm", "--entrypoint", entrypoint, image, *args])
