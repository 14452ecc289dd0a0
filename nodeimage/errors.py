"""Pipeline failures.

Every failure is fatal to the current build attempt. Each class names the
point of the pipeline where it can occur:

    PrerequisiteFailure      system packages or toolchain could not be installed
    CompilationFailure       the source did not build under the requested profile
    ArtifactTransferFailure  the executable was not there at the stage boundary
    VerificationFailure      the installed executable failed the verification gate
"""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for build pipeline failures.

    Attributes:
        kind: Short failure category, printed by the CLI.
        output: Tail of the build tool output, when there is one.
    """

    kind = "pipeline"

    def __init__(self, message: str, output: str | None = None) -> None:
        super().__init__(message)
        self.output = output


class PrerequisiteFailure(PipelineError):
    kind = "prerequisite"


class CompilationFailure(PipelineError):
    kind = "compilation"


class ArtifactTransferFailure(PipelineError):
    kind = "artifact-transfer"


class VerificationFailure(PipelineError):
    kind = "verification"


# Build target name -> failure raised when that target does not build.
TARGET_FAILURES: dict[str, type[PipelineError]] = {
    "toolchain": PrerequisiteFailure,
    "builder": CompilationFailure,
    "assemble": ArtifactTransferFailure,
    "runtime": VerificationFailure,
}
