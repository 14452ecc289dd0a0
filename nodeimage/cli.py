"""CLI entry point for nodeimage."""

from __future__ import annotations

import argparse
import importlib.machinery
import importlib.util
import json
import logging
import os
import sys

from nodeimage.audit import audit_image
from nodeimage.build import default_tag, run_build
from nodeimage.compile import DockerfileCompiler
from nodeimage.errors import PipelineError
from nodeimage.image import Pipeline

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USER_ERROR = 1
EXIT_PIPELINE_FAILURE = 2


def load_nodefile(path: str) -> Pipeline:
    """Load and evaluate a Nodefile, returning the Pipeline object."""
    path = os.path.abspath(path)
    if not os.path.exists(path):
        raise ValueError(f"{path} not found")

    # Nodefiles have no .py suffix, so the loader must be given explicitly.
    loader = importlib.machinery.SourceFileLoader("nodefile", path)
    spec = importlib.util.spec_from_file_location("nodefile", path, loader=loader)
    if spec is None or spec.loader is None:
        raise ValueError(f"could not load {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules["nodefile"] = module
    spec.loader.exec_module(module)

    pipelines = [v for v in vars(module).values() if isinstance(v, Pipeline)]
    if not pipelines:
        raise ValueError(f"no Pipeline object found in {path}")

    if len(pipelines) > 1:
        logger.warning("Multiple Pipeline objects in %s, using the first one", path)

    return pipelines[0]


def cmd_build(args: argparse.Namespace) -> int:
    """Build the runtime image from a Nodefile and a source tree."""
    pipeline = load_nodefile(args.nodefile)
    result = run_build(
        pipeline,
        args.source,
        profile=args.profile,
        tag=args.tag,
        audit=not args.no_audit,
        keep_workspace=args.keep_workspace,
    )
    print(f"Image built successfully: {result.tag}")
    if result.report is not None:
        print(f"Version: {result.report.version}")
        print(f"File set: {len(result.report.files)} files ({result.report.fingerprint})")
    return EXIT_OK


def cmd_emit(args: argparse.Namespace) -> int:
    """Write the generated Dockerfile, .dockerignore and manifest without building."""
    pipeline = load_nodefile(args.nodefile)
    resolved = pipeline.resolve(profile=args.profile, source=args.source)
    dockerfile = DockerfileCompiler(resolved, args.out).compile()
    print(f"Dockerfile written to: {dockerfile}")
    return EXIT_OK


def cmd_inspect(args: argparse.Namespace) -> int:
    """Show the resolved configuration without building."""
    pipeline = load_nodefile(args.nodefile)
    resolved = pipeline.resolve(profile=args.profile, source=args.source)

    if args.json:
        print(json.dumps(resolved.to_manifest(), indent=2, sort_keys=True))
        return EXIT_OK

    runtime = resolved.runtime
    identity = runtime.identity
    print(f"Pipeline: {resolved.name}")
    print(f"Profile: {resolved.profile.name} (target/{resolved.profile.target_dir})")
    print(f"Builder base: {resolved.builder.base}")
    print(f"Runtime base: {runtime.base}")
    print(f"Toolchains: {resolved.builder.toolchain.toolchains()} (default {resolved.builder.toolchain.default})")
    print(f"Packages: {resolved.builder.all_packages()}")
    print(f"Artifact: {resolved.artifact.build_path} -> {resolved.artifact.install_path}")
    print(f"User: {identity.name} ({identity.uid}:{identity.group_id}, home {identity.home})")
    print(f"Ports: p2p={runtime.network.p2p} rpc={runtime.network.rpc} ws={runtime.network.ws}")
    print(f"Volume: {runtime.data_dir}")
    print(f"Pruned: {runtime.prune}")
    if resolved.source_digest:
        print(f"Source: {resolved.source_digest}")
    return EXIT_OK


def cmd_audit(args: argparse.Namespace) -> int:
    """Audit an already built image against its Nodefile."""
    pipeline = load_nodefile(args.nodefile)
    resolved = pipeline.resolve(profile=args.profile, source=args.source)
    image = args.image or default_tag(resolved)
    report = audit_image(image, resolved)
    for finding in report.findings:
        print(f"  - {finding}")
    report.raise_for_findings()
    print(f"Image {image} passed the audit (version {report.version})")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nodeimage",
        description="nodeimage: build minimal, hardened container images for Rust nodes",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    # nodeimage build
    build_p = sub.add_parser("build", help="Build the runtime image")
    build_p.add_argument("nodefile", help="Path to the Nodefile")
    build_p.add_argument("--source", required=True, help="Node source tree")
    build_p.add_argument("--profile", help="Build profile (default: release)")
    build_p.add_argument("--tag", help="Image tag (default: <name>:<profile>)")
    build_p.add_argument("--no-audit", action="store_true", help="Skip the post-build audit")
    build_p.add_argument("--keep-workspace", action="store_true", help="Keep the staged build context")
    build_p.set_defaults(func=cmd_build)

    # nodeimage emit
    emit_p = sub.add_parser("emit", help="Write the generated Dockerfile")
    emit_p.add_argument("nodefile", help="Path to the Nodefile")
    emit_p.add_argument("--out", required=True, help="Output directory")
    emit_p.add_argument("--source", help="Node source tree")
    emit_p.add_argument("--profile", help="Build profile (default: release)")
    emit_p.set_defaults(func=cmd_emit)

    # nodeimage inspect
    inspect_p = sub.add_parser("inspect", help="Show resolved configuration")
    inspect_p.add_argument("nodefile", help="Path to the Nodefile")
    inspect_p.add_argument("--source", help="Node source tree")
    inspect_p.add_argument("--profile", help="Build profile (default: release)")
    inspect_p.add_argument("--json", action="store_true", help="Print the manifest as JSON")
    inspect_p.set_defaults(func=cmd_inspect)

    # nodeimage audit
    audit_p = sub.add_parser("audit", help="Audit a built image")
    audit_p.add_argument("nodefile", help="Path to the Nodefile")
    audit_p.add_argument("image", nargs="?", help="Image to audit (default: <name>:<profile>)")
    audit_p.add_argument("--source", help="Node source tree")
    audit_p.add_argument("--profile", help="Build profile (default: release)")
    audit_p.set_defaults(func=cmd_audit)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    try:
        return args.func(args)
    except PipelineError as e:
        print(f"Error ({e.kind}): {e}", file=sys.stderr)
        if e.output:
            print(e.output, file=sys.stderr)
        return EXIT_PIPELINE_FAILURE
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USER_ERROR


if __name__ == "__main__":
    sys.exit(main())
