#!/usr/bin/env python3
"""Example: build, audit and compare.

Shows how to use the SDK programmatically for CI or custom scripts.
Builds the same source twice and checks both images carry the same file set.
"""

import logging

from nodeimage import Pipeline, run_build

logging.basicConfig(level=logging.INFO)

pipeline = Pipeline("acala")
pipeline.maintainer = "hello@acala.network"
pipeline.user("acala", uid=1000)

first = run_build(pipeline, "../acala", profile="release", tag="acala:release-a")
second = run_build(pipeline, "../acala", profile="release", tag="acala:release-b")

print(f"Version: {first.report.version}")
print(f"File set A: {first.report.fingerprint}")
print(f"File set B: {second.report.fingerprint}")
print(f"Equivalent: {first.report.equivalent(second.report)}")
