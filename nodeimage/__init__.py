from nodeimage.image import Pipeline
from nodeimage.build import run_build
from nodeimage.toolchain import Toolchain
from nodeimage.profile import BuildProfile, resolve_profile
from nodeimage.helpers import env, env_flag
from nodeimage.workspace import hash_dir
from nodeimage.audit import audit_image

__all__ = [
    "Pipeline",
    "run_build",
    "Toolchain",
    "BuildProfile",
    "resolve_profile",
    "env",
    "env_flag",
    "hash_dir",
    "audit_image",
]
