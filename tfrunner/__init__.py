"""
tfrunner - Single-shot Terraform job runner.

Installs a pinned Terraform binary into a shared cache, drives the
init → workspace → plan → apply/destroy → output lifecycle, and publishes
the module outputs to a Kubernetes Secret.
"""

__version__ = "0.1.0"
__author__ = "Platform Team"


__all__ = ["RunConfiguration", "load_config", "run_job"]

from .config import RunConfiguration, load_config
from .job_runner import run_job
