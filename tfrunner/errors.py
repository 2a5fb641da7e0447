"""
Error classes for tfrunner execution.

Every error is fatal to the run. The kinds differ in where the run stopped:
- ConfigError: before any step, nothing was touched
- LockTimeoutError / InstallError: while preparing the Terraform binary
- LifecycleStepError: while driving Terraform (init, workspace, plan,
  apply, destroy, output)
- PublishError: after apply/destroy, so infrastructure has already changed

The CLI catches at the process boundary and maps each kind to an exit code.
"""

from typing import Optional


class TfRunnerError(Exception):
    """Base exception for tfrunner."""

    infrastructure_mutated = False


class ConfigError(TfRunnerError):
    """A required run parameter is missing or invalid."""
    pass


class LockTimeoutError(TfRunnerError):
    """
    The cache directory lock was not acquired within the timeout.

    The failed caller never holds the lock after this is raised.
    """

    def __init__(self, lock_path: str, timeout_seconds: float):
        self.lock_path = lock_path
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"timeout waiting for cache lock {lock_path} after {timeout_seconds}s"
        )


class InstallError(TfRunnerError):
    """
    Downloading, verifying or placing the pinned binary failed.

    No partial artifact is left at the deterministic cache path.
    """
    pass


class LifecycleStepError(TfRunnerError):
    """
    A lifecycle step failed or was called out of order.

    Attributes:
        step: Lifecycle step name (init, workspace, plan, apply, destroy, output)
        returncode: Terraform exit code when the failure came from the tool
        stderr: Tail of Terraform's stderr when available
    """

    def __init__(
        self,
        step: str,
        message: str,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        self.step = step
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"{step}: {message}")


class VarFileDiscoveryError(LifecycleStepError):
    """The var files directory could not be listed."""

    def __init__(self, message: str):
        super().__init__("var-files", message)


class PublishError(TfRunnerError):
    """
    Overwriting the output secret failed.

    Raised after apply/destroy completed, so the infrastructure has already
    been mutated. Remediation is re-publishing against the applied state,
    not re-running the whole job blindly.
    """

    infrastructure_mutated = True
