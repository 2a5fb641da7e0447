"""Base class for tool adapters."""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence

from tfrunner.errors import LifecycleStepError

logger = logging.getLogger(__name__)


STDERR_TAIL_CHARS = 2000


class ToolAdapter(ABC):
    """
    Base class for tool adapters.

    A tool adapter wraps one external CLI binary: it runs commands in a
    fixed working directory with a fixed environment and turns failures
    into LifecycleStepError. Subclasses expose one method per tool command.
    """

    def __init__(
        self,
        binary_path: Path,
        working_dir: Path,
        env: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize the tool adapter.

        Args:
            binary_path: Path to the tool executable
            working_dir: Directory the tool runs in
            env: Extra environment variables on top of the current environment
        """
        self.binary_path = Path(binary_path)
        self.working_dir = Path(working_dir)
        self.env = dict(env or {})

    @abstractmethod
    def validate(self) -> Dict[str, Any]:
        """
        Validate the tool's setup.

        Returns:
            Dictionary with keys:
                - 'valid': bool indicating if validation passed
                - 'errors': list of error messages (empty if valid)
                - 'warnings': list of warning messages (optional)
        """
        pass

    def execute(self, *args: str) -> subprocess.CompletedProcess:
        """
        Run the tool with the given arguments.

        Output is captured as text. The exit code is not checked here.

        Raises:
            OSError: If the binary cannot be started
        """
        cmd = [str(self.binary_path)] + list(args)

        return subprocess.run(
            cmd,
            cwd=self.working_dir,
            env={**os.environ, **self.env},
            capture_output=True,
            text=True,
        )

    def run_step(
        self,
        step: str,
        args: Sequence[str],
        ok_codes: Iterable[int] = (0,),
    ) -> subprocess.CompletedProcess:
        """
        Run one tool command as part of a lifecycle step.

        Args:
            step: Lifecycle step name, used in logs and errors
            args: Command arguments
            ok_codes: Exit codes that count as success

        Returns:
            subprocess.CompletedProcess result

        Raises:
            LifecycleStepError: If the tool cannot be started or exits with another code
        """
        logger.debug(
            f"Running {self.binary_path.name} {' '.join(args)}",
            extra={"step": step, "event": "tool_command", "metadata": {"args": list(args)}},
        )

        try:
            result = self.execute(*args)
        except OSError as e:
            raise LifecycleStepError(step, f"failed to run {self.binary_path}: {e}") from e

        if result.stdout:
            logger.debug(result.stdout, extra={"step": step, "event": "tool_stdout"})

        if result.returncode not in tuple(ok_codes):
            stderr_tail = (result.stderr or "")[-STDERR_TAIL_CHARS:]
            raise LifecycleStepError(
                step,
                f"{self.binary_path.name} {args[0]} failed with exit code "
                f"{result.returncode}: {stderr_tail.strip()}",
                returncode=result.returncode,
                stderr=stderr_tail,
            )

        if result.stderr:
            logger.debug(result.stderr, extra={"step": step, "event": "tool_stderr"})

        return result
