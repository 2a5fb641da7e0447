"""JobRunner - main flow of a tfrunner job.

This module provides the entry point for one job run:
1. Builds the output publisher (fails before anything is touched)
2. Installs the mounted SSH key, if any
3. Runs the Terraform lifecycle
4. Publishes the outputs when there are any

Usage:
    from tfrunner.config import load_config
    from tfrunner.job_runner import run_job

    result = run_job(load_config())
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from tfrunner.config import RunConfiguration
from tfrunner.errors import PublishError, TfRunnerError
from tfrunner.installer import BinaryCacheManager
from tfrunner.lifecycle import AdapterFactory, ExecutionLifecycle
from tfrunner.publisher import KubernetesSecretPublisher, OutputPublisher, create_core_v1_api
from tfrunner.ssh import install_ssh_key
from tfrunner.utils import format_duration

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    """Result of a complete job run."""

    success: bool
    started_at: datetime
    ended_at: datetime
    duration_seconds: float
    states: List[str] = field(default_factory=list)
    binary_downloaded: bool = False
    plan_has_diff: Optional[bool] = None
    outputs: List[str] = field(default_factory=list)
    outputs_published: bool = False
    infrastructure_mutated: bool = False
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat(),
            "duration_seconds": self.duration_seconds,
            "states": self.states,
            "binary_downloaded": self.binary_downloaded,
            "plan_has_diff": self.plan_has_diff,
            "outputs": self.outputs,
            "outputs_published": self.outputs_published,
            "infrastructure_mutated": self.infrastructure_mutated,
            "error_message": self.error_message,
        }


def build_publisher(config: RunConfiguration) -> KubernetesSecretPublisher:
    """Create the Kubernetes secret publisher for the configured output secret."""
    api = create_core_v1_api(config.kubeconfig_path)
    return KubernetesSecretPublisher(api, config.namespace, config.output_secret_name)


def run_job(
    config: RunConfiguration,
    publisher: Optional[OutputPublisher] = None,
    cache_manager: Optional[BinaryCacheManager] = None,
    adapter_factory: Optional[AdapterFactory] = None,
    home: Optional[Path] = None,
) -> RunResult:
    """
    Run one Terraform job end to end.

    Args:
        config: Validated run configuration
        publisher: Output publisher (defaults to the configured Kubernetes secret)
        cache_manager: Binary cache manager (defaults to one built from config)
        adapter_factory: Terraform adapter factory (for tests)
        home: Home directory receiving the SSH key

    Returns:
        RunResult for a successful run

    Raises:
        TfRunnerError: The first failure. A PublishError means apply/destroy
            already completed.
    """
    started_at = datetime.now(timezone.utc)
    start_time = time.monotonic()

    logger.info(
        f"Starting terraform run: {config!r}",
        extra={"event": "run_started", "metadata": config.to_dict()},
    )

    lifecycle: Optional[ExecutionLifecycle] = None
    outputs: Dict[str, bytes] = {}
    published = False

    try:
        if publisher is None:
            publisher = build_publisher(config)

        extra_env = install_ssh_key(config.ssh_key_path, home=home)

        lifecycle = ExecutionLifecycle(
            config,
            cache_manager=cache_manager,
            adapter_factory=adapter_factory,
            extra_env=extra_env,
        )
        outputs = lifecycle.run()

        if outputs:
            try:
                publisher.publish(outputs)
            except PublishError:
                raise
            except Exception as e:
                raise PublishError(f"failed to publish outputs: {e}") from e
            published = True
            logger.info(
                f"Published {len(outputs)} outputs to {config.namespace}/{config.output_secret_name}",
                extra={
                    "event": "outputs_published",
                    "metadata": {"secret_name": config.output_secret_name, "outputs": sorted(outputs)},
                },
            )
        else:
            logger.info("no outputs were found in module", extra={"event": "no_outputs"})

    except Exception as e:
        result = _result(lifecycle, started_at, start_time, outputs, published, error=e)
        logger.error(
            f"Run failed: {e}",
            extra={"event": "run_failed", "metadata": result.to_dict()},
            exc_info=not isinstance(e, TfRunnerError),
        )
        raise

    result = _result(lifecycle, started_at, start_time, outputs, published)
    logger.info(
        f"run finished successfully in {format_duration(result.duration_seconds)}",
        extra={"event": "run_completed", "metadata": result.to_dict()},
    )
    return result


def _result(
    lifecycle: Optional[ExecutionLifecycle],
    started_at: datetime,
    start_time: float,
    outputs: Dict[str, bytes],
    published: bool,
    error: Optional[BaseException] = None,
) -> RunResult:
    mutated = bool(lifecycle and lifecycle.infrastructure_mutated)
    if isinstance(error, TfRunnerError) and error.infrastructure_mutated:
        mutated = True

    return RunResult(
        success=error is None,
        started_at=started_at,
        ended_at=datetime.now(timezone.utc),
        duration_seconds=time.monotonic() - start_time,
        states=[s.value for s in lifecycle.history] if lifecycle else [],
        binary_downloaded=bool(lifecycle and lifecycle.binary and lifecycle.binary.installed),
        plan_has_diff=(
            lifecycle.plan_result.has_diff if lifecycle and lifecycle.plan_result else None
        ),
        outputs=sorted(outputs),
        outputs_published=published,
        infrastructure_mutated=mutated,
        error_message=str(error) if error is not None else None,
    )
