"""
Execution lifecycle for a single Terraform run.

Drives install → init → workspace → plan → apply/destroy → outputs in
strict order. Each step may run once, only after the previous one
succeeded; the first failure aborts the run and nothing is retried.
"""

import json
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from tfrunner.config import RunConfiguration
from tfrunner.errors import LifecycleStepError
from tfrunner.installer import BinaryCacheManager, CachedBinary, ReleaseInstaller
from tfrunner.tools.terraform import (
    ApplyOptions,
    DestroyOptions,
    InitOptions,
    PlanOptions,
    TerraformAdapter,
)
from tfrunner.utils import format_duration, log_directory_tree
from tfrunner.varfiles import discover_var_files

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INSTALLED = "installed"
    INITIALIZED = "initialized"
    WORKSPACE_READY = "workspace_ready"
    PLANNED = "planned"
    APPLIED = "applied"
    DESTROYED = "destroyed"
    OUTPUTS_COLLECTED = "outputs_collected"


@dataclass(frozen=True)
class PlanResult:
    """Result of terraform plan. Informational only."""

    has_diff: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"has_diff": self.has_diff}


def output_value_bytes(value: Any) -> bytes:
    """
    Convert a terraform output value to its raw byte payload.

    Strings become their UTF-8 bytes; every other JSON value becomes its
    compact JSON encoding.
    """
    if isinstance(value, str):
        return value.encode("utf-8")
    return json.dumps(value, separators=(",", ":"), sort_keys=True).encode("utf-8")


AdapterFactory = Callable[..., TerraformAdapter]


class ExecutionLifecycle:
    """
    Orchestrates one Terraform run.

    State machine:
        uninitialized → installed → initialized → workspace_ready → planned
        → applied | destroyed → outputs_collected
    """

    def __init__(
        self,
        config: RunConfiguration,
        cache_manager: Optional[BinaryCacheManager] = None,
        adapter_factory: Optional[AdapterFactory] = None,
        extra_env: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize lifecycle.

        Args:
            config: Validated run configuration
            cache_manager: Binary cache (defaults to one built from config)
            adapter_factory: Builds the tool handle from
                (binary_path, project_dir, plugin_cache_dir=..., env=...)
            extra_env: Extra environment for terraform (e.g. GIT_SSH_COMMAND)
        """
        self.config = config
        self.cache_manager = cache_manager or BinaryCacheManager(
            config.cache_path,
            installer=ReleaseInstaller(config.releases_url),
            lock_timeout=config.lock_timeout_seconds,
            poll_interval=config.lock_poll_interval,
        )
        self.adapter_factory = adapter_factory or TerraformAdapter
        self.extra_env = dict(extra_env or {})

        self.state = LifecycleState.UNINITIALIZED
        self.history: List[LifecycleState] = [self.state]

        self.binary: Optional[CachedBinary] = None
        self.adapter: Optional[TerraformAdapter] = None
        self.var_files: Tuple[Path, ...] = ()
        self.plan_result: Optional[PlanResult] = None
        self.outputs: Optional[Dict[str, bytes]] = None

    # ------------------------------------------------------------------
    # State handling
    # ------------------------------------------------------------------

    def _require(self, step: str, expected: LifecycleState) -> None:
        if self.state != expected:
            raise LifecycleStepError(
                step,
                f"cannot run in state '{self.state.value}' "
                f"(requires '{expected.value}')",
            )

    def _advance(self, state: LifecycleState) -> None:
        self.state = state
        self.history.append(state)

    @contextmanager
    def _step(self, step: str, **metadata: Any) -> Iterator[None]:
        """Log start, completion or failure of a step."""
        started = time.monotonic()
        logger.info(
            f"Starting step: {step}",
            extra={"step": step, "event": "step_started", "metadata": metadata},
        )
        try:
            yield
        except Exception as e:
            logger.error(
                f"Step {step} failed: {e}",
                extra={
                    "step": step,
                    "event": "step_failed",
                    "metadata": {"error": str(e), "duration_seconds": time.monotonic() - started},
                },
            )
            raise

        duration = time.monotonic() - started
        logger.info(
            f"Step {step} completed in {format_duration(duration)}",
            extra={
                "step": step,
                "event": "step_completed",
                "metadata": {"duration_seconds": duration},
            },
        )

    def _require_adapter(self) -> TerraformAdapter:
        if self.adapter is None:
            raise LifecycleStepError("install", "terraform is not installed")
        return self.adapter

    # ------------------------------------------------------------------
    # Options
    # ------------------------------------------------------------------

    def init_options(self) -> InitOptions:
        return InitOptions(upgrade=True)

    def plan_options(self) -> PlanOptions:
        return PlanOptions(var_files=self.var_files, out=Path(self.config.plan_out))

    def apply_options(self) -> ApplyOptions:
        return ApplyOptions(var_files=self.var_files)

    def destroy_options(self) -> DestroyOptions:
        return DestroyOptions(var_files=self.var_files)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def install(self) -> CachedBinary:
        """
        Ensure the pinned binary is cached and bind the tool handle.

        Also discovers the var files used by plan and apply/destroy.

        Raises:
            LockTimeoutError: If the cache lock is not acquired in time
            InstallError: If installation fails
            LifecycleStepError: If the binary or project directory is unusable
            VarFileDiscoveryError: If the var files directory cannot be listed
        """
        self._require("install", LifecycleState.UNINITIALIZED)

        with self._step("install", version=self.config.terraform_version):
            binary = self.cache_manager.ensure_binary(self.config.terraform_version)

            self.adapter = self.adapter_factory(
                binary.path,
                self.config.project_path,
                plugin_cache_dir=self.config.cache_path,
                env=self.extra_env,
            )

            report = self.adapter.validate()
            for warning in report.get("warnings", []):
                logger.warning(warning, extra={"step": "install", "event": "setup_warning"})
            if not report["valid"]:
                raise LifecycleStepError("install", "; ".join(report["errors"]))

            self.var_files = discover_var_files(self.config.var_files_path)
            logger.info(
                f"Found {len(self.var_files)} var files",
                extra={
                    "step": "install",
                    "event": "var_files_discovered",
                    "metadata": {"var_files": [str(f) for f in self.var_files]},
                },
            )

        self.binary = binary
        self._advance(LifecycleState.INSTALLED)
        return binary

    def init(self) -> None:
        """Run terraform init with provider upgrade."""
        self._require("init", LifecycleState.INSTALLED)
        adapter = self._require_adapter()

        log_directory_tree(logger, self.config.project_path, "init")
        log_directory_tree(logger, self.config.cache_path, "init")

        with self._step("init"):
            adapter.init(self.init_options())

        self._advance(LifecycleState.INITIALIZED)

    def select_workspace(self, name: Optional[str] = None) -> bool:
        """
        Make the desired workspace current.

        No-op when the name is empty or already current. Otherwise switches
        to an existing workspace or creates a new one (which becomes current).

        Args:
            name: Desired workspace (defaults to the configured one)

        Returns:
            True if a select or create call was made
        """
        self._require("workspace", LifecycleState.INITIALIZED)
        adapter = self._require_adapter()

        workspace = self.config.workspace if name is None else name
        changed = False

        if not workspace:
            logger.info("No workspace requested", extra={"step": "workspace", "event": "workspace_skipped"})
            self._advance(LifecycleState.WORKSPACE_READY)
            return changed

        with self._step("workspace", workspace=workspace):
            workspaces, current = adapter.workspace_list()

            if current == workspace:
                logger.info(
                    f"Workspace '{workspace}' is already current",
                    extra={"step": "workspace", "event": "workspace_current"},
                )
            elif workspace in workspaces:
                adapter.workspace_select(workspace)
                changed = True
                logger.info(
                    f"Selected workspace '{workspace}'",
                    extra={"step": "workspace", "event": "workspace_selected"},
                )
            else:
                adapter.workspace_new(workspace)
                changed = True
                logger.info(
                    f"Created workspace '{workspace}'",
                    extra={"step": "workspace", "event": "workspace_created"},
                )

        self._advance(LifecycleState.WORKSPACE_READY)
        return changed

    def plan(self) -> PlanResult:
        """
        Run terraform plan, writing the plan artifact.

        The result is logged only; apply/destroy runs regardless.
        """
        self._require("plan", LifecycleState.WORKSPACE_READY)
        adapter = self._require_adapter()

        log_directory_tree(logger, self.config.project_path, "plan")
        log_directory_tree(logger, self.config.cache_path, "plan")

        with self._step("plan", out=self.config.plan_out):
            has_diff = adapter.plan(self.plan_options())

        if has_diff:
            logger.info("plan detected some changes", extra={"step": "plan", "event": "plan_diff"})
        else:
            logger.info("plan detected no changes", extra={"step": "plan", "event": "plan_no_diff"})

        self.plan_result = PlanResult(has_diff=has_diff)
        self._advance(LifecycleState.PLANNED)
        return self.plan_result

    def apply_or_destroy(self) -> LifecycleState:
        """
        Run exactly one of apply or destroy, chosen by the destroy flag.

        Returns:
            LifecycleState.APPLIED or LifecycleState.DESTROYED
        """
        self._require("apply", LifecycleState.PLANNED)
        adapter = self._require_adapter()

        if self.config.destroy:
            with self._step("destroy"):
                adapter.destroy(self.destroy_options())
            self._advance(LifecycleState.DESTROYED)
        else:
            with self._step("apply"):
                adapter.apply(self.apply_options())
            self._advance(LifecycleState.APPLIED)

        return self.state

    def collect_outputs(self) -> Dict[str, bytes]:
        """
        Read module outputs as raw bytes.

        Returns:
            OutputSet: {output name: payload}; usually empty after destroy
        """
        if self.state not in (LifecycleState.APPLIED, LifecycleState.DESTROYED):
            raise LifecycleStepError(
                "output",
                f"cannot run in state '{self.state.value}' (requires 'applied' or 'destroyed')",
            )
        adapter = self._require_adapter()

        with self._step("output"):
            raw = adapter.output()
            outputs = {}
            for name, output in raw.items():
                if not isinstance(output, dict) or "value" not in output:
                    raise LifecycleStepError("output", f"output '{name}' has no value")
                outputs[name] = output_value_bytes(output["value"])

        logger.info(
            f"Collected {len(outputs)} outputs",
            extra={
                "step": "output",
                "event": "outputs_collected",
                "metadata": {"outputs": sorted(outputs)},
            },
        )

        self.outputs = outputs
        self._advance(LifecycleState.OUTPUTS_COLLECTED)
        return outputs

    def run(self) -> Dict[str, bytes]:
        """
        Run every step in order.

        Returns:
            OutputSet collected after apply/destroy

        Raises:
            TfRunnerError: From the first step that fails
        """
        self.install()
        self.init()
        self.select_workspace()
        self.plan()
        self.apply_or_destroy()
        return self.collect_outputs()

    @property
    def infrastructure_mutated(self) -> bool:
        """Whether apply or destroy has completed."""
        return (
            LifecycleState.APPLIED in self.history
            or LifecycleState.DESTROYED in self.history
        )

    def __repr__(self) -> str:
        return f"ExecutionLifecycle(version={self.config.terraform_version}, state={self.state.value})"
