"""Terraform tool adapter for tfrunner."""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from tfrunner.errors import LifecycleStepError
from tfrunner.tools.base import ToolAdapter


# terraform plan -detailed-exitcode: 0 = no changes, 2 = changes present
PLAN_NO_CHANGES = 0
PLAN_HAS_CHANGES = 2


@dataclass(frozen=True)
class InitOptions:
    """Options for terraform init."""

    upgrade: bool = True


@dataclass(frozen=True)
class PlanOptions:
    """Options for terraform plan."""

    var_files: Tuple[Path, ...] = ()
    out: Optional[Path] = None


@dataclass(frozen=True)
class ApplyOptions:
    """Options for terraform apply."""

    var_files: Tuple[Path, ...] = ()


@dataclass(frozen=True)
class DestroyOptions:
    """Options for terraform destroy."""

    var_files: Tuple[Path, ...] = ()


def _var_file_args(var_files: Tuple[Path, ...]) -> List[str]:
    return [f"-var-file={path}" for path in var_files]


def parse_workspace_list(text: str) -> Tuple[List[str], str]:
    """
    Parse `terraform workspace list` output.

    The current workspace is marked with a leading "* ".

    Returns:
        (all workspace names, current workspace name)
    """
    workspaces = []
    current = ""

    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("*"):
            line = line[1:].strip()
            current = line
        workspaces.append(line)

    return workspaces, current


class TerraformAdapter(ToolAdapter):
    """
    Adapter for the terraform CLI.

    Every command runs non-interactively (-input=false, -no-color,
    TF_IN_AUTOMATION) against a single project directory.
    """

    def __init__(
        self,
        binary_path: Path,
        project_dir: Path,
        plugin_cache_dir: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize TerraformAdapter.

        Args:
            binary_path: Installed terraform executable
            project_dir: Terraform module directory
            plugin_cache_dir: Provider plugin cache (exported as TF_PLUGIN_CACHE_DIR)
            env: Extra environment variables for terraform
        """
        tf_env = {"TF_IN_AUTOMATION": "1", "TF_INPUT": "0"}
        if plugin_cache_dir is not None:
            tf_env["TF_PLUGIN_CACHE_DIR"] = str(plugin_cache_dir)
        tf_env.update(env or {})

        super().__init__(binary_path, project_dir, tf_env)

    def validate(self) -> Dict[str, Any]:
        """
        Validate the terraform binary and project directory.

        Returns:
            Dictionary with 'valid', 'errors' and 'warnings'
        """
        errors = []
        warnings = []

        if not self.binary_path.is_file():
            errors.append(f"Terraform executable not found: {self.binary_path}")
        elif not os.access(self.binary_path, os.X_OK):
            errors.append(f"Terraform binary is not executable: {self.binary_path}")

        if not self.working_dir.is_dir():
            errors.append(f"Project directory not found: {self.working_dir}")
        elif not any(self.working_dir.glob("*.tf")) and not any(self.working_dir.glob("*.tf.json")):
            warnings.append(f"No .tf files in project directory: {self.working_dir}")

        return {
            "valid": len(errors) == 0,
            "errors": errors,
            "warnings": warnings,
        }

    def init(self, options: InitOptions) -> None:
        args = ["init", "-input=false", "-no-color"]
        if options.upgrade:
            args.append("-upgrade")
        self.run_step("init", args)

    def workspace_list(self) -> Tuple[List[str], str]:
        """
        List workspaces.

        Returns:
            (workspace names, current workspace)
        """
        result = self.run_step("workspace", ["workspace", "list", "-no-color"])
        return parse_workspace_list(result.stdout)

    def workspace_select(self, name: str) -> None:
        self.run_step("workspace", ["workspace", "select", "-no-color", name])

    def workspace_new(self, name: str) -> None:
        """Create a workspace; terraform also switches to it."""
        self.run_step("workspace", ["workspace", "new", "-no-color", name])

    def plan(self, options: PlanOptions) -> bool:
        """
        Run terraform plan.

        Returns:
            True if the plan contains changes
        """
        args = ["plan", "-input=false", "-no-color", "-detailed-exitcode"]
        args.extend(_var_file_args(options.var_files))
        if options.out is not None:
            args.append(f"-out={options.out}")

        result = self.run_step("plan", args, ok_codes=(PLAN_NO_CHANGES, PLAN_HAS_CHANGES))
        return result.returncode == PLAN_HAS_CHANGES

    def apply(self, options: ApplyOptions) -> None:
        args = ["apply", "-input=false", "-no-color", "-auto-approve"]
        args.extend(_var_file_args(options.var_files))
        self.run_step("apply", args)

    def destroy(self, options: DestroyOptions) -> None:
        args = ["destroy", "-input=false", "-no-color", "-auto-approve"]
        args.extend(_var_file_args(options.var_files))
        self.run_step("destroy", args)

    def output(self) -> Dict[str, Dict[str, Any]]:
        """
        Read module outputs.

        Returns:
            {name: {"value": ..., "type": ..., "sensitive": ...}} as printed
            by `terraform output -json`

        Raises:
            LifecycleStepError: If the command fails or prints invalid JSON
        """
        result = self.run_step("output", ["output", "-json", "-no-color"])

        stdout = result.stdout.strip()
        if not stdout:
            return {}

        try:
            outputs = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise LifecycleStepError("output", f"invalid JSON from terraform output: {e}") from e

        if not isinstance(outputs, dict):
            raise LifecycleStepError("output", "terraform output did not return an object")

        return outputs
