"""
Configuration management for tfrunner.

Builds the RunConfiguration for a single job run from an optional YAML
file, an optional .env file, and the job container's environment variables
(which take precedence). The result is validated once at startup and never
mutated afterwards.
"""

import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from tfrunner.errors import ConfigError


SCHEMA_VERSION = 1

VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+(-[0-9A-Za-z.]+)?$")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("structured", "pretty")

_TRUE_VALUES = {"1", "t", "true", "yes", "on"}
_FALSE_VALUES = {"0", "f", "false", "no", "off"}

# env var -> (field, default). None default means required.
ENV_VARS: Dict[str, tuple] = {
    "TERRAFORM_VERSION": ("terraform_version", None),
    "TERRAFORM_WORKSPACE": ("workspace", "default"),
    "TERRAFORM_DESTROY": ("destroy", False),
    "TF_PLUGIN_CACHE_DIR": ("cache_dir", None),
    "TERRAFORM_PROJECT_PATH": ("project_dir", "/tmp/tf-project"),
    "TERRAFORM_VAR_FILES_PATH": ("var_files_dir", "/tmp/tf-vars"),
    "POD_NAMESPACE": ("namespace", None),
    "OUTPUT_SECRET_NAME": ("output_secret_name", None),
    "KUBECONFIG": ("kubeconfig_path", ""),
    "TERRAFORM_SSH_KEY_PATH": ("ssh_key_path", "/tmp/tf-ssh/id_rsa"),
    "TERRAFORM_PLAN_OUT": ("plan_out", "/tmp/tf-plan"),
    "TERRAFORM_LOCK_TIMEOUT": ("lock_timeout_seconds", 300.0),
    "TERRAFORM_LOCK_POLL_INTERVAL": ("lock_poll_interval", 0.5),
    "TERRAFORM_RELEASES_URL": ("releases_url", "https://releases.hashicorp.com"),
    "LOG_LEVEL": ("log_level", "info"),
    "LOG_FORMAT": ("log_format", "structured"),
    "LOG_FILE": ("log_file", ""),
}


@dataclass(frozen=True)
class RunConfiguration:
    """
    Immutable configuration for one Terraform job run.

    Attributes:
        terraform_version: Pinned Terraform version (e.g. "1.5.0")
        cache_dir: Shared directory holding cached binaries and provider plugins
        namespace: Namespace of the output secret
        output_secret_name: Name of the pre-existing output secret
        project_dir: Terraform module directory
        var_files_dir: Directory tree scanned for var files
        workspace: Desired workspace; empty string means no switch
        destroy: Run destroy instead of apply
        kubeconfig_path: Kubeconfig file; in-cluster config is used when absent
        ssh_key_path: Mounted SSH private key for private module sources
        plan_out: Path of the plan artifact
        lock_timeout_seconds: Maximum wait for the cache lock
        lock_poll_interval: Delay between cache lock attempts
        releases_url: Base URL of the Terraform release site
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: "structured" (JSON lines) or "pretty" (rich)
        log_file: Optional log file path
    """

    terraform_version: str
    cache_dir: str
    namespace: str
    output_secret_name: str
    project_dir: str = "/tmp/tf-project"
    var_files_dir: str = "/tmp/tf-vars"
    workspace: str = "default"
    destroy: bool = False
    kubeconfig_path: str = ""
    ssh_key_path: str = "/tmp/tf-ssh/id_rsa"
    plan_out: str = "/tmp/tf-plan"
    lock_timeout_seconds: float = 300.0
    lock_poll_interval: float = 0.5
    releases_url: str = "https://releases.hashicorp.com"
    log_level: str = "INFO"
    log_format: str = "structured"
    log_file: str = ""
    schema_version: int = SCHEMA_VERSION

    def __post_init__(self):
        # Normalize before validating; frozen dataclasses need object.__setattr__
        object.__setattr__(self, "log_level", str(self.log_level).upper())
        object.__setattr__(self, "workspace", self.workspace or "")
        self.validate()

    def validate(self) -> None:
        """
        Validate the configuration.

        Raises:
            ConfigError: If a field is missing or invalid
        """
        if self.schema_version != SCHEMA_VERSION:
            raise ConfigError(
                f"Unsupported configuration version {self.schema_version} "
                f"(expected {SCHEMA_VERSION})"
            )

        for name in ("terraform_version", "cache_dir", "namespace",
                     "output_secret_name", "project_dir", "plan_out"):
            if not getattr(self, name):
                raise ConfigError(f"'{name}' is required")

        if not VERSION_PATTERN.match(self.terraform_version):
            raise ConfigError(
                f"Invalid terraform_version '{self.terraform_version}': "
                "expected MAJOR.MINOR.PATCH"
            )

        if self.lock_timeout_seconds <= 0:
            raise ConfigError("lock_timeout_seconds must be positive")
        if self.lock_poll_interval <= 0:
            raise ConfigError("lock_poll_interval must be positive")
        if self.lock_poll_interval > self.lock_timeout_seconds:
            raise ConfigError("lock_poll_interval must not exceed lock_timeout_seconds")

        if self.log_level not in LOG_LEVELS:
            raise ConfigError(f"Invalid log level '{self.log_level}'")
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(f"Invalid log format '{self.log_format}'")

    @property
    def project_path(self) -> Path:
        return Path(self.project_dir)

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir)

    @property
    def var_files_path(self) -> Optional[Path]:
        return Path(self.var_files_dir) if self.var_files_dir else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for display and logging."""
        return asdict(self)

    def __repr__(self) -> str:
        return (
            f"RunConfiguration(version={self.terraform_version}, "
            f"project_dir={self.project_dir}, workspace={self.workspace!r}, "
            f"destroy={self.destroy})"
        )


def parse_bool(name: str, value: Any) -> bool:
    """Parse a boolean setting, rejecting anything ambiguous."""
    if isinstance(value, bool):
        return value

    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False

    raise ConfigError(f"{name}: expected a boolean, got '{value}'")


def _parse_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}: expected a number, got '{value}'")


def _load_yaml(config_path: Path) -> Dict[str, Any]:
    """Load and check the optional YAML configuration file."""
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax in {config_path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {config_path} must contain a mapping")

    version = data.pop("version", SCHEMA_VERSION)
    if version != SCHEMA_VERSION:
        raise ConfigError(
            f"Unsupported configuration version {version} (expected {SCHEMA_VERSION})"
        )

    return data


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any,
) -> RunConfiguration:
    """
    Load the run configuration.

    Precedence (highest first): keyword overrides, environment variables,
    YAML file, defaults.

    Args:
        config_path: Optional YAML file with snake_case field names
        environ: Environment mapping (defaults to os.environ)
        **overrides: Explicit field values, e.g. from CLI flags. None values are ignored.

    Returns:
        Validated RunConfiguration

    Raises:
        ConfigError: If the configuration is missing or invalid
    """
    file_values: Dict[str, Any] = {}
    if config_path is not None:
        file_values = _load_yaml(Path(config_path))

    env_file = file_values.pop("env_file", None)
    if environ is None:
        env_file = env_file or os.environ.get("TFRUNNER_ENV_FILE")
        if env_file:
            load_dotenv(Path(env_file).expanduser(), override=False)
        environ = os.environ

    known = {f.name for f in fields(RunConfiguration)}
    unknown = set(file_values) - known
    if unknown:
        raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

    env_fields = {field_name for field_name, _ in ENV_VARS.values()}
    for key in overrides:
        if key not in env_fields:
            raise ConfigError(f"Unknown configuration override '{key}'")
    explicit = {key: value for key, value in overrides.items() if value is not None}

    values: Dict[str, Any] = {}
    for env_name, (field_name, default) in ENV_VARS.items():
        if field_name in explicit:
            values[field_name] = explicit[field_name]
        elif env_name in environ:
            values[field_name] = environ[env_name]
        elif field_name in file_values:
            values[field_name] = file_values[field_name]
        elif default is not None:
            values[field_name] = default
        else:
            raise ConfigError(
                f"environment variable '{env_name}' is required but was not found"
            )

    values["destroy"] = parse_bool("destroy", values["destroy"])
    values["lock_timeout_seconds"] = _parse_float(
        "lock_timeout_seconds", values["lock_timeout_seconds"]
    )
    values["lock_poll_interval"] = _parse_float(
        "lock_poll_interval", values["lock_poll_interval"]
    )
    for key, value in values.items():
        if key not in ("destroy", "lock_timeout_seconds", "lock_poll_interval"):
            values[key] = "" if value is None else str(value)

    return RunConfiguration(**values)
