"""
CLI interface for tfrunner.

Provides commands: run, install, var-files, config.

The job container runs `tfrunner run`; configuration comes from the
environment (see tfrunner.config.ENV_VARS), optionally layered over a
YAML file.
"""

import sys
from pathlib import Path

import click
import yaml

from tfrunner import __version__
from tfrunner.errors import (
    ConfigError,
    InstallError,
    LifecycleStepError,
    LockTimeoutError,
    PublishError,
    TfRunnerError,
)
from tfrunner.utils import (
    format_duration,
    print_banner,
    print_error,
    print_info,
    print_success,
    print_warning,
    setup_logging,
)


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INSTALL = 3
EXIT_STEP = 4
EXIT_PUBLISH = 5


def exit_code_for(error: BaseException) -> int:
    """Map an error to the process exit code."""
    if isinstance(error, ConfigError):
        return EXIT_CONFIG
    if isinstance(error, (LockTimeoutError, InstallError)):
        return EXIT_INSTALL
    if isinstance(error, LifecycleStepError):
        return EXIT_STEP
    if isinstance(error, PublishError):
        return EXIT_PUBLISH
    return EXIT_FAILURE


def _load(config_path, **overrides):
    from tfrunner.config import load_config

    try:
        return load_config(config_path, **overrides)
    except ConfigError as e:
        print_error(f"Configuration invalid: {e}")
        sys.exit(EXIT_CONFIG)


config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="YAML configuration file (environment variables take precedence)",
)


@click.group()
@click.version_option(version=__version__, prog_name="tfrunner")
def main():
    """
    tfrunner - Single-shot Terraform job runner.

    Installs a pinned terraform, runs init → workspace → plan → apply/destroy,
    and publishes the outputs to a Kubernetes secret.
    """
    pass


@main.command()
@config_option
@click.option(
    "--destroy/--no-destroy",
    default=None,
    help="Run destroy instead of apply (overrides TERRAFORM_DESTROY)",
)
@click.option("--workspace", default=None, help="Workspace to select (overrides TERRAFORM_WORKSPACE)")
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def run(config_path, destroy, workspace, verbose):
    """
    Run the terraform job.

    Examples:

      # Run with configuration from the environment
      tfrunner run

      # Destroy instead of apply
      tfrunner run --destroy

      # Custom config file
      tfrunner run --config /etc/tfrunner/run.yaml
    """
    from tfrunner.job_runner import run_job

    config = _load(
        config_path,
        destroy=destroy,
        workspace=workspace,
        log_level="DEBUG" if verbose else None,
    )
    setup_logging(config.log_level, config.log_format, config.log_file or None)

    action = "destroy" if config.destroy else "apply"
    print_banner(f"tfrunner v{__version__}: terraform {config.terraform_version} ({action})")

    try:
        result = run_job(config)
    except TfRunnerError as e:
        print_error(f"Run failed: {e}")
        if e.infrastructure_mutated:
            print_warning(
                f"Infrastructure was already changed by terraform {action}; "
                "only publishing the outputs failed"
            )
        sys.exit(exit_code_for(e))
    except Exception as e:
        print_error(f"Run failed: {e}")
        sys.exit(EXIT_FAILURE)

    if result.binary_downloaded:
        print_info(f"Downloaded terraform {config.terraform_version}")
    else:
        print_info(f"Using cached terraform {config.terraform_version}")
    if result.outputs_published:
        print_success(f"Published {len(result.outputs)} outputs to {config.namespace}/{config.output_secret_name}")
    else:
        print_info("No outputs were found in module")
    print_success(f"Run finished successfully in {format_duration(result.duration_seconds)}")


@main.command()
@config_option
@click.option("--verbose", is_flag=True, help="Enable debug logging")
def install(config_path, verbose):
    """Install the pinned terraform binary into the cache and print its path."""
    from tfrunner.installer import BinaryCacheManager, ReleaseInstaller

    config = _load(config_path, log_level="DEBUG" if verbose else None)
    setup_logging(config.log_level, config.log_format, config.log_file or None)

    manager = BinaryCacheManager(
        config.cache_path,
        installer=ReleaseInstaller(config.releases_url),
        lock_timeout=config.lock_timeout_seconds,
        poll_interval=config.lock_poll_interval,
    )

    try:
        binary = manager.ensure_binary(config.terraform_version)
    except TfRunnerError as e:
        print_error(f"Install failed: {e}")
        sys.exit(exit_code_for(e))

    click.echo(str(binary.path))


@main.command("var-files")
@click.argument("path", type=click.Path(file_okay=False, path_type=Path), required=False)
def var_files(path):
    """
    List var files in the order they are passed to terraform.

    PATH defaults to TERRAFORM_VAR_FILES_PATH (or /tmp/tf-vars).
    """
    import os

    from tfrunner.varfiles import discover_var_files

    root = path or Path(os.environ.get("TERRAFORM_VAR_FILES_PATH", "/tmp/tf-vars"))

    try:
        files = discover_var_files(root)
    except TfRunnerError as e:
        print_error(str(e))
        sys.exit(exit_code_for(e))

    for f in files:
        click.echo(str(f))


@main.command("config")
@config_option
def show_config(config_path):
    """Print the resolved configuration as YAML."""
    config = _load(config_path)
    click.echo(yaml.safe_dump(config.to_dict(), sort_keys=False), nl=False)


if __name__ == "__main__":
    main()
