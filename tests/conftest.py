import stat
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from tfrunner.config import RunConfiguration
from tfrunner.installer import CachedBinary


@pytest.fixture
def run_config(tmp_path):
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    (project_dir / "main.tf").write_text('output "result" { value = "xyz" }\n')

    return RunConfiguration(
        terraform_version="1.5.0",
        cache_dir=str(tmp_path / "cache"),
        namespace="jobs",
        output_secret_name="tf-outputs",
        project_dir=str(project_dir),
        var_files_dir=str(tmp_path / "vars"),
        workspace="",
        destroy=False,
        ssh_key_path=str(tmp_path / "no-such-key"),
        plan_out=str(tmp_path / "tf-plan"),
    )


class FakeCacheManager:
    """Cache manager that hands out a fake binary and counts calls."""

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.calls = []

    def ensure_binary(self, version):
        self.calls.append(version)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        path = self.cache_dir / f"terraform-{version}"
        path.write_text("#!/bin/sh\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return CachedBinary(version=version, path=path, executable=True, installed=True)


@pytest.fixture
def cache_manager(run_config):
    return FakeCacheManager(run_config.cache_path)


@pytest.fixture
def adapter():
    """A terraform adapter double with a default workspace and one output."""
    mock = MagicMock()
    mock.validate.return_value = {"valid": True, "errors": [], "warnings": []}
    mock.workspace_list.return_value = (["default"], "default")
    mock.plan.return_value = True
    mock.output.return_value = {
        "result": {"sensitive": False, "type": "string", "value": "xyz"},
    }
    return mock


@pytest.fixture
def adapter_factory(adapter):
    return MagicMock(return_value=adapter)


@pytest.fixture(autouse=True)
def clean_tf_env(monkeypatch):
    """Keep the job container variables of the host out of tests."""
    from tfrunner.config import ENV_VARS

    for name in list(ENV_VARS) + ["TFRUNNER_ENV_FILE"]:
        monkeypatch.delenv(name, raising=False)
