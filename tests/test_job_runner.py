"""Tests for run_job."""

import base64
from dataclasses import replace
from unittest.mock import MagicMock, patch

import pytest

from tfrunner.errors import (
    ConfigError,
    LifecycleStepError,
    PublishError,
)
from tfrunner.job_runner import RunResult, build_publisher, run_job
from tfrunner.publisher import KubernetesSecretPublisher


@pytest.fixture(autouse=True)
def vars_dir(tmp_path):
    path = tmp_path / "vars"
    path.mkdir()
    return path


@pytest.fixture
def publisher():
    return MagicMock()


def run(config, publisher, cache_manager, adapter_factory, **kwargs):
    return run_job(
        config,
        publisher=publisher,
        cache_manager=cache_manager,
        adapter_factory=adapter_factory,
        **kwargs,
    )


class TestRunJob:
    """Tests for run_job."""

    def test_successful_run_publishes(self, run_config, publisher, cache_manager, adapter_factory):
        result = run(run_config, publisher, cache_manager, adapter_factory)

        assert isinstance(result, RunResult)
        assert result.success is True
        assert result.outputs == ["result"]
        assert result.outputs_published is True
        assert result.infrastructure_mutated is True
        assert result.plan_has_diff is True
        assert result.states[-1] == "outputs_collected"
        assert result.binary_downloaded is True
        publisher.publish.assert_called_once_with({"result": b"xyz"})

    def test_no_outputs_skips_publish(self, run_config, publisher, cache_manager, adapter_factory, adapter):
        adapter.output.return_value = {}

        result = run(run_config, publisher, cache_manager, adapter_factory)

        publisher.publish.assert_not_called()
        assert result.success is True
        assert result.outputs_published is False

    def test_destroy_with_no_outputs(self, run_config, publisher, cache_manager, adapter_factory, adapter):
        adapter.output.return_value = {}

        result = run(replace(run_config, destroy=True), publisher, cache_manager, adapter_factory)

        adapter.destroy.assert_called_once()
        adapter.apply.assert_not_called()
        publisher.publish.assert_not_called()
        assert "destroyed" in result.states

    def test_publish_error_propagates_after_apply(
        self, run_config, publisher, cache_manager, adapter_factory, adapter
    ):
        publisher.publish.side_effect = PublishError("output secret jobs/tf-outputs does not exist")

        with pytest.raises(PublishError) as exc_info:
            run(run_config, publisher, cache_manager, adapter_factory)

        assert exc_info.value.infrastructure_mutated is True
        adapter.apply.assert_called_once()

    def test_unexpected_publish_failure_is_wrapped(
        self, run_config, publisher, cache_manager, adapter_factory
    ):
        publisher.publish.side_effect = RuntimeError("connection reset")

        with pytest.raises(PublishError, match="connection reset"):
            run(run_config, publisher, cache_manager, adapter_factory)

    def test_step_failure_skips_publish(self, run_config, publisher, cache_manager, adapter_factory, adapter):
        adapter.plan.side_effect = LifecycleStepError("plan", "exit code 1")

        with pytest.raises(LifecycleStepError):
            run(run_config, publisher, cache_manager, adapter_factory)

        adapter.apply.assert_not_called()
        publisher.publish.assert_not_called()

    def test_publisher_built_before_terraform_runs(self, run_config, cache_manager, adapter_factory):
        with patch(
            "tfrunner.job_runner.build_publisher",
            side_effect=ConfigError("failed to create kubernetes config"),
        ):
            with pytest.raises(ConfigError):
                run(run_config, None, cache_manager, adapter_factory)

        assert cache_manager.calls == []
        adapter_factory.assert_not_called()

    def test_ssh_key_env_reaches_terraform(
        self, run_config, publisher, cache_manager, adapter_factory, tmp_path
    ):
        key = tmp_path / "id_rsa"
        key.write_text("PRIVATE KEY\n")
        config = replace(run_config, ssh_key_path=str(key))

        run(config, publisher, cache_manager, adapter_factory, home=tmp_path / "home")

        env = adapter_factory.call_args[1]["env"]
        assert "GIT_SSH_COMMAND" in env
        assert (tmp_path / "home" / ".ssh" / "id_rsa").read_text() == "PRIVATE KEY\n"

    def test_result_to_dict(self, run_config, publisher, cache_manager, adapter_factory):
        data = run(run_config, publisher, cache_manager, adapter_factory).to_dict()

        assert data["success"] is True
        assert data["outputs"] == ["result"]
        assert data["error_message"] is None
        assert isinstance(data["started_at"], str)

    def test_cache_hit_is_reported(self, run_config, publisher, cache_manager, adapter_factory):
        hit = MagicMock()
        hit.ensure_binary.return_value = replace(
            cache_manager.ensure_binary("1.5.0"), installed=False
        )

        result = run(run_config, publisher, hit, adapter_factory)

        assert result.binary_downloaded is False
        assert result.to_dict()["binary_downloaded"] is False


class TestBuildPublisher:
    """Tests for build_publisher."""

    def test_targets_configured_secret(self, run_config):
        with patch("tfrunner.job_runner.create_core_v1_api") as mock_create:
            publisher = build_publisher(replace(run_config, kubeconfig_path="/kube/config"))

        mock_create.assert_called_once_with("/kube/config")
        assert isinstance(publisher, KubernetesSecretPublisher)
        assert publisher.namespace == "jobs"
        assert publisher.secret_name == "tf-outputs"


class TestColdStartScenario:
    """Empty cache, one string output published."""

    def test_default_workspace_already_current(
        self, run_config, publisher, cache_manager, adapter_factory, adapter
    ):
        result = run(
            replace(run_config, workspace="default"), publisher, cache_manager, adapter_factory
        )

        assert cache_manager.calls == ["1.5.0"]
        adapter.init.assert_called_once()
        adapter.workspace_list.assert_called_once_with()
        adapter.workspace_select.assert_not_called()
        adapter.workspace_new.assert_not_called()
        adapter.apply.assert_called_once()
        publisher.publish.assert_called_once_with({"result": b"xyz"})
        assert result.plan_has_diff is True

    def test_end_to_end(self, run_config, cache_manager, adapter_factory, adapter, vars_dir):
        (vars_dir / "env.tfvars").write_text('name = "x"\n')
        adapter.workspace_list.return_value = (["default"], "default")
        api = MagicMock()
        publisher = KubernetesSecretPublisher(api, "jobs", "tf-outputs")

        result = run(replace(run_config, workspace="dev"), publisher, cache_manager, adapter_factory)

        assert cache_manager.calls == ["1.5.0"]
        adapter.workspace_new.assert_called_once_with("dev")
        body = api.replace_namespaced_secret.call_args[0][2]
        assert base64.b64decode(body.data["result"]) == b"xyz"
        assert result.outputs_published is True
