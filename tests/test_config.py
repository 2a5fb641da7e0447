import pytest
import yaml

from tfrunner.config import RunConfiguration, load_config, parse_bool
from tfrunner.errors import ConfigError


REQUIRED_ENV = {
    "TERRAFORM_VERSION": "1.5.0",
    "TF_PLUGIN_CACHE_DIR": "/cache",
    "POD_NAMESPACE": "jobs",
    "OUTPUT_SECRET_NAME": "tf-outputs",
}


def test_load_config_defaults():
    cfg = load_config(environ=REQUIRED_ENV)
    assert isinstance(cfg, RunConfiguration)
    assert cfg.terraform_version == "1.5.0"
    assert cfg.cache_dir == "/cache"
    assert cfg.project_dir == "/tmp/tf-project"
    assert cfg.var_files_dir == "/tmp/tf-vars"
    assert cfg.workspace == "default"
    assert cfg.destroy is False
    assert cfg.plan_out == "/tmp/tf-plan"
    assert cfg.lock_timeout_seconds == 300.0
    assert cfg.lock_poll_interval == 0.5
    assert cfg.log_level == "INFO"
    assert cfg.kubeconfig_path == ""


@pytest.mark.parametrize("missing", sorted(REQUIRED_ENV))
def test_load_config_missing_required(missing):
    env = {k: v for k, v in REQUIRED_ENV.items() if k != missing}
    with pytest.raises(ConfigError, match=missing):
        load_config(environ=env)


def test_load_config_reads_all_env_vars():
    env = {
        **REQUIRED_ENV,
        "TERRAFORM_WORKSPACE": "dev",
        "TERRAFORM_DESTROY": "true",
        "TERRAFORM_PROJECT_PATH": "/work/project",
        "TERRAFORM_VAR_FILES_PATH": "/work/vars",
        "KUBECONFIG": "/home/user/.kube/config",
        "TERRAFORM_LOCK_TIMEOUT": "10",
        "TERRAFORM_LOCK_POLL_INTERVAL": "0.1",
        "LOG_LEVEL": "debug",
        "LOG_FORMAT": "pretty",
    }
    cfg = load_config(environ=env)
    assert cfg.workspace == "dev"
    assert cfg.destroy is True
    assert cfg.project_dir == "/work/project"
    assert cfg.var_files_dir == "/work/vars"
    assert cfg.kubeconfig_path == "/home/user/.kube/config"
    assert cfg.lock_timeout_seconds == 10.0
    assert cfg.lock_poll_interval == 0.1
    assert cfg.log_level == "DEBUG"
    assert cfg.log_format == "pretty"


def test_empty_workspace_means_no_switch():
    cfg = load_config(environ={**REQUIRED_ENV, "TERRAFORM_WORKSPACE": ""})
    assert cfg.workspace == ""


def test_invalid_destroy_flag_is_rejected():
    with pytest.raises(ConfigError, match="expected a boolean"):
        load_config(environ={**REQUIRED_ENV, "TERRAFORM_DESTROY": "maybe"})


def test_invalid_version_is_rejected():
    with pytest.raises(ConfigError, match="Invalid terraform_version"):
        load_config(environ={**REQUIRED_ENV, "TERRAFORM_VERSION": "latest"})


def test_invalid_timeout_is_rejected():
    with pytest.raises(ConfigError, match="expected a number"):
        load_config(environ={**REQUIRED_ENV, "TERRAFORM_LOCK_TIMEOUT": "soon"})


def test_poll_interval_must_not_exceed_timeout():
    env = {**REQUIRED_ENV, "TERRAFORM_LOCK_TIMEOUT": "1", "TERRAFORM_LOCK_POLL_INTERVAL": "2"}
    with pytest.raises(ConfigError, match="lock_poll_interval"):
        load_config(environ=env)


def test_invalid_log_level_is_rejected():
    with pytest.raises(ConfigError, match="Invalid log level"):
        load_config(environ={**REQUIRED_ENV, "LOG_LEVEL": "chatty"})


@pytest.mark.parametrize("value,expected", [
    ("1", True), ("TRUE", True), ("t", True), ("T", True), ("yes", True), ("on", True),
    ("0", False), ("false", False), ("f", False), ("F", False), ("No", False), ("off", False),
    (True, True), (False, False),
])
def test_parse_bool(value, expected):
    assert parse_bool("destroy", value) is expected


def test_load_config_from_yaml(tmp_path):
    config_path = tmp_path / "run.yaml"
    config_path.write_text(yaml.dump({
        "version": 1,
        "terraform_version": "1.6.2",
        "cache_dir": "/cache",
        "namespace": "infra",
        "output_secret_name": "outputs",
        "destroy": True,
        "workspace": "staging",
    }))

    cfg = load_config(config_path, environ={})
    assert cfg.terraform_version == "1.6.2"
    assert cfg.namespace == "infra"
    assert cfg.destroy is True
    assert cfg.workspace == "staging"


def test_env_overrides_yaml(tmp_path):
    config_path = tmp_path / "run.yaml"
    config_path.write_text(yaml.dump({
        "terraform_version": "1.6.2",
        "cache_dir": "/cache",
        "namespace": "infra",
        "output_secret_name": "outputs",
    }))

    cfg = load_config(config_path, environ={"TERRAFORM_VERSION": "1.7.0"})
    assert cfg.terraform_version == "1.7.0"
    assert cfg.namespace == "infra"


def test_keyword_overrides_win():
    cfg = load_config(environ=REQUIRED_ENV, destroy=True, workspace="dev", log_level=None)
    assert cfg.destroy is True
    assert cfg.workspace == "dev"
    assert cfg.log_level == "INFO"


def test_override_supplies_required_value():
    env = {k: v for k, v in REQUIRED_ENV.items() if k != "TERRAFORM_VERSION"}
    cfg = load_config(environ=env, terraform_version="1.5.0")
    assert cfg.terraform_version == "1.5.0"


def test_override_beats_environment():
    cfg = load_config(environ={**REQUIRED_ENV, "TERRAFORM_DESTROY": "false"}, destroy=True)
    assert cfg.destroy is True


def test_destroy_accepts_single_letter_flags():
    cfg = load_config(environ={**REQUIRED_ENV, "TERRAFORM_DESTROY": "t"})
    assert cfg.destroy is True


def test_unknown_override_is_rejected():
    with pytest.raises(ConfigError, match="Unknown configuration override"):
        load_config(environ=REQUIRED_ENV, colour="blue")


def test_yaml_unknown_key_is_rejected(tmp_path):
    config_path = tmp_path / "run.yaml"
    config_path.write_text(yaml.dump({"terraform_version": "1.5.0", "colour": "blue"}))

    with pytest.raises(ConfigError, match="Unknown configuration keys: colour"):
        load_config(config_path, environ=REQUIRED_ENV)


def test_yaml_wrong_version_is_rejected(tmp_path):
    config_path = tmp_path / "run.yaml"
    config_path.write_text(yaml.dump({"version": 2}))

    with pytest.raises(ConfigError, match="Unsupported configuration version 2"):
        load_config(config_path, environ=REQUIRED_ENV)


def test_yaml_invalid_syntax(tmp_path):
    config_path = tmp_path / "run.yaml"
    config_path.write_text("terraform_version: [unclosed")

    with pytest.raises(ConfigError, match="Invalid YAML syntax"):
        load_config(config_path, environ=REQUIRED_ENV)


def test_yaml_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="Configuration file not found"):
        load_config(tmp_path / "missing.yaml", environ=REQUIRED_ENV)


def test_load_config_with_env_file(monkeypatch, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "TERRAFORM_VERSION=1.5.7\n"
        "TF_PLUGIN_CACHE_DIR=/cache\n"
        "POD_NAMESPACE=jobs\n"
        "OUTPUT_SECRET_NAME=tf-outputs\n"
    )
    monkeypatch.setenv("TFRUNNER_ENV_FILE", str(env_file))

    cfg = load_config()
    assert cfg.terraform_version == "1.5.7"
    assert cfg.output_secret_name == "tf-outputs"


def test_configuration_is_immutable():
    cfg = load_config(environ=REQUIRED_ENV)
    with pytest.raises(AttributeError):
        cfg.destroy = True
