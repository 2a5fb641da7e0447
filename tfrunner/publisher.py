"""
Output publishing to the secret store.

This module defines the protocol an output publisher must implement, so
the job runner is decoupled from the actual secret store.

Implementations:
- KubernetesSecretPublisher: overwrites the data of an existing Kubernetes Secret
"""

import base64
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from kubernetes import client, config as k8s_config
from kubernetes.client.rest import ApiException
from kubernetes.config.config_exception import ConfigException

from tfrunner.errors import ConfigError, PublishError

logger = logging.getLogger(__name__)


@runtime_checkable
class OutputPublisher(Protocol):
    """Protocol for publishing a run's OutputSet."""

    def publish(self, outputs: Dict[str, bytes]) -> None:
        """
        Replace the published outputs with the given mapping.

        Args:
            outputs: Output name to raw payload; never empty

        Raises:
            PublishError: If the outputs could not be written
        """
        ...


def create_core_v1_api(kubeconfig_path: Optional[str] = None) -> client.CoreV1Api:
    """
    Build a Kubernetes CoreV1Api client.

    Uses the kubeconfig file when it exists, otherwise the in-cluster
    service account configuration.

    Raises:
        ConfigError: If no usable Kubernetes configuration is found
    """
    try:
        if kubeconfig_path and Path(kubeconfig_path).is_file():
            logger.debug(
                f"Loading kubeconfig from {kubeconfig_path}",
                extra={"event": "k8s_config", "metadata": {"source": "kubeconfig"}},
            )
            k8s_config.load_kube_config(config_file=kubeconfig_path)
        else:
            logger.debug(
                "Loading in-cluster kubernetes config",
                extra={"event": "k8s_config", "metadata": {"source": "in-cluster"}},
            )
            k8s_config.load_incluster_config()
    except ConfigException as e:
        raise ConfigError(f"failed to create kubernetes config: {e}") from e

    return client.CoreV1Api()


class KubernetesSecretPublisher:
    """
    Publishes outputs by overwriting an existing Kubernetes Secret.

    The secret must already exist (it is never created) and its whole data
    payload is replaced, not merged.
    """

    def __init__(self, api: Any, namespace: str, secret_name: str):
        """
        Initialize publisher.

        Args:
            api: CoreV1Api-compatible client
            namespace: Secret namespace
            secret_name: Secret name
        """
        self.api = api
        self.namespace = namespace
        self.secret_name = secret_name

    def publish(self, outputs: Dict[str, bytes]) -> None:
        log_extra = {
            "event": "publish",
            "metadata": {"namespace": self.namespace, "secret_name": self.secret_name},
        }

        try:
            secret = self.api.read_namespaced_secret(self.secret_name, self.namespace)
        except ApiException as e:
            if e.status == 404:
                raise PublishError(
                    f"output secret {self.namespace}/{self.secret_name} does not exist"
                ) from e
            raise PublishError(
                f"failed to read secret {self.namespace}/{self.secret_name}: {e.reason}"
            ) from e

        secret.data = {
            name: base64.b64encode(payload).decode("ascii")
            for name, payload in outputs.items()
        }
        secret.string_data = None

        try:
            self.api.replace_namespaced_secret(self.secret_name, self.namespace, secret)
        except ApiException as e:
            raise PublishError(
                f"failed to update secret {self.namespace}/{self.secret_name}: {e.reason}"
            ) from e

        logger.info("secret was updated with outputs", extra=log_extra)

    def __repr__(self) -> str:
        return f"KubernetesSecretPublisher(secret={self.namespace}/{self.secret_name})"
