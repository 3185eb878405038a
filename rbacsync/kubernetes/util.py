import logging
from datetime import datetime
from datetime import timezone
from typing import Optional

from kubernetes import config
from kubernetes.client import ApiClient
from kubernetes.client import Configuration
from kubernetes.client import RbacAuthorizationV1Api
from kubernetes.config import ConfigException

from rbacsync.config import Config
from rbacsync.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

IN_CLUSTER_CONTEXT = "in-cluster"
SYNC_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class K8RbacApiClient(RbacAuthorizationV1Api):
    def __init__(
        self,
        name: Optional[str],
        config_file: Optional[str] = None,
        api_client: Optional[ApiClient] = None,
    ) -> None:
        self.name = name or "current"
        if not api_client:
            api_client = config.new_client_from_config(context=name, config_file=config_file)
        super().__init__(api_client=api_client)


def get_in_cluster_api_client() -> ApiClient:
    client_configuration = Configuration()
    config.load_incluster_config(client_configuration=client_configuration)
    return ApiClient(configuration=client_configuration)


def get_rbac_client(rbac_config: Config) -> K8RbacApiClient:
    """
    Build the RBAC API client, from the pod's service account when running in-cluster or from
    a kubeconfig file otherwise.

    :raises ConfigurationError: if no usable cluster configuration is found.
    """
    try:
        if rbac_config.in_cluster:
            logger.info("Using in-cluster service account configuration")
            return K8RbacApiClient(IN_CLUSTER_CONTEXT, api_client=get_in_cluster_api_client())
        logger.info(
            "Using kubeconfig %s (context: %s)",
            rbac_config.kubeconfig,
            rbac_config.kube_context or "current",
        )
        return K8RbacApiClient(rbac_config.kube_context, config_file=rbac_config.kubeconfig)
    except (ConfigException, OSError) as e:
        raise ConfigurationError(f"Unable to load Kubernetes configuration: {e}") from e


def format_sync_timestamp(date: datetime) -> str:
    if date.tzinfo is not None:
        date = date.astimezone(timezone.utc)
    return date.strftime(SYNC_TIMESTAMP_FORMAT)
