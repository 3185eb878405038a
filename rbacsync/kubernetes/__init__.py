import logging

from rbacsync.config import Config
from rbacsync.kubernetes.rolebindings import BindingReconciler
from rbacsync.kubernetes.util import get_rbac_client

logger = logging.getLogger(__name__)


def get_binding_reconciler(config: Config) -> BindingReconciler:
    rbac_client = get_rbac_client(config)
    logger.info(
        "Managing role binding '%s' bound to cluster role '%s' in %d namespaces",
        config.role_binding_name,
        config.cluster_role_name,
        len({target.namespace for target in config.targets}),
    )
    return BindingReconciler(
        rbac_client,
        role_ref_name=config.cluster_role_name,
        binding_name=config.role_binding_name,
        create_missing=config.create_missing_bindings,
        request_timeout=config.request_timeout,
    )
