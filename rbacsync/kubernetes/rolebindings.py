import logging
from datetime import datetime
from datetime import timezone
from typing import Iterable
from typing import Optional

from kubernetes.client import RbacAuthorizationV1Api
from kubernetes.client import RbacV1Subject
from kubernetes.client import V1ObjectMeta
from kubernetes.client import V1RoleBinding
from kubernetes.client import V1RoleRef
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from rbacsync.exceptions import ApplyError
from rbacsync.exceptions import AuthError
from rbacsync.kubernetes.util import format_sync_timestamp
from rbacsync.models import DesiredBinding
from rbacsync.models import Member
from rbacsync.models import SyncTarget
from rbacsync.util import timeit

logger = logging.getLogger(__name__)

RBAC_API_GROUP = "rbac.authorization.k8s.io"
LAST_SYNC_ANNOTATION = "rbacsync.io/last-sync"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "rbacsync"


def build_desired_binding(
    target: SyncTarget,
    members: Iterable[Member],
    role_ref_name: str,
    binding_name: str,
    now: Optional[datetime] = None,
) -> DesiredBinding:
    return DesiredBinding(
        namespace=target.namespace,
        name=binding_name,
        role_ref_name=role_ref_name,
        subjects=tuple(member.email for member in members),
        synced_at=now if now is not None else datetime.now(timezone.utc),
    )


def to_role_binding(desired: DesiredBinding) -> V1RoleBinding:
    """
    Render the full RoleBinding object. Sent with PUT, so whatever is on the cluster for this
    name (subjects, labels, annotations) is overwritten by exactly this.
    """
    return V1RoleBinding(
        api_version=f"{RBAC_API_GROUP}/v1",
        kind="RoleBinding",
        metadata=V1ObjectMeta(
            name=desired.name,
            namespace=desired.namespace,
            labels={MANAGED_BY_LABEL: MANAGED_BY_VALUE},
            annotations={LAST_SYNC_ANNOTATION: format_sync_timestamp(desired.synced_at)},
        ),
        role_ref=V1RoleRef(
            api_group=RBAC_API_GROUP,
            kind="ClusterRole",
            name=desired.role_ref_name,
        ),
        subjects=[
            RbacV1Subject(api_group=RBAC_API_GROUP, kind="User", name=email)
            for email in desired.subjects
        ],
    )


class BindingReconciler:
    """
    Writes resolved group members into a namespaced RoleBinding.

    :param rbac_api: Kubernetes RBAC API client.
    :param role_ref_name: ClusterRole referenced by every managed binding.
    :param binding_name: Name of the RoleBinding managed in each target namespace.
    :param create_missing: Create the binding when it does not exist. When False a missing
        binding is reported as an ApplyError and has to be provisioned beforehand.
    :param request_timeout: Seconds before a cluster API call is abandoned.
    """

    def __init__(
        self,
        rbac_api: RbacAuthorizationV1Api,
        role_ref_name: str,
        binding_name: str,
        create_missing: bool = False,
        request_timeout: Optional[float] = None,
    ):
        self.rbac_api = rbac_api
        self.role_ref_name = role_ref_name
        self.binding_name = binding_name
        self.create_missing = create_missing
        self.request_timeout = request_timeout

    def reconcile(self, target: SyncTarget, members: list[Member]) -> DesiredBinding:
        """
        Replace the binding in `target.namespace` so that its subjects are exactly `members`.

        :raises AuthError: the cluster refused our credentials (401/403).
        :raises ApplyError: any other API or transport failure.
        """
        desired = build_desired_binding(target, members, self.role_ref_name, self.binding_name)
        self.apply(desired)
        logger.info(
            "Updated role binding %s/%s with %d subjects from %s.",
            desired.namespace,
            desired.name,
            len(desired.subjects),
            target.group_email,
        )
        return desired

    @timeit
    def apply(self, desired: DesiredBinding) -> V1RoleBinding:
        body = to_role_binding(desired)
        try:
            return self._replace_or_create(desired, body)
        except ApiException as e:
            if e.status in (401, 403):
                raise AuthError(
                    f"Not allowed to update role binding {desired.namespace}/{desired.name}: {e.reason}",
                ) from e
            raise ApplyError(
                desired.namespace,
                desired.name,
                f"Unable to update role binding {desired.namespace}/{desired.name}: {e.status} {e.reason}",
                status=e.status,
            ) from e
        except (HTTPError, OSError) as e:
            raise ApplyError(
                desired.namespace,
                desired.name,
                f"Unable to reach the cluster to update role binding {desired.namespace}/{desired.name}: {e}",
            ) from e

    def _replace_or_create(self, desired: DesiredBinding, body: V1RoleBinding) -> V1RoleBinding:
        try:
            return self.rbac_api.replace_namespaced_role_binding(
                desired.name,
                desired.namespace,
                body,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status != 404 or not self.create_missing:
                raise
        logger.info("Role binding %s/%s does not exist, creating it.", desired.namespace, desired.name)
        return self.rbac_api.create_namespaced_role_binding(
            desired.namespace,
            body,
            _request_timeout=self.request_timeout,
        )
