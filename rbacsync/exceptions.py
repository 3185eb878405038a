from typing import Optional
from typing import Sequence


class RbacSyncError(Exception):
    pass


class ConfigurationError(RbacSyncError):
    """Missing or invalid startup setting. Fatal: the process exits before any pass runs."""


class AuthError(RbacSyncError):
    """The directory or the cluster rejected our credentials."""


class ResolutionError(RbacSyncError):
    def __init__(self, group_email: str, message: str):
        super().__init__(message)
        self.group_email = group_email


class CyclicGroupError(ResolutionError):
    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(
            self.cycle[0],
            "Group membership cycle detected: " + " -> ".join(self.cycle),
        )


class ApplyError(RbacSyncError):
    def __init__(
        self,
        namespace: str,
        name: str,
        message: str,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.namespace = namespace
        self.name = name
        self.status = status
