import logging
import threading
from typing import Any
from typing import Callable
from typing import Protocol

import httplib2
from google.auth.exceptions import RefreshError
from google.auth.exceptions import TransportError
from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from rbacsync.exceptions import AuthError
from rbacsync.exceptions import ResolutionError
from rbacsync.models import Member
from rbacsync.models import MemberKind
from rbacsync.util import timeit

logger = logging.getLogger(__name__)

GOOGLE_API_NUM_RETRIES = 5
MEMBERS_PAGE_SIZE = 200
FAKE_MEMBER_EMAIL = "fake-user@example.com"


class DirectoryClient(Protocol):
    def list_members(self, group_email: str) -> list[Member]:
        ...


def transform_members(raw_members: list[dict[str, Any]]) -> list[Member]:
    """
    Map Directory API member resources onto Members.

    Entries typed GROUP are kept as groups so the resolver can expand them. Every other type
    (USER, and the rare CUSTOMER entry) is treated as a user. Entries without an email
    address cannot be bound to anything and are dropped.
    """
    members: list[Member] = []
    for raw in raw_members:
        email = raw.get("email")
        if not email:
            logger.debug("Skipping directory member without email: id=%s type=%s", raw.get("id"), raw.get("type"))
            continue
        kind = MemberKind.GROUP if raw.get("type") == "GROUP" else MemberKind.USER
        members.append(Member(email=email, kind=kind))
    return members


class GoogleDirectoryClient:
    """
    Reads group membership from the Admin SDK Directory API.

    googleapiclient resources wrap an httplib2 connection that must not be shared between
    threads, so a resource is built lazily per thread from `admin_factory`.

    :param admin_factory: Callable returning a `googleapiclient.discovery.Resource` for the
        'admin' 'directory_v1' API.
    """

    def __init__(self, admin_factory: Callable[[], Resource]):
        self._admin_factory = admin_factory
        self._local = threading.local()

    @property
    def admin(self) -> Resource:
        admin = getattr(self._local, "admin", None)
        if admin is None:
            admin = self._admin_factory()
            self._local.admin = admin
        return admin

    @timeit
    def get_members_for_group(self, group_email: str) -> list[dict[str, Any]]:
        """
        Get every page of direct members for one group.

        :param group_email: The email address of the group
        :return: Raw member resources, in the order the API returned them.
        """
        request = self.admin.members().list(
            groupKey=group_email,
            maxResults=MEMBERS_PAGE_SIZE,
        )
        members: list[dict[str, Any]] = []
        while request is not None:
            resp = request.execute(num_retries=GOOGLE_API_NUM_RETRIES)
            members = members + resp.get("members", [])
            request = self.admin.members().list_next(request, resp)
        return members

    def list_members(self, group_email: str) -> list[Member]:
        try:
            raw_members = self.get_members_for_group(group_email)
        except HttpError as e:
            status = e.resp.status if e.resp is not None else None
            if status in (401, 403):
                logger.error(
                    "Directory API denied access to group %s. Make sure the service account has domain-wide "
                    "delegation with the admin.directory.group.readonly and "
                    "admin.directory.group.member.readonly scopes, and that the delegated admin can read groups.",
                    group_email,
                )
                raise AuthError(f"Directory API denied access to group {group_email}: {e}") from e
            raise ResolutionError(
                group_email,
                f"Unable to list members of group {group_email} (status {status}): {e}",
            ) from e
        except RefreshError as e:
            raise AuthError(f"Unable to refresh directory credentials: {e}") from e
        except TransportError as e:
            raise AuthError(f"Unable to reach the token endpoint for directory credentials: {e}") from e
        except (httplib2.HttpLib2Error, OSError) as e:
            raise ResolutionError(group_email, f"Unable to reach the Directory API for {group_email}: {e}") from e
        members = transform_members(raw_members)
        logger.debug("Group %s has %d direct members.", group_email, len(members))
        return members


class FakeDirectoryClient:
    """
    Stands in for the Directory API: every group has exactly one user, `FAKE_MEMBER_EMAIL`.
    Lets the rest of the pipeline run in integration environments without Google credentials.
    """

    def __init__(self, email: str = FAKE_MEMBER_EMAIL):
        self.email = email

    def list_members(self, group_email: str) -> list[Member]:
        logger.debug("Returning fake membership for group %s.", group_email)
        return [Member(email=self.email, kind=MemberKind.USER)]
