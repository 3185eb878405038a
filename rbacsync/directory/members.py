import logging
from typing import Iterable
from typing import Iterator
from typing import Optional

from rbacsync.directory.client import DirectoryClient
from rbacsync.exceptions import CyclicGroupError
from rbacsync.models import Member

logger = logging.getLogger(__name__)


def dedupe_members(members: Iterable[Member]) -> list[Member]:
    """
    Drop repeated emails, keeping the first occurrence in place.

    The subject order written to the cluster follows this order, so it has to stay stable
    from one pass to the next.
    """
    seen: set[str] = set()
    result: list[Member] = []
    for member in members:
        if member.email in seen:
            continue
        seen.add(member.email)
        result.append(member)
    return result


class MembershipResolver:
    """
    Expands a directory group into its effective users, following nested groups depth-first.

    Any failure while listing a group, at any depth, propagates and fails the whole
    resolution: callers never see a partial member list.
    """

    def __init__(self, directory_client: DirectoryClient):
        self.directory_client = directory_client

    def resolve(self, group_email: str) -> list[Member]:
        """
        :param group_email: The group to expand.
        :return: Deduplicated users in first-seen order.
        :raises ResolutionError: if a member page cannot be fetched or the groups form a cycle.
        :raises AuthError: if the directory rejects our credentials.
        """
        resolved: dict[str, list[Member]] = {}
        members = dedupe_members(self._expand(group_email, resolved))
        logger.debug(
            "Resolved group %s to %d users across %d groups.",
            group_email,
            len(members),
            len(resolved),
        )
        return members

    def _expand(self, group_email: str, resolved: dict[str, list[Member]]) -> list[Member]:
        """
        Depth-first expansion with an explicit stack, so chain depth is not bound by the
        interpreter recursion limit. Each frame holds a group, the iterator over its direct
        members and the users collected for it so far.
        """
        path: list[str] = [group_email]
        stack: list[tuple[str, Iterator[Member], list[Member]]] = [
            (group_email, iter(self.directory_client.list_members(group_email)), []),
        ]
        while stack:
            current, remaining, users = stack[-1]
            for member in remaining:
                if not member.is_group:
                    users.append(member)
                    continue
                if member.email in path:
                    raise CyclicGroupError(path[path.index(member.email):] + [member.email])
                # Reached again through another parent; reuse the members from this resolution.
                cached: Optional[list[Member]] = resolved.get(member.email)
                if cached is not None:
                    users.extend(cached)
                    continue
                path.append(member.email)
                stack.append((member.email, iter(self.directory_client.list_members(member.email)), []))
                break
            else:
                stack.pop()
                path.pop()
                resolved[current] = users
                if stack:
                    stack[-1][2].extend(users)
        return resolved[group_email]
