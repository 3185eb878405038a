from rbacsync.exceptions import ResolutionError
from rbacsync.models import Member
from rbacsync.models import MemberKind


def user(email: str) -> Member:
    return Member(email=email, kind=MemberKind.USER)


def group(email: str) -> Member:
    return Member(email=email, kind=MemberKind.GROUP)


class InMemoryDirectoryClient:
    """
    Directory client backed by a dict of group email -> direct members. Groups listed in
    `failing` raise a ResolutionError. Every lookup is recorded in `calls`.
    """

    def __init__(self, groups: dict[str, list[Member]], failing: tuple[str, ...] = ()):
        self.groups = groups
        self.failing = failing
        self.calls: list[str] = []

    def list_members(self, group_email: str) -> list[Member]:
        self.calls.append(group_email)
        if group_email in self.failing:
            raise ResolutionError(group_email, f"boom listing {group_email}")
        return list(self.groups.get(group_email, []))
