from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from enum import Enum
from typing import Optional


class MemberKind(str, Enum):
    USER = "USER"
    GROUP = "GROUP"


@dataclass(frozen=True)
class Member:
    """
    One directory entry. Identity is the email alone, `kind` only decides whether the entry
    gets expanded further.
    """

    email: str
    kind: MemberKind = field(default=MemberKind.USER, compare=False)

    @property
    def is_group(self) -> bool:
        return self.kind == MemberKind.GROUP


@dataclass(frozen=True)
class SyncTarget:
    namespace: str
    group_email: str

    def __str__(self) -> str:
        return f"{self.namespace}:{self.group_email}"


@dataclass(frozen=True)
class DesiredBinding:
    namespace: str
    name: str
    role_ref_name: str
    subjects: tuple[str, ...]
    synced_at: datetime


@dataclass
class TargetResult:
    target: SyncTarget
    success: bool
    phase: Optional[str] = None
    error: Optional[BaseException] = None
    subject_count: int = 0
