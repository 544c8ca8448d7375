"""
Access policy for user-scoped data.

Every decision about a caller touching data that belongs to a user (their
profile, progress, programs, assignments, medical record) goes through
`evaluate()`. Route guards and handlers never compare roles by hand.

Rules, first match wins:

    superuser   everything
    owner       the caller is the user the data belongs to (read/write only)
    role        the caller's role is in the route's allowed roles
    therapist   the owner is in the caller's assigned_patients (read/write/review)
    hospital    the owner's hospital_id is the caller's id
"""
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

SUPERUSER = "superuser"
HOSPITAL = "hospital"
ADMIN = "admin"
THERAPIST = "therapist"
CHILD = "child"

RESTRICTED_ROLES = (SUPERUSER, HOSPITAL)

# a hospital acts as admin for anything scoped to these roles
HOSPITAL_DELEGATED_ROLES = frozenset({HOSPITAL, THERAPIST, CHILD})

READ = "read"
WRITE = "write"
REVIEW = "review"
MANAGE = "manage"

OWNER_ACTIONS = frozenset({READ, WRITE})
THERAPIST_ACTIONS = frozenset({READ, WRITE, REVIEW})


@dataclass(frozen=True)
class Caller:
    id: str
    role: str
    assigned_patients: FrozenSet[str] = frozenset()

    @classmethod
    def from_user(cls, user: Dict[str, Any]) -> "Caller":
        return cls(
            id=str(user["_id"]),
            role=user.get("role", CHILD),
            assigned_patients=frozenset(str(p) for p in user.get("assigned_patients") or []),
        )


@dataclass(frozen=True)
class Resource:
    """Data owned by one user. hospital_id is the owner's hospital, if known."""
    owner_id: Optional[str]
    hospital_id: Optional[str] = None

    @classmethod
    def for_user(cls, user: Optional[Dict[str, Any]], owner_id: Optional[str] = None) -> "Resource":
        if user is None:
            return cls(owner_id=owner_id)
        hospital_id = user.get("hospital_id")
        return cls(owner_id=str(user["_id"]), hospital_id=str(hospital_id) if hospital_id else None)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    rule: str

    def __bool__(self) -> bool:
        return self.allowed


def role_permits(role: str, allowed_roles: Iterable[str]) -> bool:
    allowed = set(allowed_roles)
    if role == SUPERUSER:
        return True
    if role == HOSPITAL and allowed & HOSPITAL_DELEGATED_ROLES:
        return True
    return role in allowed


Rule = Callable[[Caller, Resource, str, Tuple[str, ...]], bool]


def _superuser(caller, resource, action, allowed_roles):
    return caller.role == SUPERUSER


def _owner(caller, resource, action, allowed_roles):
    return resource.owner_id is not None and caller.id == resource.owner_id and action in OWNER_ACTIONS


def _role(caller, resource, action, allowed_roles):
    return caller.role in allowed_roles


def _assigned_therapist(caller, resource, action, allowed_roles):
    return (
        caller.role == THERAPIST
        and action in THERAPIST_ACTIONS
        and resource.owner_id in caller.assigned_patients
    )


def _same_hospital(caller, resource, action, allowed_roles):
    return caller.role == HOSPITAL and resource.hospital_id is not None and resource.hospital_id == caller.id


RULES: List[Tuple[str, Rule]] = [
    ("superuser", _superuser),
    ("owner", _owner),
    ("role", _role),
    ("therapist", _assigned_therapist),
    ("hospital", _same_hospital),
]


def evaluate(caller: Caller, resource: Resource, action: str = READ,
             allowed_roles: Iterable[str] = ()) -> Decision:
    roles = tuple(allowed_roles)
    for name, rule in RULES:
        if rule(caller, resource, action, roles):
            return Decision(True, name)
    return Decision(False, "denied")
