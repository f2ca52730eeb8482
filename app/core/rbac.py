"""
Role-Based Access Control (RBAC) dependencies.

Every authorization decision consumes a `Principal` produced by
`verify_token`; raw token payloads are never inspected elsewhere.
"""
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.errors import AuthenticationError, AuthorizationError
from app.core.security import decode_token

security = HTTPBearer(auto_error=False)


class Role(str, Enum):
    CONTRIBUTOR = "CONTRIBUTOR"
    DECISION_MAKER = "DECISION_MAKER"
    ADMIN = "ADMIN"


class Capability(str, Enum):
    EVALUATE = "evaluate"
    VIEW_ALL_EVALUATIONS = "view_all_evaluations"
    VOTE = "vote"
    CHAT = "chat"
    DECIDE = "decide"
    ADMINISTER = "administer"


ROLE_CAPABILITIES = {
    Role.CONTRIBUTOR: frozenset({Capability.EVALUATE}),
    Role.DECISION_MAKER: frozenset({
        Capability.EVALUATE,
        Capability.VIEW_ALL_EVALUATIONS,
        Capability.VOTE,
        Capability.CHAT,
        Capability.DECIDE,
    }),
    Role.ADMIN: frozenset({
        Capability.EVALUATE,
        Capability.VIEW_ALL_EVALUATIONS,
        Capability.ADMINISTER,
    }),
}


@dataclass(frozen=True)
class Principal:
    """Authenticated caller decoded from a bearer token."""
    user_id: int
    email: str
    role: Role
    evaluator_id: Optional[int] = None
    name: Optional[str] = None

    @property
    def capabilities(self) -> FrozenSet[Capability]:
        return ROLE_CAPABILITIES.get(self.role, frozenset())

    def can(self, capability: Capability) -> bool:
        return capability in self.capabilities


def verify_token(token: Optional[str]) -> Principal:
    """Decode a token into a typed principal."""
    if not token:
        raise AuthenticationError(
            "Authentication required",
            {"reason": "No valid authentication token found"},
        )

    payload = decode_token(token)

    user_id = payload.get("sub")
    email = payload.get("email")
    role = payload.get("role")
    if user_id is None or not email or not role:
        raise AuthenticationError(
            "Invalid token",
            {"reason": "Token payload is missing required fields"},
        )

    try:
        role = Role(role)
        user_id = int(user_id)
    except ValueError:
        raise AuthenticationError("Invalid token", {"reason": "Unrecognized token claims"})

    evaluator_id = payload.get("evaluator_id")
    return Principal(
        user_id=user_id,
        email=email,
        role=role,
        evaluator_id=int(evaluator_id) if evaluator_id is not None else None,
        name=payload.get("name"),
    )


def extract_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    """Bearer header first, then the `token` cookie."""
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get("token")


async def get_current_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    return verify_token(extract_token(request, credentials))


class CapabilityChecker:
    """Dependency for checking capability-based access."""

    def __init__(self, capability: Capability, message: str):
        self.capability = capability
        self.message = message

    async def __call__(
        self,
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if not principal.can(self.capability):
            raise AuthorizationError(self.message, {"role": principal.role.value})
        return principal


require_evaluator = CapabilityChecker(Capability.EVALUATE, "Insufficient permissions")
require_decision_maker = CapabilityChecker(Capability.VOTE, "Only decision makers can perform this action")
require_admin = CapabilityChecker(Capability.ADMINISTER, "Admin access required")
require_reviewer = CapabilityChecker(
    Capability.VIEW_ALL_EVALUATIONS, "Only decision makers and admins can perform this action"
)
