from dataclasses import dataclass
from typing import Any, Mapping

from ..db.models import UserRole


class InvalidPrincipal(Exception):
    pass


@dataclass(frozen=True, slots=True)
class Principal:
    """The authenticated caller, resolved once per request."""

    user_id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


def principal_from_claims(claims: Mapping[str, Any]) -> Principal:
    user_id = claims.get("user_id")
    role = claims.get("role")
    if user_id is None or role is None:
        raise InvalidPrincipal("Token is missing user_id or role")
    try:
        return Principal(user_id=int(user_id), role=UserRole(role))
    except ValueError as exc:
        raise InvalidPrincipal("Token carries an unknown user or role") from exc
