from __future__ import annotations

from dataclasses import dataclass

from academy.models.user import User


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    The identity provider owns users; this service only reads the claims.
        user_id: subject from JWT
        roles: platform roles (admin, user)
        name / email: optional profile claims, snapshotted onto certificates
    """

    user_id: str
    roles: frozenset[str]
    name: str = ""
    email: str = ""

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_platform_admin(self) -> bool:
        return "admin" in self.roles

    def can_act_for(self, user_id: str) -> bool:
        return self.user_id == user_id or self.is_platform_admin()

    def to_user(self) -> User:
        return User(
            id=self.user_id,
            email=self.email,
            name=self.name,
            role="admin" if self.is_platform_admin() else "user",
        )
