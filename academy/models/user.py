from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class User:
    """Ledger mirror of an identity owned by the auth provider.

    Refreshed from the access token on every authenticated lifecycle call.
    Only read by certificate issuance (display-name snapshot).
    """

    id: str
    email: str = ""
    name: str = ""
    role: str = "user"

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.id
