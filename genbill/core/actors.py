from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from genbill.core.errors import ValidationError


class Role(str, Enum):
    ADMINISTRATOR = "administrator"
    OPERATOR = "operator"
    CLIENT = "client"


@dataclass(frozen=True)
class Actor:
    id: int
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMINISTRATOR


def normalize_role(raw_role: str | Role, aliases: Mapping[str, str]) -> Role:
    if isinstance(raw_role, Role):
        return raw_role
    key = (raw_role or "").strip().lower()
    lowered_aliases = {alias.strip().lower(): target for alias, target in aliases.items()}
    target = lowered_aliases.get(key, key)
    try:
        return Role(target.strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown role '{raw_role}'") from None


def build_actor(actor_id: int, raw_role: str | Role, aliases: Mapping[str, str]) -> Actor:
    return Actor(id=int(actor_id), role=normalize_role(raw_role, aliases))
