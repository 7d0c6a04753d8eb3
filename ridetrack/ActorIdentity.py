from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    RIDER = "rider"
    DRIVER = "driver"


@dataclass(frozen=True)
class ActorIdentity:
    id: str
    role: Role

    @classmethod
    def generate(cls, role: Role) -> "ActorIdentity":
        return cls(id=f"{role.value}_{uuid.uuid4().hex[:12]}", role=role)

    @property
    def id_field(self) -> str:
        # key used for the actor id in outbound location messages
        return "driverId" if self.role is Role.DRIVER else "riderId"
