"""
Acting-user roles and permission checks

Authentication itself happens upstream; the session middleware places the
signed-in user on `request.state.actor`.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from fastapi import HTTPException, Request

from .exceptions import Forbidden

logger = logging.getLogger(__name__)


class Role(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    FINANCE = "FINANCE"
    SALES_OFFICER = "SALES_OFFICER"
    INVENTORY_MANAGER = "INVENTORY_MANAGER"
    # Scheduled jobs inside the application
    SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class Actor:
    id: Optional[int]
    role: str
    email: Optional[str] = None


SYSTEM_ACTOR = Actor(id=None, role=Role.SYSTEM.value)


def has_role(actor: Optional[Actor], allowed: Iterable[Role]) -> bool:
    if actor is None:
        return False
    role = getattr(actor.role, "value", actor.role)
    return role in {r.value for r in allowed}


def require_role(actor: Optional[Actor], allowed: Iterable[Role], action: str) -> None:
    """Raise Forbidden unless the actor holds one of the allowed roles"""
    allowed = list(allowed)
    if not has_role(actor, allowed):
        role = getattr(actor, "role", None)
        logger.warning(f"⛔ Role {role} may not {action}")
        raise Forbidden(f"Role {getattr(role, 'value', role)} is not allowed to {action}")


async def get_current_actor(request: Request) -> Actor:
    """FastAPI dependency returning the signed-in actor"""
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return actor
