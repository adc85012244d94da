# backend/salon_engine/api/dependencies/actor.py
"""
Acting-user dependency.

Authentication happens upstream; this layer only turns the forwarded
identity headers into an explicit Actor that every mutating service call
receives.
"""

from typing import Optional

from fastapi import Header

from ...core.actor import Actor
from ...core.enums import WorkerRole


def get_actor(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
    x_actor_role: Optional[str] = Header(None, alias="X-Actor-Role"),
) -> Actor:
    """
    Resolve the acting user from request headers.

    Raises:
        ValidationException: Missing actor id or unknown role (400)
    """
    role = (x_actor_role or WorkerRole.STAFF.value).strip().lower()
    return Actor(id=(x_actor_id or "").strip(), role=role)
