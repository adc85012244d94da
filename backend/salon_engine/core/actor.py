"""The acting user threaded explicitly through every mutating call."""

from dataclasses import dataclass

from .enums import WorkerRole
from .exceptions import ForbiddenException, ValidationException


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation. Never read from ambient state."""

    id: str
    role: WorkerRole = WorkerRole.STAFF

    def __post_init__(self) -> None:
        if not self.id or not str(self.id).strip():
            raise ValidationException("Actor id is required", code="ACTOR_REQUIRED")
        try:
            object.__setattr__(self, "role", WorkerRole(self.role))
        except ValueError as exc:
            raise ValidationException(f"Unknown actor role: {self.role}", code="INVALID_ROLE") from exc

    @property
    def is_admin(self) -> bool:
        return self.role == WorkerRole.ADMIN

    @property
    def is_manager(self) -> bool:
        return self.role in (WorkerRole.MANAGER, WorkerRole.ADMIN)

    def require_manager(self, action: str) -> None:
        if not self.is_manager:
            raise ForbiddenException(
                f"{action} requires a manager or admin",
                code="INSUFFICIENT_ROLE",
                details={"actor_id": self.id, "role": self.role.value, "action": action},
            )

    def require_admin(self, action: str) -> None:
        if not self.is_admin:
            raise ForbiddenException(
                f"{action} requires an admin",
                code="INSUFFICIENT_ROLE",
                details={"actor_id": self.id, "role": self.role.value, "action": action},
            )
