"""Engine error taxonomy.

Every error is raised synchronously before any write reaches the database;
the request session rolls back whatever the workflow had flushed so far.
Each error carries a machine-readable ``rule`` and a human message, the same
pair the API renders for every failure.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clubhouse.services.conflicts import ConflictResult


class OccupancyError(Exception):
    """Base class for all engine errors."""

    status_code = 400

    def __init__(self, rule: str, message: str):
        self.rule = rule
        self.message = message
        super().__init__(message)

    def details(self) -> list[dict]:
        return [{"rule": self.rule, "message": self.message}]


class ValidationError(OccupancyError):
    """Malformed or out-of-range input. May carry several violations at once."""

    status_code = 422

    def __init__(self, rule: str, message: str, violations: list["ValidationError"] | None = None):
        super().__init__(rule, message)
        self.violations = violations or []

    @classmethod
    def collect(cls, violations: list["ValidationError"]) -> "ValidationError":
        if len(violations) == 1:
            return violations[0]
        return cls("validation", " ".join(v.message for v in violations), violations)

    def details(self) -> list[dict]:
        if self.violations:
            return [{"rule": v.rule, "message": v.message} for v in self.violations]
        return super().details()


class ConflictError(OccupancyError):
    """The requested extent intersects an existing claim on one or more resources."""

    status_code = 409

    def __init__(self, message: str, conflicts: list["ConflictResult"] | None = None, rule: str = "conflict"):
        super().__init__(rule, message)
        self.conflicts = conflicts or []

    @classmethod
    def from_results(cls, results: list["ConflictResult"]) -> "ConflictError":
        return cls("; ".join(r.message for r in results), results)

    def details(self) -> list[dict]:
        if self.conflicts:
            return [
                {
                    "rule": f"{r.kind.value}_conflict",
                    "message": r.message,
                    "resource_id": r.resource_id,
                }
                for r in self.conflicts
            ]
        return super().details()


class NotFoundError(OccupancyError):
    """A resource, member, booking or voucher record does not exist."""

    status_code = 404


class StateError(OccupancyError):
    """The claimant or resource is not in a state that allows the operation."""

    status_code = 409
