"""Core types for fieldlogic validation."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ValidationOutcome:
    """A single validation failure.

    Outcomes carry a machine-readable kind and interpolation params, never
    message text; MessageResolver turns them into messages.

    Attributes:
        kind: Error kind (e.g. "required", "minLength", "passwordMismatch")
        field_path: Concrete path of the field the error belongs to
        params: Values for message interpolation (e.g. {"requiredLength": 8})
    """

    kind: str
    field_path: str
    params: dict[str, Any] = field(default_factory=dict, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "fieldPath": self.field_path, "params": dict(self.params)}
