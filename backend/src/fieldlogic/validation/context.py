"""Context handed to custom validator functions."""

from collections.abc import Mapping
from typing import Any

from fieldlogic.engine import paths


class ValidatorContext:
    """Read access for a validator running on one field instance.

    Validators see their own value and look other fields up by path. The
    form value as a whole is not exposed, so whatever a validator reads, its
    outcomes belong to `field_path`.

    Attributes:
        field_path: Concrete path of the field being validated
        scope: Path of the innermost enclosing array item, "" at root
        external_data: Read-only external state
    """

    __slots__ = ("field_path", "scope", "external_data", "_root")

    def __init__(
        self,
        field_path: str,
        scope: str,
        root_value: Mapping[str, Any],
        external_data: Mapping[str, Any] | None = None,
    ):
        self.field_path = field_path
        self.scope = scope
        self.external_data = external_data if external_data is not None else {}
        self._root = root_value

    def __repr__(self) -> str:
        return f"ValidatorContext(field_path={self.field_path!r}, scope={self.scope!r})"

    def value(self) -> Any:
        """Value of the field being validated."""
        return paths.get_in(self._root, self.field_path)

    def value_of(self, path: str) -> Any:
        """Value of another field, relative to the array item unless `$root.`."""
        return paths.get_in(self._root, paths.resolve(path, self.scope))
