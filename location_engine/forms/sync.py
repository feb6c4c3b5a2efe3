"""Boundary between the engine and whatever holds a form's field values."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

import structlog

from location_engine.storage.models import FieldBinding, LocationRecord

LOGGER = structlog.get_logger(__name__)


class FieldSynchronizer(Protocol):
    """What an arbiter needs from a form to apply or clear a location."""

    def apply_location(self, record: LocationRecord, pincode: Optional[str] = None) -> None:
        ...

    def clear_location(self) -> None:
        ...

    def commit_city(self, text: str) -> None:
        ...


class FormState:
    """Nested dict of field values addressed by dotted paths such as ``address.city``."""

    def __init__(self, values: Optional[Dict[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = values or {}

    def get(self, path: str) -> str:
        node: Any = self._values
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return ""
            node = node[part]
        return "" if node is None else str(node)

    def set(self, path: str, value: str) -> None:
        *parents, leaf = path.split(".")
        node = self._values
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value

    def values(self) -> Dict[str, Any]:
        return self._values


@dataclass(frozen=True)
class FieldPaths:
    city: str
    state: str
    country: str
    pincode: str

    @classmethod
    def under(cls, prefix: str) -> "FieldPaths":
        return cls(
            city=f"{prefix}.city",
            state=f"{prefix}.state",
            country=f"{prefix}.country",
            pincode=f"{prefix}.pincode",
        )

    @property
    def dependent(self) -> List[str]:
        return [self.state, self.country, self.pincode]


class FormFieldSynchronizer:
    """Write resolved values into a :class:`FormState` field group.

    Only state, country and pincode are ever written by ``apply_location`` and
    ``clear_location``; re-validation is requested for exactly those paths.
    """

    def __init__(
        self,
        form: FormState,
        *,
        prefix: str = "address",
        revalidate: Optional[Callable[[Sequence[str]], None]] = None,
    ) -> None:
        self._form = form
        self.paths = FieldPaths.under(prefix)
        self._revalidate = revalidate

    def apply_location(self, record: LocationRecord, pincode: Optional[str] = None) -> None:
        if pincode is None and not record.is_ambiguous:
            pincode = record.primary_pincode
        self._form.set(self.paths.state, record.state or "")
        self._form.set(self.paths.country, record.country or "")
        self._form.set(self.paths.pincode, pincode or "")
        LOGGER.debug("location_applied", city=record.city, pincode=pincode, ambiguous=record.is_ambiguous)
        self._validate()

    def clear_location(self) -> None:
        for path in self.paths.dependent:
            self._form.set(path, "")
        self._validate()

    def commit_city(self, text: str) -> None:
        self._form.set(self.paths.city, text)

    def bindings(self) -> List[FieldBinding]:
        paths = [self.paths.city, *self.paths.dependent]
        return [FieldBinding(field_path=path, current_value=self._form.get(path)) for path in paths]

    def _validate(self) -> None:
        if self._revalidate is not None:
            self._revalidate(list(self.paths.dependent))
