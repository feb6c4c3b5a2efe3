"""Pydantic models for suggestions, resolved locations and form bindings."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_to_none(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class CityQuery(BaseModel):
    """One settled search request produced by the debouncer."""

    model_config = ConfigDict(frozen=True)

    text: str
    issued_seq: int


class CitySuggestion(BaseModel):
    """A single autocomplete row returned by the search endpoint."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    city: str = Field(min_length=1)
    state: Optional[str] = None
    country: Optional[str] = None
    pincode: Optional[str] = None

    @field_validator("city", mode="before")
    @classmethod
    def _strip_city(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("state", "country", "pincode", mode="before")
    @classmethod
    def _absent(cls, value: object) -> object:
        return _blank_to_none(value)


class LocationRecord(BaseModel):
    """Canonical location for a confirmed city."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    city: str = Field(min_length=1)
    state: Optional[str] = None
    country: Optional[str] = None
    pincode: Optional[str] = None
    pincodes: List[str] = Field(default_factory=list)

    @field_validator("city", mode="before")
    @classmethod
    def _strip_city(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("state", "country", "pincode", mode="before")
    @classmethod
    def _absent(cls, value: object) -> object:
        return _blank_to_none(value)

    @field_validator("pincodes", mode="before")
    @classmethod
    def _clean_pincodes(cls, value: object) -> object:
        if value is None:
            return []
        if isinstance(value, (str, int)):
            value = [value]
        if isinstance(value, list):
            cleaned = [_blank_to_none(item) for item in value]
            return [item for item in cleaned if item is not None]
        return value

    @property
    def candidates(self) -> List[str]:
        """Ordered candidate pincodes, primary first, without duplicates."""
        ordered: List[str] = []
        for pin in ([self.pincode] if self.pincode else []) + self.pincodes:
            if pin not in ordered:
                ordered.append(pin)
        return ordered

    @property
    def is_ambiguous(self) -> bool:
        return len(self.candidates) > 1

    @property
    def primary_pincode(self) -> Optional[str]:
        candidates = self.candidates
        return candidates[0] if candidates else None


class CacheEntry(BaseModel):
    """A cached resolve result and the clock reading at insertion."""

    model_config = ConfigDict(frozen=True)

    key: str
    value: LocationRecord
    inserted_at: float


class FieldBinding(BaseModel):
    """The current value held by one form field of a field group."""

    field_path: str
    current_value: str = ""
