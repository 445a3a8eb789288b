from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class LayerStyle(BaseModel):
    """Leaflet-style path options for one category layer."""

    color: str
    fillColor: str
    fillOpacity: float = 0.7
    weight: float = 2.0

    model_config = ConfigDict(frozen=True)

    @field_validator("fillOpacity")
    @classmethod
    def validate_fill_opacity(cls, value: float) -> float:
        if not (0.0 <= value <= 1.0):
            raise ValueError("fillOpacity must be between 0.0 and 1.0")
        return value

    @field_validator("weight")
    @classmethod
    def validate_weight(cls, value: float) -> float:
        if value < 0:
            raise ValueError("weight must be non-negative")
        return value

    @field_validator("color", "fillColor")
    @classmethod
    def validate_hex_color(cls, value: str) -> str:
        hex_value = value.strip()
        if not hex_value.startswith('#') or len(hex_value) != 7:
            raise ValueError("Color values must be provided in #RRGGBB format")
        try:
            int(hex_value[1:], 16)
        except ValueError:
            raise ValueError("Color values must be valid hexadecimal digits") from None
        return hex_value.lower()


class Feature(BaseModel):
    """A validated feature: geometry, properties, plus the resolved id and category."""

    id: str
    category: Optional[str] = None
    geometry: Optional[Dict[str, Any]] = None
    properties: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "Feature",
            "id": self.id,
            "geometry": self.geometry,
            "properties": dict(self.properties),
        }


class LayerHint(BaseModel):
    """Initial display name and visibility for a category, from ``/api/layers``."""

    name: str
    visible: bool = True


class StatusPayload(BaseModel):
    data_available: bool = False


class CategoryCount(BaseModel):
    category: Optional[str]
    count: int


class FeatureSummary(BaseModel):
    """Counts describing the currently displayed layer set."""

    total: int
    categories: List[CategoryCount]
    fallback_categories: List[Optional[str]] = Field(default_factory=list)
    filters: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @property
    def per_category(self) -> Dict[Optional[str], int]:
        return {entry.category: entry.count for entry in self.categories}

    def count_of(self, category: Optional[str]) -> int:
        return self.per_category.get(category, 0)


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


class DetailRecord(BaseModel):
    """Single-entity record as returned by the detail endpoint.

    The payload is copied into read-only mappings and tuples on validation,
    so a cached record cannot be changed through any caller's reference.
    """

    entity_id: str
    data: Mapping[str, Any]

    model_config = ConfigDict(frozen=True)

    @field_validator("data", mode="after")
    @classmethod
    def freeze_data(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return _freeze(value)

    @field_serializer("data")
    def serialize_data(self, value: Mapping[str, Any]) -> Dict[str, Any]:
        return _thaw(value)


class StatusMessage(BaseModel):
    level: str = "info"
    message: str = ""


# Service request/response bodies

class VisibilityRequest(BaseModel):
    visible: bool


class LayerView(BaseModel):
    category: Optional[str]
    name: Optional[str] = None
    count: int
    visible: bool
    style: LayerStyle
    fallbackStyle: bool = False
    bounds: Optional[Tuple[float, float, float, float]] = None


class SessionStatus(BaseModel):
    state: str
    status: StatusMessage
    profile: str
    filters: Dict[str, str]


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    request_id: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: Optional[str] = None
