from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol, Sequence, Set, Tuple

from shapely.errors import ShapelyError
from shapely.geometry import shape
from shapely.ops import unary_union

from .models import Feature, LayerHint, LayerStyle
from .styles import StyleTable
from .utils.logging import get_logger

logger = get_logger(__name__)

Category = Optional[str]
VisibilityListener = Callable[[Category, bool], None]


@dataclass(eq=False)
class Layer:
    """All features of one category from a single fetch, plus its visibility."""

    category: Category
    features: Tuple[Feature, ...]
    style: LayerStyle
    visible: bool = True
    fallback_style: bool = False
    name: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.features)

    @cached_property
    def bounds(self) -> Optional[Tuple[float, float, float, float]]:
        """(minx, miny, maxx, maxy) over the features that carry a usable geometry."""
        geoms = []
        for feature in self.features:
            if not feature.geometry:
                continue
            try:
                geom = shape(feature.geometry)
            except (ShapelyError, ValueError, TypeError, KeyError, AttributeError):
                logger.debug("Skipping unreadable geometry", extra={'feature_id': feature.id})
                continue
            if not geom.is_empty:
                geoms.append(geom)
        if not geoms:
            return None
        return tuple(float(v) for v in unary_union(geoms).bounds)  # type: ignore[return-value]

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "FeatureCollection",
            "features": [feature.to_geojson() for feature in self.features],
            "properties": {
                "category": self.category,
                "name": self.name,
                "style": self.style.model_dump(),
                "fallbackStyle": self.fallback_style,
            },
        }


class RenderSurface(Protocol):
    def attach(self, layer: Layer) -> None: ...

    def detach(self, layer: Layer) -> None: ...


class RecordingSurface:
    """In-process render surface that remembers which layers are attached."""

    def __init__(self) -> None:
        self._attached: Dict[int, Layer] = {}

    def attach(self, layer: Layer) -> None:
        self._attached[id(layer)] = layer

    def detach(self, layer: Layer) -> None:
        self._attached.pop(id(layer), None)

    def has_layer(self, layer: Layer) -> bool:
        return id(layer) in self._attached

    def attached_layers(self) -> List[Layer]:
        return list(self._attached.values())


class LayerRegistry:
    """Owns the current layer set and is the only writer to the render surface.

    Visibility preferences outlive individual layer sets: a category the
    user hid stays hidden after the next reload.
    """

    def __init__(self, styles: StyleTable, surface: Optional[RenderSurface] = None):
        self.styles = styles
        self.surface: RenderSurface = surface if surface is not None else RecordingSurface()
        self._layers: Dict[Category, Layer] = {}
        self._preferences: Dict[Category, bool] = {}
        self._names: Dict[Category, str] = {}
        self._listeners: List[VisibilityListener] = []

    def add_listener(self, listener: VisibilityListener) -> None:
        self._listeners.append(listener)

    def seed_preferences(self, hints: Mapping[str, LayerHint]) -> None:
        """Record initial visibility and display names from ``/api/layers``."""
        for category, hint in hints.items():
            self._preferences[category] = hint.visible
            self._names[category] = hint.name

    def replace(self, grouped: Mapping[Category, Sequence[Feature]]) -> None:
        # Build the new set before touching the surface so a stale layer is
        # never attached next to a fresh one.
        new_layers: Dict[Category, Layer] = {}
        for category, features in grouped.items():
            if not features:
                continue
            style, matched = self.styles.lookup(category)
            new_layers[category] = Layer(
                category=category,
                features=tuple(features),
                style=style,
                visible=self._preferences.get(category, True),
                fallback_style=not matched,
                name=self._names.get(category),
            )

        for layer in self._layers.values():
            if layer.visible:
                self.surface.detach(layer)

        self._layers = new_layers
        for layer in new_layers.values():
            self._preferences.setdefault(layer.category, layer.visible)
            if layer.visible:
                self.surface.attach(layer)

        logger.info(
            "Layer set replaced",
            extra={
                'layer_count': len(new_layers),
                'feature_count': sum(layer.count for layer in new_layers.values()),
            }
        )

    def set_visibility(self, category: Category, visible: bool) -> None:
        layer = self._layers.get(category)
        if layer is None:
            logger.debug("Visibility change for unloaded category ignored", extra={'category': category})
            return

        self._preferences[category] = visible
        if layer.visible == visible:
            return

        if visible:
            self.surface.attach(layer)
        else:
            self.surface.detach(layer)
        layer.visible = visible

        for listener in self._listeners:
            listener(category, visible)

    def visible_categories(self) -> Set[Category]:
        return {category for category, layer in self._layers.items() if layer.visible}

    def count_of(self, category: Category) -> int:
        layer = self._layers.get(category)
        return layer.count if layer is not None else 0

    def get(self, category: Category) -> Optional[Layer]:
        return self._layers.get(category)

    def layers(self) -> List[Layer]:
        return list(self._layers.values())

    def categories(self) -> List[Category]:
        return list(self._layers)
