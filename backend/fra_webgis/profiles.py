# Upstream data flavours served by the WebGIS API.
# Each profile names its data endpoint, the property holding the category,
# the property (or properties) holding the stable id, and the style table.
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from .models import LayerStyle
from .styles import StyleTable, solid_style


@dataclass(frozen=True)
class DataProfile:
    name: str
    data_path: str
    category_field: str
    id_fields: Tuple[str, ...]
    styles: Dict[str, LayerStyle] = field(default_factory=dict)
    fallback_style: Optional[LayerStyle] = None
    status_path: Optional[str] = None
    export_prefix: str = "features"
    noun: str = "features"

    def style_table(self) -> StyleTable:
        return StyleTable(self.styles, fallback=self.fallback_style)


# ── Land use (single classified scene, Telangana)
LANDUSE_STYLES = {
    "water": solid_style("#0066cc"),
    "forest": solid_style("#00aa00"),
    "agriculture": solid_style("#ffaa00"),
}

# ── Land use (India-wide classes)
INDIA_STYLES = {
    "water": solid_style("#0066cc"),
    "forest_dense": solid_style("#00aa00"),
    "forest_open": solid_style("#66cc00"),
    "agriculture_irrigated": solid_style("#ffaa00"),
    "agriculture_rainfed": solid_style("#ffcc66"),
    "urban": solid_style("#cc0000"),
    "grassland": solid_style("#99cc00"),
    "wasteland": solid_style("#cc9900"),
    "wetland": solid_style("#006699"),
    "mangrove": solid_style("#009966"),
    "fra_area": solid_style("#9900cc", fill_opacity=0.8, weight=3),
}

# ── FRA claims: IFR (individual), CFR (community forest), CR (community resource)
FRA_STYLES = {
    "IFR": solid_style("#007bff"),
    "CFR": solid_style("#28a745"),
    "CR": solid_style("#ffc107"),
}
FRA_UNKNOWN_STYLE = solid_style("#6c757d", fill_opacity=0.5, weight=1)

PROFILES: Dict[str, DataProfile] = {
    "landuse": DataProfile(
        name="landuse",
        data_path="/data",
        category_field="class",
        id_fields=("class_id",),
        styles=LANDUSE_STYLES,
        status_path="/status",
        export_prefix="land_use",
        noun="land use features",
    ),
    "india": DataProfile(
        name="india",
        data_path="/api/data",
        category_field="class",
        id_fields=("class_id", "claim_id", "id"),
        styles=INDIA_STYLES,
        fallback_style=INDIA_STYLES["fra_area"],
        export_prefix="india_land_use",
    ),
    "fra": DataProfile(
        name="fra",
        data_path="/api/claims",
        category_field="fra_type",
        id_fields=("claim_id",),
        styles=FRA_STYLES,
        fallback_style=FRA_UNKNOWN_STYLE,
        export_prefix="fra_claims",
        noun="claims",
    ),
}


def get_profile(name: str) -> DataProfile:
    try:
        return PROFILES[name.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown data profile '{name}'; expected one of {', '.join(sorted(PROFILES))}"
        ) from None
