"""
Lake reference data and name resolution.

The authority's page names lakes in free text, sometimes without the
Swedish diacritics. LAKE_ALIASES maps each canonical lake name to the
variants we accept for it; LakeResolver turns a source name into a stored
Lake without ever guessing an identity for names it cannot match.
"""

import logging
import math
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from .models import Lake, NewLake
from .text import slugify

logger = logging.getLogger(__name__)

# Canonical name -> recognised spellings. Names with å/ä/ö carry an ASCII variant.
LAKE_ALIASES: Dict[str, FrozenSet[str]] = {
    "Drevviken": frozenset({"Drevviken"}),
    "Långsjön": frozenset({"Långsjön", "Langsjon"}),
    "Magelungen": frozenset({"Magelungen"}),
    "Trekanten": frozenset({"Trekanten"}),
    "Judarn": frozenset({"Judarn"}),
    "Kyrksjön": frozenset({"Kyrksjön", "Kyrksjon"}),
    "Brunnsviken": frozenset({"Brunnsviken"}),
    "Flaten": frozenset({"Flaten"}),
    "Ältasjön": frozenset({"Ältasjön", "Altasjon"}),
    "Norrviken": frozenset({"Norrviken"}),
    "Orlången": frozenset({"Orlången", "Orlangen"}),
    "Råstasjön": frozenset({"Råstasjön", "Rastasjon"}),
    "Bornsjön": frozenset({"Bornsjön", "Bornsjon"}),
    "Tyresö-Flaten": frozenset({"Tyresö-Flaten", "Tyreso-Flaten", "Tyresö Flaten"}),
}

# Reference lakes (approximate centroids) used to seed an empty database
SEED_LAKES: List[NewLake] = [
    NewLake("Drevviken", "drevviken", "Söderort", 59.2230, 18.1460, 4.4, "12-20"),
    NewLake("Långsjön", "langsjon", "Söderort", 59.2880, 17.9950, 0.3, "12-01"),
    NewLake("Magelungen", "magelungen", "Söderort", 59.2440, 18.0570, 2.4, "12-10"),
    NewLake("Trekanten", "trekanten", "Söderort", 59.3120, 18.0180, 0.1, "12-01"),
    NewLake("Judarn", "judarn", "Västerort", 59.3390, 17.9000, 0.1, "12-01"),
    NewLake("Kyrksjön", "kyrksjon", "Västerort", 59.3330, 17.8880, 0.1, "12-01"),
    NewLake("Brunnsviken", "brunnsviken", "Norrort", 59.3620, 18.0430, 1.2, "12-20"),
    NewLake("Flaten", "flaten", "Söderort", 59.2520, 18.1500, 0.6, "12-10"),
    NewLake("Ältasjön", "altasjon", "Nacka", 59.2600, 18.1800, 0.8, "12-10"),
    NewLake("Norrviken", "norrviken", "Sollentuna", 59.4600, 17.9300, 2.7, "12-20"),
    NewLake("Orlången", "orlangen", "Huddinge", 59.2150, 18.0200, 1.6, "12-10"),
    NewLake("Råstasjön", "rastasjon", "Solna", 59.3700, 17.9950, 0.2, "12-01"),
    NewLake("Bornsjön", "bornsjon", "Botkyrka", 59.2420, 17.7200, 6.7, "12-20"),
    NewLake("Tyresö-Flaten", "tyreso-flaten", "Tyresö", 59.2400, 18.2600, 0.4, "12-10"),
]


def variants_for(name: str, aliases: Mapping[str, Iterable[str]] = LAKE_ALIASES) -> FrozenSet[str]:
    """All spellings known for a source name, including the canonical one."""
    if name in aliases:
        return frozenset(aliases[name]) | {name}
    lowered = name.casefold()
    for canonical, names in aliases.items():
        if lowered in {n.casefold() for n in names} or lowered == canonical.casefold():
            return frozenset(names) | {canonical}
    return frozenset({name})


class LakeResolver:
    """
    Resolve free-text lake names against stored lakes.

    Precedence, each pass over every lake, first hit wins:
    1. a known variant equals the lake name (case-insensitive)
    2. a variant contains the lake name or the lake name contains it
    3. the slugified source name is contained in the lake slug
    """

    def __init__(
        self,
        lakes: Iterable[Lake],
        aliases: Mapping[str, Iterable[str]] = LAKE_ALIASES
    ) -> None:
        self.lakes = list(lakes)
        self.aliases = aliases
        self.unmatched: List[str] = []

    def resolve(self, source_name: str) -> Optional[Lake]:
        lake = resolve_lake(source_name, self.lakes, self.aliases)
        if lake is None:
            self.unmatched.append(source_name)
            logger.warning(f"No lake matches source name: {source_name}")
        return lake


def resolve_lake(
    source_name: str,
    lakes: Iterable[Lake],
    aliases: Mapping[str, Iterable[str]] = LAKE_ALIASES
) -> Optional[Lake]:
    """Pure resolution of one name; see LakeResolver for the precedence."""
    lakes = list(lakes)
    names = [n.casefold() for n in variants_for(source_name, aliases) if n]

    for lake in lakes:
        if lake.name.casefold() in names:
            return lake

    for lake in lakes:
        lake_name = lake.name.casefold()
        if any(name in lake_name or lake_name in name for name in names):
            return lake

    slug = slugify(source_name)
    if slug:
        for lake in lakes:
            if slug in lake.slug:
                return lake

    return None


# =============================================================================
# GeoJSON Import
# =============================================================================

def _outer_ring(geometry: Mapping[str, Any]) -> List[Tuple[float, float]]:
    if geometry.get("type") == "Polygon":
        return [tuple(p) for p in geometry["coordinates"][0]]
    if geometry.get("type") == "MultiPolygon":
        # Largest polygon by vertex count
        polygons = geometry["coordinates"]
        return [tuple(p) for p in max(polygons, key=lambda poly: len(poly[0]))[0]]
    raise ValueError(f"Unsupported geometry type: {geometry.get('type')}")


def polygon_centroid(ring: List[Tuple[float, float]]) -> Tuple[float, float]:
    """Centroid (lat, lon) of a closed lon/lat ring."""
    points = ring[:-1] if len(ring) > 1 and ring[0] == ring[-1] else ring
    lon = sum(p[0] for p in points) / len(points)
    lat = sum(p[1] for p in points) / len(points)
    return lat, lon


def polygon_area_km2(ring: List[Tuple[float, float]]) -> float:
    """Approximate area via the shoelace formula on an equirectangular projection."""
    lat0 = math.radians(sum(p[1] for p in ring) / len(ring))
    km_per_deg = 111.32
    xs = [p[0] * km_per_deg * math.cos(lat0) for p in ring]
    ys = [p[1] * km_per_deg for p in ring]
    total = 0.0
    for i in range(len(ring) - 1):
        total += xs[i] * ys[i + 1] - xs[i + 1] * ys[i]
    return abs(total) / 2


def lakes_from_geojson(collection: Mapping[str, Any]) -> List[NewLake]:
    """Build lake records from a FeatureCollection of named water polygons."""
    lakes = []
    for feature in collection.get("features", []):
        properties = feature.get("properties") or {}
        name = properties.get("name")
        geometry = feature.get("geometry")
        if not name or not geometry:
            continue
        try:
            ring = _outer_ring(geometry)
            lat, lon = polygon_centroid(ring)
            area = round(polygon_area_km2(ring), 2)
        except (ValueError, KeyError, IndexError, ZeroDivisionError) as e:
            logger.warning(f"Skipping {name}: {e}")
            continue

        lakes.append(NewLake(
            name=name,
            slug=properties.get("slug") or slugify(name),
            region=properties.get("region"),
            latitude=lat,
            longitude=lon,
            area_km2=area,
            typical_freeze_date=properties.get("typical_freeze_date"),
            geometry=dict(geometry),
        ))
    return lakes
