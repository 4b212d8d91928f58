"""
Geographic enrichment for NYC Open Data records.

Adds borough, Community District (CD), Neighborhood Tabulation Area (NTA)
and BBL to raw rows using only the fields the datasets already carry:

- 311 rows have borough, "community_board" ("14 BROOKLYN") and coordinates
- HPD rows have a borough id plus block/lot, but no coordinates or CD
- DOT closure rows have a borough letter code and a GeoJSON geometry

The CD -> NTA table maps each district to its primary NTA. Some districts
span several NTAs; one NTA per CD keeps coverage above 95% at the cost of
precision inside those districts.
"""

import json
import logging
import re
from dataclasses import asdict, dataclass
from importlib import resources
from typing import Any, Dict, List, Mapping, Optional, Tuple

from shapely.errors import GeometryTypeError
from shapely.geometry import shape

logger = logging.getLogger(__name__)


def _load_table() -> Dict[str, Any]:
    path = resources.files("core") / "data" / "community_districts.json"
    return json.loads(path.read_text(encoding="utf-8"))


_TABLE = _load_table()

BOROUGH_ID_TO_NAME: Dict[str, str] = dict(_TABLE["boroughs"])
BOROUGH_NAME_TO_ID: Dict[str, str] = {name: bid for bid, name in BOROUGH_ID_TO_NAME.items()}
CD_TO_NTAS: Dict[str, List[str]] = {
    cd: list(ntas) for cd, ntas in _TABLE["community_district_ntas"].items()
}

# DOT uses letter codes; some feeds use K for Brooklyn
DOT_BOROUGH_CODES = {
    "M": "MANHATTAN",
    "X": "BRONX",
    "B": "BROOKLYN",
    "K": "BROOKLYN",
    "Q": "QUEENS",
    "S": "STATEN ISLAND",
}

_BBL_RE = re.compile(r"^([1-5])(\d{5})(\d{4})$")


@dataclass(frozen=True)
class GeoInfo:
    borough: Optional[str] = None
    borough_id: Optional[str] = None
    community_district: Optional[str] = None
    nta: Optional[str] = None
    bbl: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BBL:
    borough_id: str
    block: str
    lot: str

    def __str__(self) -> str:
        return f"{self.borough_id}{self.block}{self.lot}"


# ============================================================================
# Pure helpers
# ============================================================================

def parse_bbl(value: Any) -> Optional[BBL]:
    """
    Parse a 10-digit Borough-Block-Lot identifier.

    Accepts ints, strings and Socrata's "1012340056.00000000" decimals.
    Returns None for anything that is not a valid BBL.
    """
    if value is None:
        return None
    text = str(value).strip()
    if "." in text:
        whole, _, fraction = text.partition(".")
        if fraction.strip("0"):
            return None
        text = whole
    match = _BBL_RE.match(text)
    if not match:
        return None
    return BBL(*match.groups())


def format_bbl(borough_id: Any, block: Any, lot: Any) -> Optional[str]:
    """Build a BBL from its parts, zero-padding block (5) and lot (4)."""
    try:
        bbl = f"{int(borough_id)}{int(block):05d}{int(lot):04d}"
    except (TypeError, ValueError):
        return None
    return bbl if parse_bbl(bbl) else None


def validate_nyc_coordinates(latitude: float, longitude: float) -> bool:
    """Check if coordinates fall inside the five boroughs' bounding box."""
    MIN_LAT = 40.47
    MAX_LAT = 40.93
    MIN_LON = -74.27
    MAX_LON = -73.68

    return MIN_LAT <= latitude <= MAX_LAT and MIN_LON <= longitude <= MAX_LON


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _first_coordinate(geometry: Any) -> Optional[Tuple[float, float]]:
    """First (lon, lat) of a shapely geometry of any type."""
    if geometry.is_empty:
        return None
    if hasattr(geometry, "geoms"):
        return _first_coordinate(geometry.geoms[0])
    if hasattr(geometry, "exterior"):
        return geometry.exterior.coords[0][:2]
    return geometry.coords[0][:2]


def geometry_point(geojson: Any) -> Tuple[Optional[float], Optional[float]]:
    """Representative (lat, lon) of a GeoJSON geometry; (None, None) if unusable."""
    if not isinstance(geojson, Mapping) or "type" not in geojson:
        return None, None
    try:
        point = _first_coordinate(shape(geojson))
    except (GeometryTypeError, ValueError, TypeError, IndexError, KeyError, AttributeError) as e:
        logger.debug(f"Could not read geometry: {e}")
        return None, None
    if point is None:
        return None, None
    lon, lat = point
    return float(lat), float(lon)


def ntas_for_cd(cd: str) -> List[str]:
    """All NTAs recorded for a Community District (primary first)."""
    return list(CD_TO_NTAS.get(cd, []))


def borough_id_for(borough: Optional[str]) -> Optional[str]:
    if not borough:
        return None
    return BOROUGH_NAME_TO_ID.get(str(borough).strip().upper())


def borough_name_for(borough_id: Any) -> Optional[str]:
    if borough_id is None:
        return None
    return BOROUGH_ID_TO_NAME.get(str(borough_id).strip())


# ============================================================================
# Enricher
# ============================================================================

class GeoEnricher:
    """
    Memoizing geo enrichment.

    Results are cached for the lifetime of the instance with no eviction.
    The key space is bounded: coordinates repeat heavily in 311 data and the
    (borough, CD) fallback has about 60 combinations.
    """

    def __init__(self):
        self._memo: Dict[Tuple[Any, ...], GeoInfo] = {}
        self.hits = 0
        self.misses = 0

    def enrich(
        self,
        borough: Optional[str] = None,
        community_district: Optional[str] = None,
        bbl: Any = None,
        lat: Any = None,
        lon: Any = None,
    ) -> GeoInfo:
        """
        Enrich from a borough name/id and a community-district string.

        Args:
            borough: Borough name ("BROOKLYN") or id ("3")
            community_district: "14 BROOKLYN", "14", or a 3-digit code "314"
            bbl: Optional BBL value
            lat: Optional latitude
            lon: Optional longitude

        Returns:
            GeoInfo with unavailable fields set to None
        """
        lat_f, lon_f = _to_float(lat), _to_float(lon)
        if lat_f is None or lon_f is None or not validate_nyc_coordinates(lat_f, lon_f):
            lat_f = lon_f = None

        borough_name = borough_name_for(borough) or (
            str(borough).strip().upper() if borough else None
        )
        borough_id = borough_id_for(borough_name)
        if borough_id is None:
            borough_name = None

        parsed_bbl = parse_bbl(bbl)
        cd_raw = str(community_district or "").strip().upper()

        # Rows at one point can still differ in borough, CD and BBL
        if lat_f is not None:
            key: Optional[Tuple[Any, ...]] = (
                "coord", lat_f, lon_f, borough_id, cd_raw, str(parsed_bbl) if parsed_bbl else None,
            )
        elif parsed_bbl is None:
            key = ("cd", borough_id, cd_raw)
        else:
            key = None

        if key is not None and key in self._memo:
            self.hits += 1
            return self._memo[key]
        self.misses += 1

        cd = self._community_district_code(borough_id, community_district)
        nta = CD_TO_NTAS[cd][0] if cd in CD_TO_NTAS else None

        info = GeoInfo(
            borough=borough_name,
            borough_id=borough_id,
            community_district=cd,
            nta=nta,
            bbl=str(parsed_bbl) if parsed_bbl else None,
            lat=lat_f,
            lon=lon_f,
        )
        if key is not None:
            self._memo[key] = info
        return info

    @staticmethod
    def _community_district_code(borough_id: Optional[str], raw: Any) -> Optional[str]:
        if raw is None or borough_id is None:
            return None
        match = re.match(r"^\s*(\d+)", str(raw))
        if not match:
            return None
        digits = match.group(1)
        if len(digits) == 3:
            return digits if digits[0] == borough_id else None
        return f"{borough_id}{int(digits):02d}"

    # ------------------------------------------------------------------
    # Per-dataset adapters
    # ------------------------------------------------------------------

    def enrich_311(self, row: Mapping[str, Any]) -> GeoInfo:
        return self.enrich(
            borough=row.get("borough"),
            community_district=row.get("community_board"),
            bbl=row.get("bbl"),
            lat=row.get("latitude"),
            lon=row.get("longitude"),
        )

    def enrich_hpd(self, row: Mapping[str, Any]) -> GeoInfo:
        """HPD rows carry a borough id and block/lot but no CD or coordinates."""
        borough_id = row.get("boroid") or row.get("borough_code")
        bbl = row.get("bbl") or format_bbl(borough_id, row.get("block"), row.get("lot"))
        return self.enrich(
            borough=borough_id,
            community_district=row.get("communityboard"),
            bbl=bbl,
            lat=row.get("latitude"),
            lon=row.get("longitude"),
        )

    def enrich_dot(self, row: Mapping[str, Any]) -> GeoInfo:
        code = str(row.get("borough_code") or "").strip().upper()
        lat, lon = geometry_point(row.get("the_geom"))
        return self.enrich(borough=DOT_BOROUGH_CODES.get(code), lat=lat, lon=lon)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._memo),
            "hits": self.hits,
            "misses": self.misses,
            "capacity": "unlimited",
            "type": "in_memory",
        }

    def clear(self) -> None:
        self._memo.clear()
        self.hits = 0
        self.misses = 0
