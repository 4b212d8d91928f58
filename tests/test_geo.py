"""Tests for geographic enrichment."""

from core.geo import GeoEnricher, format_bbl, geometry_point, ntas_for_cd, parse_bbl


def test_311_row_gets_cd_and_primary_nta():
    geo = GeoEnricher().enrich_311({
        "borough": "BROOKLYN",
        "community_board": "14 BROOKLYN",
        "latitude": "40.6401",
        "longitude": "-73.9630",
    })

    assert geo.borough == "BROOKLYN"
    assert geo.borough_id == "3"
    assert geo.community_district == "314"
    assert geo.nta == "BK42"
    assert geo.lat == 40.6401
    assert geo.lon == -73.963


def test_multi_nta_district_uses_primary():
    geo = GeoEnricher().enrich(borough="MANHATTAN", community_district="01 MANHATTAN")
    assert geo.nta == "MN01"
    assert ntas_for_cd("101") == ["MN01", "MN02"]


def test_missing_fields_degrade_to_none():
    geo = GeoEnricher().enrich_311({"borough": "Unspecified", "community_board": "0 Unspecified"})

    assert geo.borough is None
    assert geo.community_district is None
    assert geo.nta is None
    assert geo.lat is None


def test_coordinates_outside_nyc_are_dropped():
    geo = GeoEnricher().enrich(borough="QUEENS", lat=42.36, lon=-71.05)
    assert geo.lat is None and geo.lon is None
    assert geo.borough == "QUEENS"


def test_memo_by_coordinates():
    enricher = GeoEnricher()
    row = {"borough": "BRONX", "community_board": "05 BRONX", "latitude": 40.85, "longitude": -73.91}

    first = enricher.enrich_311(row)
    second = enricher.enrich_311(row)

    assert first is second
    stats = enricher.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["size"] == 1

    enricher.clear()
    assert enricher.stats()["size"] == 0


def test_hpd_row_builds_bbl_from_block_and_lot():
    geo = GeoEnricher().enrich_hpd({"boroid": "2", "block": "2345", "lot": "12"})
    assert geo.borough == "BRONX"
    assert geo.bbl == "2023450012"
    assert geo.lat is None


def test_dot_row_uses_letter_code_and_geometry():
    geo = GeoEnricher().enrich_dot({
        "borough_code": "M",
        "the_geom": {
            "type": "MultiLineString",
            "coordinates": [[[-73.99, 40.73], [-73.98, 40.74]]],
        },
    })
    assert geo.borough == "MANHATTAN"
    assert geo.lat == 40.73
    assert geo.lon == -73.99


def test_bad_geometry_is_ignored():
    assert geometry_point({"type": "Nonsense", "coordinates": []}) == (None, None)
    assert geometry_point("POINT (1 2)") == (None, None)


def test_parse_and_format_bbl():
    bbl = parse_bbl("1012340056.00000000")
    assert (bbl.borough_id, bbl.block, bbl.lot) == ("1", "01234", "0056")
    assert parse_bbl(1012340056) == bbl
    assert parse_bbl("6012340056") is None
    assert parse_bbl("abc") is None
    assert format_bbl(3, 45, 7) == "3000450007"
    assert format_bbl(None, 45, 7) is None


def test_rows_at_same_point_keep_their_own_bbl_and_district():
    enricher = GeoEnricher()
    point = {"borough": "MANHATTAN", "latitude": 40.75, "longitude": -73.99}

    first = enricher.enrich_311({**point, "community_board": "05 MANHATTAN", "bbl": "1008350041"})
    second = enricher.enrich_311({**point, "community_board": "04 MANHATTAN", "bbl": "1007600001"})
    repeat = enricher.enrich_311({**point, "community_board": "05 MANHATTAN", "bbl": "1008350041"})

    assert first.bbl == "1008350041"
    assert first.community_district == "105"
    assert second.bbl == "1007600001"
    assert second.community_district == "104"
    assert repeat is first
    assert enricher.stats()["misses"] == 2
