import pytest

from gridmon.services.geo import EARTH_RADIUS_KM, distance_km, path_length_km

# ============================================================
# HAVERSINE
# ============================================================

@pytest.mark.parametrize("case", [
    {"id": "equator_one_degree", "a": (0.0, 0.0), "b": (0.0, 1.0), "expect_km": 111.195},
    {"id": "meridian_one_degree", "a": (0.0, 0.0), "b": (1.0, 0.0), "expect_km": 111.195},
    {"id": "pole_to_pole", "a": (90.0, 0.0), "b": (-90.0, 0.0), "expect_km": 20015.087},
    {"id": "antimeridian_wrap", "a": (0.0, 179.5), "b": (0.0, -179.5), "expect_km": 111.195},
], ids=lambda c: c["id"])
def test_distance_known_values(case):
    (lat1, lon1), (lat2, lon2) = case["a"], case["b"]
    assert distance_km(lat1, lon1, lat2, lon2) == pytest.approx(case["expect_km"], abs=0.01)


def test_distance_is_zero_for_same_point():
    assert distance_km(52.52, 13.405, 52.52, 13.405) == 0.0


def test_distance_is_symmetric():
    a = (40.7128, -74.0060)
    b = (34.0522, -118.2437)
    assert distance_km(*a, *b) == pytest.approx(distance_km(*b, *a), rel=1e-12)


def test_distance_never_exceeds_half_circumference():
    d = distance_km(10.0, 20.0, -10.0, -160.0)
    assert d <= EARTH_RADIUS_KM * 3.141592653589793 + 1e-6


# ============================================================
# PATH LENGTH
# ============================================================

def test_path_length_empty_and_single_point():
    assert path_length_km([]) == 0.0
    assert path_length_km([(1.0, 2.0)]) == 0.0


def test_path_length_is_additive():
    pts = [(0.0, 0.0), (0.0, 1.0), (1.0, 1.0), (1.0, 2.0)]
    total = path_length_km(pts)
    split = path_length_km(pts[:3]) + path_length_km(pts[2:])
    assert total == pytest.approx(split, rel=1e-12)
