"""Tests for sub-polygon edge to frontage line matching."""

from shapely.geometry import LineString, Point

from siteworks.services.edge_matcher import first_match, matches
from tests.factories import frontage_line

FRONTAGE = LineString([(0, 0), (100, 0)])


def test_edge_along_line_matches():
    assert matches((Point(10, 0), Point(60, 0)), FRONTAGE, 2.0)


def test_direction_does_not_matter():
    assert matches((Point(60, 0.5), Point(10, -0.5)), FRONTAGE, 2.0)


def test_one_end_beyond_tolerance_does_not_match():
    assert not matches((Point(10, 0), Point(10, 50)), FRONTAGE, 2.0)


def test_only_end_points_are_tested():
    bent = LineString([(0, 0), (50, 40), (100, 0)])
    # the chord's midpoint is 40 m from the bent line but both ends sit on it
    assert matches((Point(0, 0), Point(100, 0)), bent, 2.0)


def test_geometry_failure_counts_as_no_match():
    assert not matches((Point(0, 0), Point(1, 0)), None, 2.0)


def test_first_match_uses_candidate_order():
    first = frontage_line((0, 0), (100, 0))
    second = frontage_line((0, 1), (100, 1))
    far = frontage_line((0, 50), (100, 50))

    assert first_match((Point(20, 0), Point(40, 0)), [far, first, second], 2.0) is first
    assert first_match((Point(20, 80), Point(40, 80)), [far, first, second], 2.0) is None
