"""
Test point identities

Feed ids and quantized coordinates are separate identity spaces; rendered
keys must round-trip to the same variant.
"""
import pytest

from pricemap.services.models import (
    CoordinateIdentity,
    FeedIdentity,
    PointOfInterest,
    feed_identity,
    parse_identity,
)
from pricemap.utils.exceptions import InvalidIdentity
from pricemap.utils.geometry import Coordinate

class TestCoordinateIdentity:
    """Quantization to 1e-5 degrees"""

    def test_nearby_submissions_converge(self):
        """Floating-point noise below 1e-5 degrees maps to one identity"""
        a = CoordinateIdentity.from_coordinate(Coordinate(39.12345001, -98.54321001))
        b = CoordinateIdentity.from_coordinate(Coordinate(39.12345099, -98.54320999))
        assert a == b
        assert a.key == "@39.12345,-98.54321"

    def test_distinct_points_stay_distinct(self):
        a = CoordinateIdentity.from_coordinate(Coordinate(39.12345, -98.54321))
        b = CoordinateIdentity.from_coordinate(Coordinate(39.12347, -98.54321))
        assert a != b

    def test_key_formats_small_negative_values(self):
        identity = CoordinateIdentity.from_coordinate(Coordinate(-0.00001, 0.5))
        assert identity.key == "@-0.00001,0.50000"

    def test_coordinate_property_recovers_quantized_point(self):
        identity = CoordinateIdentity(3912345, -9854321)
        assert identity.coordinate == Coordinate(39.12345, -98.54321)

class TestParseIdentity:
    """Rendered keys back to identities"""

    def test_feed_key(self):
        assert parse_identity("101") == FeedIdentity("101")

    def test_coordinate_key(self):
        assert parse_identity("@39.12345,-98.54321") == CoordinateIdentity(3912345, -9854321)

    def test_key_round_trip_keeps_variant(self):
        identity = CoordinateIdentity(-3312345, 15100001)
        assert parse_identity(identity.key) == identity

    def test_spaces_never_collide(self):
        """A feed id and a coordinate identity are never equal"""
        coordinate = CoordinateIdentity(3000000, -9300000)
        assert feed_identity(coordinate.key[1:]) != coordinate

    @pytest.mark.parametrize("key", ["", "   ", "@abc", "@39.1,-98.5", "@91.00000,0.00000", "@0.00000,180.00001", "a b"])
    def test_rejects_malformed_keys(self, key):
        with pytest.raises(InvalidIdentity):
            parse_identity(key)

    def test_feed_identity_accepts_integers(self):
        assert feed_identity(101).key == "101"

class TestLookupIdentities:
    """Which keys an annotation for a POI may live under"""

    def test_feed_poi_also_checks_its_coordinate(self):
        poi = PointOfInterest(FeedIdentity("101"), Coordinate(30.0, -93.0))
        assert poi.lookup_identities == (FeedIdentity("101"), CoordinateIdentity(3000000, -9300000))

    def test_coordinate_poi_checks_only_itself(self):
        identity = CoordinateIdentity(3000000, -9300000)
        poi = PointOfInterest(identity, Coordinate(30.0, -93.0))
        assert poi.lookup_identities == (identity,)
