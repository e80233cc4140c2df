from wetedge.brush.region import Region, footprint_in_canvas, get_region


class TestGetRegion:
    def test_inside_canvas(self):
        assert get_region(50, 50, 10, 100, 100) == Region(40, 60, 40, 60)

    def test_fractional_radius_rounds_outward(self):
        assert get_region(50, 50, 10.4, 100, 100) == Region(39, 61, 39, 61)

    def test_clamped_to_canvas(self):
        r = get_region(2, 97, 10, 100, 100)
        assert r == Region(0, 12, 87, 99)
        assert not r.is_empty

    def test_fully_outside_is_empty(self):
        assert get_region(-50, -50, 10, 100, 100).is_empty
        assert get_region(500, 50, 10, 100, 100).is_empty


class TestRegion:
    def test_bounds_are_exclusive(self):
        assert Region(40, 60, 30, 35).bounds() == (40, 61, 30, 36)

    def test_size(self):
        r = Region(40, 60, 30, 35)
        assert r.width == 21
        assert r.height == 6

    def test_shrink(self):
        assert Region(40, 60, 30, 35).shrink(1) == Region(41, 59, 31, 34)
        assert Region(5, 6, 5, 6).shrink(1).is_empty

    def test_footprint_in_canvas(self):
        assert footprint_in_canvas(50, 50, 10, 100, 100)
        assert footprint_in_canvas(-10, 50, 10, 100, 100)
        assert not footprint_in_canvas(-12, 50, 10, 100, 100)
        # Corner: the search box overlaps the canvas but the circle does not.
        assert not footprint_in_canvas(-8, -8, 10, 100, 100)
        assert footprint_in_canvas(-7, -7, 10, 100, 100)
