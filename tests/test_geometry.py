import pytest

from qbu_api.services.geometry import base_to_sub_cells, compute_mixed_bbox, count_components, parse_key, parse_keys


def test_parse_key():
    assert parse_key("1,-2, 3") == (1, -2, 3)


@pytest.mark.parametrize("bad", ["1,2", "a,b,c", "", "1,2,3,4"])
def test_parse_key_rejects(bad):
    with pytest.raises(ValueError):
        parse_key(bad)


def test_bbox_base_only():
    bbox = compute_mixed_bbox(parse_keys(["0,0,0", "3,0,0"]), [])
    assert bbox.min == (-0.5, -0.5, -0.5)
    assert bbox.max == (3.5, 0.5, 0.5)
    assert bbox.size == (4.0, 1.0, 1.0)
    assert bbox.max_dim == 4.0


def test_bbox_includes_support():
    # support (2,0,0) は world x=1.0..1.5
    bbox = compute_mixed_bbox({(0, 0, 0)}, {(2, 0, 0)})
    assert bbox.max[0] == 1.5
    assert bbox.size[0] == 2.0


def test_bbox_empty_is_unit():
    assert compute_mixed_bbox([], []).size == (1.0, 1.0, 1.0)


def test_sub_cells():
    cells = base_to_sub_cells((0, 0, 0))
    assert len(cells) == 8
    assert (-1, -1, -1) in cells and (0, 0, 0) in cells


def test_count_components():
    assert count_components(parse_keys(["0,0,0", "1,0,0", "1,1,0"]), []) == 1
    assert count_components(parse_keys(["0,0,0", "2,0,0"]), []) == 2
    assert count_components([], []) == 0


def test_support_bridges_gap():
    # base 0 の右端は sub x=0、base 2 の左端は sub x=3。sub 1,2 を埋めればつながる
    base = parse_keys(["0,0,0", "2,0,0"])
    bridge = {(1, 0, 0), (2, 0, 0)}
    assert count_components(base, bridge) == 1


def test_edge_contact_is_not_connected():
    assert count_components(parse_keys(["0,0,0", "1,1,0"]), []) == 2
