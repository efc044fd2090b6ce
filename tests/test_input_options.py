import pytest

from adder.events import Point
from adder.input_options import (
    ChainSyncOptions,
    options_from_cmdline,
    parse_intersect_points,
)


def test_parse_single_point():
    assert parse_intersect_points("12345.0102030405") == [
        Point(slot=12345, hash=bytes([1, 2, 3, 4, 5]))
    ]


def test_parse_several_points_keeps_order():
    points = parse_intersect_points("10.aa,20.bb")
    assert [p.slot for p in points] == [10, 20]
    assert [p.hash.hex() for p in points] == ["aa", "bb"]


def test_parse_empty_hash_is_allowed():
    assert parse_intersect_points("7.") == [Point(slot=7, hash=b"")]


@pytest.mark.parametrize(
    "value",
    ["12345", "1.2.3", "abc.0102", "-1.0102", "+1.0102", "1.0g", "1.012", " 1.01", "1. 01"],
)
def test_parse_invalid_point_raises(value):
    with pytest.raises(ValueError, match="invalid intersect point format"):
        parse_intersect_points(value)


def test_parse_slot_above_uint64_raises():
    with pytest.raises(ValueError):
        parse_intersect_points(f"{2**64}.01")


def test_cmdline_defaults():
    opts = options_from_cmdline()
    assert opts.network == "mainnet"
    assert opts.network_magic == 0
    assert opts.intersect_tip is True
    assert opts.auto_reconnect is True
    assert opts.intersect_points == []
    assert opts.bulk_mode is False
    assert opts.include_cbor is False


def test_plain_options_defaults_differ_from_cmdline():
    opts = ChainSyncOptions()
    assert opts.network == ""
    assert opts.intersect_tip is False
    assert opts.auto_reconnect is False


def test_network_magic_in_range_is_kept():
    assert options_from_cmdline(network_magic=764824073).network_magic == 764824073


@pytest.mark.parametrize("magic", [2**32 - 1, 2**32, 2**40])
def test_network_magic_out_of_range_falls_back(magic):
    assert options_from_cmdline(network_magic=magic).network_magic == 0


def test_intersect_point_replaces_tip():
    opts = options_from_cmdline(intersect_point="100.abcd", intersect_tip=True)
    assert opts.intersect_points == [Point(slot=100, hash=bytes.fromhex("abcd"))]
    assert opts.intersect_tip is False


def test_intersect_tip_passed_without_points():
    opts = options_from_cmdline(intersect_tip=False)
    assert opts.intersect_tip is False
    assert opts.intersect_points == []


def test_connection_values_are_passed_on():
    opts = options_from_cmdline(
        network="preview",
        address="node.example.com:3001",
        socket_path="/tmp/node.socket",
        ntc_tcp=True,
        bulk_mode=True,
        include_cbor=True,
        auto_reconnect=False,
        kupo_url="http://localhost:1442",
    )
    assert opts.network == "preview"
    assert opts.address == "node.example.com:3001"
    assert opts.socket_path == "/tmp/node.socket"
    assert opts.ntc_tcp is True
    assert opts.bulk_mode is True
    assert opts.include_cbor is True
    assert opts.auto_reconnect is False
    assert opts.kupo_url == "http://localhost:1442"


def test_invalid_intersect_point_in_cmdline_raises():
    with pytest.raises(ValueError):
        options_from_cmdline(intersect_point="notapoint")