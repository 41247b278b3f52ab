from __future__ import annotations

from blepresence.ingestion.normalize import decode_tree, decode_unicode, map_strings, resolve_rssi, safe_int, safe_str


def test_decode_unicode_restores_escaped_text() -> None:
    assert decode_unicode("\\u5927\\u5385-01") == "大厅-01"
    assert decode_unicode("Hall \\u00e9t\\u00E9") == "Hall été"


def test_decode_unicode_combines_surrogate_pairs() -> None:
    assert decode_unicode("tag \\ud83d\\udce1") == "tag \U0001f4e1"


def test_decode_unicode_leaves_lone_surrogate_and_non_strings() -> None:
    assert decode_unicode("\\ud83d alone") == "\\ud83d alone"
    assert decode_unicode(None) is None
    assert decode_unicode(-60) == -60
    assert decode_unicode("plain") == "plain"


def test_decode_tree_walks_nested_structures() -> None:
    data = {
        "devices": {"r1": {"name": "\\u5927\\u5385", "update": 5}},
        "list": ["\\u0041", 1, None, True, {"x": "\\u0042"}],
    }

    decoded = decode_tree(data)

    assert decoded == {
        "devices": {"r1": {"name": "大厅", "update": 5}},
        "list": ["A", 1, None, True, {"x": "B"}],
    }
    # Input is not modified.
    assert data["devices"]["r1"]["name"] == "\\u5927\\u5385"


def test_map_strings_keeps_keys() -> None:
    assert map_strings({"\\u0041": "b"}, str.upper) == {"\\u0041": "B"}


def test_resolve_rssi_prefers_average_then_current() -> None:
    assert resolve_rssi({"average": -61.6, "current": -70}) == -62
    assert resolve_rssi({"average": None, "current": -70}) == -70
    assert resolve_rssi({"current": "-71"}) == -71
    assert resolve_rssi({}) is None


def test_resolve_rssi_scalar_values() -> None:
    assert resolve_rssi(-55) == -55
    assert resolve_rssi("-58") == -58
    assert resolve_rssi(None) is None
    assert resolve_rssi("--") is None
    assert resolve_rssi(True) is None
    assert resolve_rssi(float("nan")) is None


def test_safe_helpers() -> None:
    assert safe_int("12") == 12
    assert safe_int("x") is None
    assert safe_str("  ") is None
    assert safe_str(" R1 ") == "R1"
    assert safe_str("tag \ud800") == "tag \ufffd"
    assert safe_str("\udfff") == "\ufffd"
