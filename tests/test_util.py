import pytest

from miracle.util import (
    align_power2,
    checked_mult,
    clamp,
    ifindex_from_properties,
    load_ini_file,
    reformat_mac,
)


def test_align_power2_zero_and_one():
    assert align_power2(0) == 0
    assert align_power2(1) == 1


@pytest.mark.parametrize("value", [2, 3, 5, 63, 64, 65, 1000, 4097])
def test_align_power2_is_smallest_power_at_least_value(value):
    result = align_power2(value)
    assert result >= value
    assert result & (result - 1) == 0
    assert result // 2 < value


def test_align_power2_overflow_gives_zero():
    assert align_power2((1 << 63) + 1) == 0
    assert align_power2(1 << 63) == 1 << 63


def test_align_power2_negative():
    with pytest.raises(ValueError):
        align_power2(-1)


def test_checked_mult_within_bounds():
    assert checked_mult(7, 9, 255) == 63
    assert checked_mult(5, 0, 255) == 0


def test_checked_mult_overflow():
    with pytest.raises(OverflowError):
        checked_mult(16, 16, 255)
    assert checked_mult(255, 1, 255) == 255


def test_clamp():
    assert clamp(5, 1, 10) == 5
    assert clamp(-3, 1, 10) == 1
    assert clamp(42, 1, 10) == 10


def test_load_ini_file_missing(tmp_path):
    assert load_ini_file(tmp_path) is None


def test_load_ini_file_prefers_config_dir(tmp_path):
    (tmp_path / ".config").mkdir()
    (tmp_path / ".config" / "miraclecastrc").write_text("[sinkctl]\nPort=1991\n")
    (tmp_path / ".miraclecast").write_text("[sinkctl]\nPort=7236\n")
    config = load_ini_file(tmp_path)
    assert config["sinkctl"]["Port"] == "1991"


def test_load_ini_file_fallback(tmp_path):
    (tmp_path / ".miraclecast").write_text("[wifid]\nInterface=wlan0\n")
    config = load_ini_file(tmp_path)
    assert config.get("wifid", "Interface") == "wlan0"


def test_load_ini_file_malformed_is_skipped(tmp_path):
    (tmp_path / ".miraclecast").write_text("no section header here\n")
    assert load_ini_file(tmp_path) is None


def test_reformat_mac_lowercases():
    mac = "0A:1B:2C:3D:4E:5F"
    assert reformat_mac(mac) == mac.lower()


def test_reformat_mac_pads_fields():
    assert reformat_mac("a:b:c:d:e:f") == "0a:0b:0c:0d:0e:0f"


def test_reformat_mac_invalid_is_zero():
    result = reformat_mac("garbage")
    assert result == "00:00:00:00:00:00"
    assert len(result) == 17


def test_ifindex_from_properties():
    assert ifindex_from_properties({"IFINDEX": "3"}) == 3
    assert ifindex_from_properties({}) == 0
    assert ifindex_from_properties({"IFINDEX": "abc"}) == 0


def test_ifindex_negative_wraps_unsigned():
    assert ifindex_from_properties({"IFINDEX": "-1"}) == 4294967295