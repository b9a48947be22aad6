"""
Tests for the PID codec and the country schema table.
"""

import pytest

from zkaddr.errors import MalformedPID
from zkaddr.pid import (
    MAX_SEGMENTS,
    SEGMENT_LEVELS,
    CountrySchemaTable,
    PIDCodec,
    PIDComponents,
    decode,
    encode,
    validate,
)


class TestDecode:
    """PID string parsing."""

    def test_decode_tokyo(self, codec):
        """A four-segment Japanese PID decodes level by level."""
        c = codec.decode("JP-13-113-01")
        assert c.country == "JP"
        assert c.admin1 == "13"
        assert c.admin2 == "113"
        assert c.locality == "01"
        assert c.sublocality is None
        assert c.depth == 4
        assert c.region == "13"

    def test_vector_pads_absent_levels(self, codec):
        """The vector always carries all eight levels."""
        c = codec.decode("JP-13")
        assert len(c.vector) == MAX_SEGMENTS
        assert c.vector[:2] == ("JP", "13")
        assert all(v is None for v in c.vector[2:])

    def test_str_round_trips(self, codec):
        """str() of decoded components is the original PID."""
        assert str(codec.decode("JP-27-101-03")) == "JP-27-101-03"

    @pytest.mark.parametrize("pid", [
        "",
        "JP--113",
        "jp-13",
        "JPN-13",
        "JP-13-113-01-1-2-3-4-5",
        "JP-1",
        "JP-13-11",
        "JP-13-113-01!",
        "ZZ-13",
    ])
    def test_malformed(self, codec, pid):
        """Malformed PIDs raise MalformedPID."""
        with pytest.raises(MalformedPID):
            codec.decode(pid)

    def test_non_string_rejected(self, codec):
        """Non-string input is malformed, not a TypeError."""
        with pytest.raises(MalformedPID):
            codec.decode(1234)

    def test_country_only_below_min_depth(self, codec):
        """JP requires at least an admin1 segment."""
        with pytest.raises(MalformedPID) as exc:
            codec.decode("JP")
        assert "at least" in exc.value.message


class TestEncode:
    """Component serialization."""

    def test_encode_mapping(self, codec):
        """A level mapping encodes in hierarchy order."""
        pid = codec.encode({"locality": "01", "country": "JP", "admin2": "113", "admin1": "13"})
        assert pid == "JP-13-113-01"

    def test_encode_pairs(self, codec):
        """(level, value) pairs are accepted."""
        assert codec.encode([("country", "JP"), ("admin1", "27")]) == "JP-27"

    def test_encode_components(self, codec):
        """PIDComponents encode to themselves."""
        c = PIDComponents("JP", "13", "113")
        assert codec.encode(c) == "JP-13-113"

    def test_gap_rejected(self, codec):
        """A level present after a missing one is malformed."""
        with pytest.raises(MalformedPID) as exc:
            codec.encode({"country": "JP", "admin1": "13", "locality": "01"})
        assert "missing admin2" in exc.value.message

    def test_unknown_level_rejected(self, codec):
        with pytest.raises(MalformedPID):
            codec.encode({"country": "JP", "street": "x"})

    def test_duplicate_level_rejected(self, codec):
        with pytest.raises(MalformedPID):
            codec.encode([("country", "JP"), ("country", "US")])

    def test_encode_decode_inverse(self, codec):
        """decode(encode(c)) == c for valid components."""
        c = PIDComponents("JP", "13", "113", "01", "2", "5")
        assert codec.decode(codec.encode(c)) == c


class TestValidate:
    """Non-throwing validation."""

    def test_valid(self, codec):
        v = codec.validate("JP-13-113-01")
        assert v.valid
        assert v.to_dict() == {"valid": True}

    def test_invalid_has_reason(self, codec):
        v = codec.validate("JP-1")
        assert not v.valid
        assert "admin1" in v.reason

    def test_validate_components(self, codec):
        assert codec.validate({"country": "JP", "admin1": "13"}).valid

    def test_module_level_functions(self):
        """The module-level helpers use the packaged table."""
        assert encode({"country": "JP", "admin1": "13"}) == "JP-13"
        assert decode("JP-13").admin1 == "13"
        assert validate("JP-13").valid


class TestSchemaTable:
    """Country schema table loading."""

    def test_packaged_table_has_jp(self, codec):
        jp = codec.schemas.get("JP")
        assert jp is not None
        assert (jp.min_depth, jp.max_depth) == (2, 8)

    def test_levels_constant(self):
        assert SEGMENT_LEVELS[0] == "country"
        assert SEGMENT_LEVELS[-1] == "unit"

    def test_custom_table(self):
        """A codec bound to a custom table only knows its countries."""
        table = CountrySchemaTable.from_dict({
            "version": 1,
            "countries": {"XX": {"name": "Test", "min_depth": 1, "max_depth": 3}},
        })
        codec = PIDCodec(table)
        assert codec.decode("XX").depth == 1
        assert not codec.validate("JP-13").valid

    def test_inverted_depth_rejected(self):
        with pytest.raises(ValueError):
            CountrySchemaTable.from_dict({
                "version": 1,
                "countries": {"XX": {"name": "Test", "min_depth": 4, "max_depth": 2}},
            })

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "schemas.yaml"
        path.write_text(
            "version: 1\n"
            "countries:\n"
            "  XY:\n"
            "    name: Test\n"
            "    min_depth: 2\n"
            "    max_depth: 2\n"
            "    segments:\n"
            "      admin1: '^[0-9]$'\n",
            encoding="utf-8",
        )
        codec = PIDCodec(CountrySchemaTable.load(path))
        assert codec.validate("XY-1").valid
        assert not codec.validate("XY-A").valid
