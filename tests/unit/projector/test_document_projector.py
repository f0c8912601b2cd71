"""
Tests for DocumentProjector.

Tests the field policy, truncation, boolean normalization, geo points and
the document layout.
"""

from typing import Any, Callable

import pytest

from avrostash.core.decoder import DecodedRecord
from avrostash.core.policy import ConfigStore
from avrostash.core.projector import DocumentProjector, stringify, truncate
from avrostash.core.schema import FieldSpec

from conftest import session_record


class TestFieldPolicy:
    """Test inclusion and exclusion per source."""

    def test_exclusion_wins_over_inclusion(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test exclusion wins over inclusion."""
        projector = DocumentProjector(make_config(
            included_fields={"eb-rng-aptdec1": ["alert", "ip_src"]},
            excluded_fields={"eb-rng-aptdec1": ["alert"]},
        ))

        document = projector.project(
            session_record(alert="scan", ip_src="10.0.0.5"), "eb-rng-aptdec1"
        )

        assert document.fields == {"ip_src": "10.0.0.5"}

    def test_unconfigured_source_uses_wildcard_rules(
        self, make_config: Callable[..., ConfigStore]
    ) -> None:
        """Test unconfigured source uses wildcard rules."""
        projector = DocumentProjector(make_config(
            included_fields={"*": ["*"], "eb-rng-aptdec1": ["alert"]},
            excluded_fields={"*": ["ip_dst"]},
        ))

        document = projector.project(
            session_record(alert="scan", ip_src="10.0.0.5", ip_dst="8.8.8.8"), "eb-gb-aptlog1"
        )

        assert document.fields == {"ip_src": "10.0.0.5", "alert": "scan"}

    def test_nothing_included_without_rules(self) -> None:
        """Test nothing included without rules."""
        projector = DocumentProjector(ConfigStore.defaults())

        document = projector.project(session_record(alert="scan"), "eb-rng-aptdec1")

        assert document.fields == {}
        assert document.source == "eb-rng-aptdec1"

    def test_null_values_are_skipped(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test null values are skipped."""
        document = DocumentProjector(make_config()).project(session_record(alert="scan"))

        assert document.fields == {"alert": "scan"}

    def test_fields_keep_schema_order(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test fields keep schema order."""
        document = DocumentProjector(make_config()).project(
            session_record(alert="scan", device_type="rsaenvision", ip_src="10.0.0.5", medium=1)
        )

        assert list(document.fields) == ["device_type", "ip_src", "medium", "alert"]
        assert document.fields["medium"] == "1"


class TestSourceName:
    """Test the @source value."""

    def test_event_source_wins_over_file_name(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test event source wins over file name."""
        projector = DocumentProjector(make_config(
            included_fields={"eb-gb-aptlog1": ["alert"]},
        ))

        document = projector.project(
            session_record(ng_source="eb-gb-aptlog1", alert="scan"), "eb-rng-aptdec1"
        )

        assert document.source == "eb-gb-aptlog1"
        assert document.fields == {"alert": "scan"}

    @pytest.mark.parametrize("ng_source", [None, ""])
    def test_file_name_is_fallback(
        self, make_config: Callable[..., ConfigStore], ng_source: Any
    ) -> None:
        """Test file name is fallback."""
        document = DocumentProjector(make_config()).project(
            session_record(ng_source=ng_source), "eb-rng-aptdec1"
        )

        assert document.source == "eb-rng-aptdec1"

    def test_unknown_source_is_empty(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test unknown source is empty."""
        document = DocumentProjector(make_config()).project(session_record())

        assert document.source == ""
        assert document.to_dict()["@source"] == ""


class TestFieldTransforms:
    """Test truncation, booleans and embedded objects."""

    def test_truncation(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test configured fields are cut to their length."""
        projector = DocumentProjector(make_config(truncation={"alert": 4, "ip_src": 0}))

        document = projector.project(session_record(alert="portscan", ip_src="10.0.0.5"))

        assert document.fields == {"alert": "port", "ip_src": ""}

    def test_short_values_are_not_padded(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test short values are not padded."""
        projector = DocumentProjector(make_config(truncation={"alert": 64}))

        assert projector.project(session_record(alert="scan")).fields["alert"] == "scan"

    @pytest.mark.parametrize("value", ["portscan", "port", "", "x" * 100])
    def test_truncation_is_idempotent(self, value: str) -> None:
        """Test truncation is idempotent."""
        once = truncate(value, 4)

        assert truncate(once, 4) == once
        assert len(once) <= len(value)

    @pytest.mark.parametrize(
        "value,expected",
        [("T", "true"), ("F", "false"), ("t", "t"), ("TRUE", "TRUE"), (True, "true")],
    )
    def test_boolean_normalization(
        self, make_config: Callable[..., ConfigStore], value: Any, expected: str
    ) -> None:
        """Test boolean normalization."""
        decoded = DecodedRecord(
            values={"has_payload": value},
            fields=(FieldSpec("has_payload", ["null", "boolean"]),),
        )

        document = DocumentProjector(make_config()).project(decoded)

        assert document.fields["has_payload"] == expected

    def test_string_fields_are_not_normalized(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test string fields are not normalized."""
        document = DocumentProjector(make_config()).project(session_record(alert="T"))

        assert document.fields["alert"] == "T"

    def test_truncation_before_normalization(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test truncation before normalization."""
        decoded = DecodedRecord(
            values={"flag": "Tx"},
            fields=(FieldSpec("flag", "boolean"),),
        )

        document = DocumentProjector(make_config(truncation={"flag": 1})).project(decoded)

        assert document.fields["flag"] == "true"

    def test_json_object_value_is_embedded(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test json object value is embedded."""
        document = DocumentProjector(make_config()).project(
            session_record(alert='{"name": "scan", "score": 3}', ip_src="{not json")
        )

        assert document.fields["alert"] == {"name": "scan", "score": 3}
        assert document.fields["ip_src"] == "{not json"

    @pytest.mark.parametrize(
        "value,expected",
        [(b"abc", "abc"), (False, "false"), (1.5, "1.5"), ([1, 2], "[1, 2]")],
    )
    def test_stringify(self, value: Any, expected: str) -> None:
        """Test non-string values are rendered as text."""
        assert stringify(value) == expected


class TestGeoPoints:
    """Test assembly of location_src and location_dst."""

    def test_version_three_uses_lon_lat_pairs(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test version three uses lon lat pairs."""
        document = DocumentProjector(make_config()).project(
            session_record(latdec_src=52.5, longdec_src=13.4, latdec_dst=40.7, longdec_dst=-74.0)
        )

        assert document.location_src == [13.4, 52.5]
        assert document.location_dst == [-74.0, 40.7]
        assert document.fields == {}

    def test_later_versions_use_lat_lon_objects(
        self, make_config: Callable[..., ConfigStore]
    ) -> None:
        """Test later versions use lat lon objects."""
        document = DocumentProjector(make_config(output_format_version=4)).project(
            session_record(latdec_src=52.5, longdec_src=13.4)
        )

        assert document.location_src == {"lat": 52.5, "lon": 13.4}
        assert document.location_dst is None

    def test_half_a_point_is_dropped(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test half a point is dropped."""
        document = DocumentProjector(make_config()).project(session_record(latdec_src=52.5))

        assert document.location_src is None
        assert "location_src" not in document.to_dict()
        assert document.fields == {}

    def test_excluded_coordinate_suppresses_point(
        self, make_config: Callable[..., ConfigStore]
    ) -> None:
        """Test excluded coordinate suppresses point."""
        projector = DocumentProjector(make_config(excluded_fields={"*": ["longdec_src"]}))

        document = projector.project(session_record(latdec_src=52.5, longdec_src=13.4))

        assert document.location_src is None

    def test_invalid_coordinate_suppresses_point(
        self, make_config: Callable[..., ConfigStore]
    ) -> None:
        """Test invalid coordinate suppresses point."""
        decoded = DecodedRecord(
            values={"latdec_src": "north", "longdec_src": "13.4"},
            fields=(FieldSpec("latdec_src", "string"), FieldSpec("longdec_src", "string")),
        )

        document = DocumentProjector(make_config()).project(decoded)

        assert document.location_src is None


class TestDocumentLayout:
    """Test the serialized document."""

    def test_document_keys(self, make_config: Callable[..., ConfigStore]) -> None:
        """Test the document carries the expected top-level keys."""
        document = DocumentProjector(make_config()).project(
            session_record(time=500, alert="scan", latdec_dst=1.0, longdec_dst=2.0),
            "eb-rng-aptdec1",
        )

        assert document.to_dict() == {
            "@fields": {"alert": "scan"},
            "location_dst": [2.0, 1.0],
            "@timestamp": "1970-01-01T00:08:20.000+0000",
            "@source": "eb-rng-aptdec1",
        }
