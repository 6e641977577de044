"""
Canonical form and digest tests.

The canonical bytes and the digests below are fixed: any re-implementation
must reproduce them exactly.
"""

from datetime import datetime, timezone

import pytest

from conftest import SAMPLE_CONTENT, SAMPLE_SHA256, SAMPLE_SHA3_256

from truthseal import (
    Digest,
    InvalidContent,
    SealableContent,
    UnsupportedSealingVersion,
    canonical_json,
    canonicalize,
    compute_content_hash,
    digest,
    parse_draft,
)
from truthseal.content import MAX_TITLE_LENGTH, format_timestamp, parse_timestamp
from truthseal.digest import digests_equal


SAMPLE_CANONICAL = (
    b'{"content":"hello","eventTimestamp":"2024-01-15T14:30:00.000Z",'
    b'"id":"r1","ownerId":"u1","title":"T"}'
)


class TestCanonicalJson:
    """Sorted-compact JSON serialization."""

    def test_sorted_keys(self):
        """Object keys must be sorted by Unicode code point."""
        assert canonical_json({"z": 1, "a": 2, "m": 3}) == '{"a":2,"m":3,"z":1}'

    def test_code_point_order_not_locale(self):
        assert canonical_json({"b": 1, "B": 2, "é": 3, "a": 4}) == '{"B":2,"a":4,"b":1,"é":3}'

    def test_no_whitespace(self):
        assert canonical_json({"key": [1, 2, 3]}) == '{"key":[1,2,3]}'

    def test_nested_sorting(self):
        assert canonical_json({"outer": {"z": 1, "a": 2}}) == '{"outer":{"a":2,"z":1}}'

    def test_literals(self):
        assert canonical_json(None) == "null"
        assert canonical_json(True) == "true"
        assert canonical_json(False) == "false"

    def test_integer_values(self):
        assert canonical_json(42) == "42"
        assert canonical_json(-17) == "-17"
        assert canonical_json(0) == "0"

    def test_float_values(self):
        """Floats follow ECMAScript Number#toString."""
        assert canonical_json(3.14) == "3.14"
        assert canonical_json(1.0) == "1"
        assert canonical_json(-0.0) == "0"
        assert canonical_json(0.1) == "0.1"
        assert canonical_json(0.000001) == "0.000001"
        assert canonical_json(1e-7) == "1e-7"
        assert canonical_json(1.5e-10) == "1.5e-10"
        assert canonical_json(1e21) == "1e+21"
        assert canonical_json(1e20) == "100000000000000000000"
        assert canonical_json(-122.4194) == "-122.4194"

    def test_non_finite_rejected(self):
        for value in (float("nan"), float("inf"), float("-inf")):
            with pytest.raises(InvalidContent):
                canonical_json({"x": value})

    def test_string_escaping(self):
        assert canonical_json("hello\nworld") == '"hello\\nworld"'
        assert canonical_json('say "hi"\\') == '"say \\"hi\\"\\\\"'
        assert canonical_json("\x01") == '"\\u0001"'

    def test_non_ascii_emitted_raw(self):
        assert canonical_json("café ✓") == '"café ✓"'

    def test_unsupported_type_rejected(self):
        with pytest.raises(InvalidContent):
            canonical_json({"when": datetime.now(timezone.utc)})

    def test_non_string_key_rejected(self):
        with pytest.raises(InvalidContent):
            canonical_json({1: "one"})


class TestCanonicalize:
    """Canonical form of sealable content."""

    def test_sample_bytes(self):
        assert canonicalize(SAMPLE_CONTENT) == SAMPLE_CANONICAL

    def test_typed_and_mapping_inputs_agree(self):
        content = SealableContent.from_dict(SAMPLE_CONTENT)
        assert canonicalize(content) == canonicalize(dict(SAMPLE_CONTENT))

    def test_key_order_independent(self):
        reordered = {k: SAMPLE_CONTENT[k] for k in reversed(list(SAMPLE_CONTENT))}
        assert canonicalize(reordered) == SAMPLE_CANONICAL

    def test_timestamp_normalized_to_millis_z(self):
        content = dict(SAMPLE_CONTENT, eventTimestamp="2024-01-15T15:30:00+01:00")
        assert canonicalize(content) == SAMPLE_CANONICAL

    def test_absent_location_omitted(self):
        assert b"location" not in canonicalize(SAMPLE_CONTENT)

    def test_location_included(self):
        content = dict(SAMPLE_CONTENT, location={"type": "Point", "coordinates": [-122.4194, 37.7749]})
        assert b'"location":{"coordinates":[-122.4194,37.7749],"type":"Point"}' in canonicalize(content)

    @pytest.mark.parametrize("field", ["id", "ownerId", "title", "content", "eventTimestamp"])
    def test_missing_required_field(self, field):
        content = dict(SAMPLE_CONTENT)
        del content[field]
        with pytest.raises(InvalidContent) as exc_info:
            canonicalize(content)
        assert exc_info.value.field_name == field

    def test_unknown_field_rejected(self):
        with pytest.raises(InvalidContent):
            canonicalize(dict(SAMPLE_CONTENT, contentHash="abc"))

    def test_naive_timestamp_rejected(self):
        with pytest.raises(InvalidContent):
            canonicalize(dict(SAMPLE_CONTENT, eventTimestamp="2024-01-15T14:30:00"))

    def test_lone_surrogate_rejected(self):
        with pytest.raises(InvalidContent):
            canonicalize(dict(SAMPLE_CONTENT, content="broken \ud800"))

    def test_no_normalization_in_canonicalizer(self):
        decomposed = dict(SAMPLE_CONTENT, content="e\u0301")
        composed = dict(SAMPLE_CONTENT, content="\u00e9")
        assert canonicalize(decomposed) != canonicalize(composed)


class TestTimestamps:

    def test_format_pads_and_truncates(self):
        value = datetime(987, 3, 4, 5, 6, 7, 890123, tzinfo=timezone.utc)
        assert format_timestamp(value) == "0987-03-04T05:06:07.890Z"

    def test_parse_truncates_to_millis(self):
        parsed = parse_timestamp("2024-01-15T14:30:00.123456Z")
        assert parsed.microsecond == 123000
        assert parsed.tzinfo == timezone.utc

    def test_format_rejects_naive(self):
        with pytest.raises(InvalidContent):
            format_timestamp(datetime(2024, 1, 15))

    def test_parse_rejects_garbage(self):
        with pytest.raises(InvalidContent):
            parse_timestamp("yesterday")


class TestDraftIntake:
    """parse_draft validation and normalization."""

    def test_valid_draft(self):
        draft = parse_draft(SAMPLE_CONTENT, draft_id="d1")
        assert draft.draft_id == "d1"
        assert draft.content.id == "r1"
        assert canonicalize(draft.content) == SAMPLE_CANONICAL

    def test_text_normalized_to_nfc(self):
        draft = parse_draft(dict(SAMPLE_CONTENT, title="Cafe\u0301"))
        assert draft.content.title == "Caf\u00e9"

    def test_missing_id_generated(self):
        payload = dict(SAMPLE_CONTENT)
        del payload["id"]
        draft = parse_draft(payload)
        assert draft.content.id
        assert draft.draft_id

    def test_missing_owner_rejected(self):
        payload = dict(SAMPLE_CONTENT)
        del payload["ownerId"]
        with pytest.raises(InvalidContent) as exc_info:
            parse_draft(payload)
        assert exc_info.value.field_name == "ownerId"

    def test_blank_title_rejected(self):
        with pytest.raises(InvalidContent):
            parse_draft(dict(SAMPLE_CONTENT, title="   "))

    def test_title_too_long(self):
        with pytest.raises(InvalidContent):
            parse_draft(dict(SAMPLE_CONTENT, title="x" * (MAX_TITLE_LENGTH + 1)))

    def test_title_at_limit(self):
        draft = parse_draft(dict(SAMPLE_CONTENT, title="x" * MAX_TITLE_LENGTH))
        assert len(draft.content.title) == MAX_TITLE_LENGTH

    @pytest.mark.parametrize("coordinates", [[181, 0], [0, -91], [0, "north"], [1]])
    def test_bad_location_rejected(self, coordinates):
        with pytest.raises(InvalidContent):
            parse_draft(dict(SAMPLE_CONTENT, location={"type": "Point", "coordinates": coordinates}))

    def test_non_point_location_rejected(self):
        with pytest.raises(InvalidContent):
            parse_draft(dict(SAMPLE_CONTENT, location={"type": "Polygon", "coordinates": [0, 0]}))

    def test_unknown_field_rejected(self):
        with pytest.raises(InvalidContent):
            parse_draft(dict(SAMPLE_CONTENT, mood="happy"))


class TestDigest:
    """Digest engine per sealing version."""

    def test_v1_sample_digest(self):
        result = digest(SAMPLE_CANONICAL, "v1")
        assert result.algorithm == "sha256"
        assert result.hex() == SAMPLE_SHA256

    def test_v2_sample_digest(self):
        result = digest(SAMPLE_CANONICAL, "v2")
        assert result.algorithm == "sha3-256"
        assert result.hex() == SAMPLE_SHA3_256

    def test_default_is_v1(self):
        assert digest(SAMPLE_CANONICAL).hex() == SAMPLE_SHA256

    def test_compute_content_hash(self):
        assert compute_content_hash(SAMPLE_CONTENT).hex() == SAMPLE_SHA256

    def test_deterministic_across_drafts(self):
        first = parse_draft(SAMPLE_CONTENT, draft_id="d1")
        second = parse_draft(SAMPLE_CONTENT, draft_id="d2")
        assert compute_content_hash(first.content) == compute_content_hash(second.content)

    def test_unknown_version_rejected(self):
        with pytest.raises(UnsupportedSealingVersion):
            digest(SAMPLE_CANONICAL, "v9")

    def test_location_changes_digest(self):
        content = dict(SAMPLE_CONTENT, location={"type": "Point", "coordinates": [-122.4194, 37.7749]})
        assert compute_content_hash(content).hex() == (
            "0b01073df095d4a5b910e53319da62d5819faf17d46e67b552250dbede8f4d73"
        )

    def test_from_hex_requires_32_bytes(self):
        with pytest.raises(ValueError):
            Digest.from_hex("sha256", "ab" * 31)
        assert Digest.from_hex("sha256", SAMPLE_SHA256).hex() == SAMPLE_SHA256

    def test_digests_equal(self):
        assert digests_equal(SAMPLE_SHA256, SAMPLE_SHA256)
        assert not digests_equal(SAMPLE_SHA256, SAMPLE_SHA256.upper())
        assert not digests_equal(SAMPLE_SHA256, None)
