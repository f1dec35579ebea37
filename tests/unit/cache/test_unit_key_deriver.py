# tests/unit/cache/test_unit_key_deriver.py — v2
"""Tests for cache/key_deriver.py — normalization and key derivation."""

from __future__ import annotations

import hashlib

import pytest

from analysiscache.cache.key_deriver import (
    KeyDeriver,
    derive_cache_key,
    display_name_from_payload,
    normalize_barcode,
    normalize_text,
    normalize_url,
    summarize_input,
)
from analysiscache.cache.models import InputModality
from analysiscache.config.settings import Settings

SAMPLES = ["0 12345-67890 5", "https://shop.example.com/p/1", "Whey  Protein", "   "]


class TestDeterminism:
    @pytest.mark.parametrize("modality", list(InputModality))
    def test_same_input_same_key(self, modality):
        for raw in SAMPLES:
            assert derive_cache_key("u1", modality, raw) == derive_cache_key("u1", modality, raw)

    def test_key_does_not_depend_on_process_state(self):
        expected = hashlib.sha256(b"foo bar").hexdigest()[:32]
        assert derive_cache_key("u1", "text", "Foo  Bar") == f"u1:text:{expected}"


class TestNonCollision:
    @pytest.mark.parametrize("modality", list(InputModality))
    def test_owners_never_share_keys(self, modality):
        for raw in SAMPLES:
            assert derive_cache_key("alice", modality, raw) != derive_cache_key("bob", modality, raw)

    def test_modalities_never_share_keys(self):
        for raw in SAMPLES:
            keys = {derive_cache_key("u1", m, raw) for m in InputModality}
            assert len(keys) == len(InputModality)

    def test_key_is_namespaced(self):
        key = derive_cache_key("u1", InputModality.IMAGE, b"\x89PNG")
        assert key.startswith("u1:image:")


class TestBarcode:
    def test_strips_non_digits(self):
        assert normalize_barcode(" 0-12345 67890-5 ") == "012345678905"

    def test_scanner_and_manual_entry_match(self):
        assert derive_cache_key("u1", "barcode", "012345678905") == derive_cache_key(
            "u1", "barcode", "0 12345 67890 5"
        )

    def test_falls_back_to_trimmed_raw(self):
        assert normalize_barcode("  no-digits  ") == "no-digits"
        assert derive_cache_key("u1", "barcode", " abc ") == "u1:barcode:abc"

    def test_only_ascii_digits_kept(self):
        assert normalize_barcode("0\uff112") == "02"

    def test_fullwidth_digits_do_not_match_ascii(self):
        assert normalize_barcode("\uff11\uff12") == "\uff11\uff12"
        assert derive_cache_key("u1", "barcode", "\uff11\uff12") != derive_cache_key(
            "u1", "barcode", "12"
        )


class TestUrl:
    def test_strips_tracking_params(self):
        clean = normalize_url("https://Shop.Example.com/p/1?size=2")
        tracked = normalize_url(
            "https://shop.example.com/p/1?utm_source=mail&size=2&tag=aff-20&ref=home"
        )
        assert clean == tracked == "https://shop.example.com/p/1?size=2"

    def test_idempotent(self):
        once = normalize_url("HTTPS://EXAMPLE.com/a%2Fb?q=a+b&utm_medium=x#frag")
        assert normalize_url(once) == once

    def test_empty_path_gets_root(self):
        assert normalize_url("https://example.com") == "https://example.com/"

    def test_derive_ignores_tracking(self):
        assert derive_cache_key(
            "u1", "url", "https://example.com/item?id=9&utm_campaign=spring"
        ) == derive_cache_key("u1", "url", "https://example.com/item?id=9")

    @pytest.mark.parametrize("raw", ["not a url", "http://[::1", "https://host:notaport/x"])
    def test_parse_failure_falls_back(self, raw):
        assert normalize_url(f"  {raw.upper()} ") == raw.upper().strip().lower()

    def test_custom_tracking_params(self):
        assert normalize_url("https://e.com/?a=1&b=2", {"b"}) == "https://e.com/?a=1"


class TestText:
    def test_case_and_whitespace_insensitive(self):
        assert derive_cache_key("u1", "text", "Foo  Bar") == derive_cache_key("u1", "text", "foo bar")

    def test_normalize_text(self):
        assert normalize_text("  Vitamin\tD3 \n 5000 IU ") == "vitamin d3 5000 iu"

    def test_digest_is_truncated(self):
        key = derive_cache_key("u1", "text", "x", digest_length=16)
        assert len(key.rsplit(":", 1)[1]) == 16


class TestImage:
    def test_identical_bytes_hit(self):
        assert derive_cache_key("u1", "image", b"abc") == derive_cache_key("u1", "image", b"abc")

    def test_near_duplicates_differ(self):
        assert derive_cache_key("u1", "image", b"abc") != derive_cache_key("u1", "image", b"abd")

    def test_encoded_string_matches_its_bytes(self):
        assert derive_cache_key("u1", "image", "aGVsbG8=") == derive_cache_key(
            "u1", "image", b"aGVsbG8="
        )


class TestUnknownModality:
    def test_does_not_raise(self):
        assert derive_cache_key("u1", "video", "clip").startswith("u1:unknown:")


class TestSummarizeInput:
    def test_barcode_wins(self):
        assert summarize_input("text", "long text", barcode="0123", product_url="https://x") == "0123"

    def test_product_url_truncated(self):
        url = "https://example.com/" + "a" * 300
        summary = summarize_input("url", url, product_url=url)
        assert len(summary) == 203
        assert summary.endswith("...")

    def test_text_truncated(self):
        summary = summarize_input("text", "  " + "b" * 600)
        assert summary == "b" * 500 + "..."

    def test_short_text_untouched(self):
        assert summarize_input("text", "  creatine ") == "creatine"

    def test_image_bytes_never_echoed(self):
        assert summarize_input("image", b"\x00" * 42) == "<image: 42 bytes>"

    def test_image_string_never_echoed(self):
        assert summarize_input(InputModality.IMAGE, "aGVsbG8=") == "<image: 8 chars>"


class TestDisplayName:
    def test_reads_product_name(self):
        assert display_name_from_payload({"productName": "Zinc"}) == "Zinc"

    def test_ignores_non_string(self):
        assert display_name_from_payload({"productName": 5}) is None
        assert display_name_from_payload(None) is None


class TestKeyDeriver:
    def test_from_settings(self):
        s = Settings(_env_file=None, url_tracking_params="gclid", cache_key_digest_length=12)
        deriver = KeyDeriver.from_settings(s)
        assert deriver.tracking_params == frozenset({"gclid"})
        key = deriver.derive("u1", "url", "https://e.com/?gclid=1")
        assert key == derive_cache_key("u1", "url", "https://e.com/", digest_length=12)

    def test_summarize_uses_limits(self):
        deriver = KeyDeriver(summary_max_chars=3)
        assert deriver.summarize("text", "abcdef") == "abc..."
