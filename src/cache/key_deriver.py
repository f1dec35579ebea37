# src/cache/key_deriver.py — v2
"""Per-modality input normalization and cache key derivation.

Keys have the shape ``{owner_id}:{modality}:{canonical}`` where canonical is
the digit string for barcodes and a truncated SHA-256 hex digest for every
other modality. Derivation never raises: malformed input degrades to a
raw-string fallback, logged at DEBUG.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from analysiscache.cache.models import CacheKey, InputModality

if TYPE_CHECKING:
    from analysiscache.config.settings import Settings

logger = logging.getLogger(__name__)

DEFAULT_TRACKING_PARAMS: frozenset[str] = frozenset(
    {"ref", "ref_", "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content", "tag"}
)
DEFAULT_DIGEST_LENGTH = 32

_NON_DIGITS = re.compile(r"\D", re.ASCII)
_WHITESPACE = re.compile(r"\s+")


def derive_cache_key(
    owner_id: str,
    modality: InputModality | str,
    raw_input: str | bytes,
    tracking_params: frozenset[str] | set[str] | None = None,
    digest_length: int = DEFAULT_DIGEST_LENGTH,
) -> CacheKey:
    """Derive the per-user cache key for a raw input.

    Args:
        owner_id: User the artifact belongs to.
        modality: Input modality (enum or its string value).
        raw_input: Raw submitted value. Images may be bytes or an encoded string.
        tracking_params: Query parameters dropped from URLs before hashing.
        digest_length: Hex chars kept from each SHA-256 digest.

    Returns:
        Namespaced cache key.
    """
    try:
        modality = InputModality(modality)
    except ValueError:
        logger.debug("Unknown modality %r, hashing raw input", modality)
        return f"{owner_id}:unknown:{_digest(raw_input, digest_length)}"

    if modality is InputModality.BARCODE:
        canonical = normalize_barcode(_as_text(raw_input))
    elif modality is InputModality.URL:
        params = DEFAULT_TRACKING_PARAMS if tracking_params is None else tracking_params
        canonical = _digest(normalize_url(_as_text(raw_input), params), digest_length)
    elif modality is InputModality.TEXT:
        canonical = _digest(normalize_text(_as_text(raw_input)), digest_length)
    else:
        # Exact bytes only: near-duplicate images are distinct inputs.
        canonical = _digest(raw_input, digest_length)

    return f"{owner_id}:{modality.value}:{canonical}"


def normalize_barcode(value: str) -> str:
    """Keep digits only; fall back to the trimmed raw value when none remain."""
    digits = _NON_DIGITS.sub("", value)
    if digits:
        return digits
    logger.debug("Barcode %r has no digits, using trimmed raw value", value)
    return value.strip()


def normalize_url(
    value: str, tracking_params: frozenset[str] | set[str] = DEFAULT_TRACKING_PARAMS
) -> str:
    """Lower-case, drop tracking parameters and re-serialize a URL.

    Idempotent: normalizing an already normalized URL returns it unchanged.
    Unparseable input falls back to the trimmed lower-cased string.
    """
    lowered = value.strip().lower()
    try:
        parts = urlsplit(lowered)
        parts.port  # raises ValueError on a malformed port
    except ValueError:
        logger.debug("URL %r failed to parse, using raw fallback", value)
        return lowered
    if not parts.scheme or not parts.netloc:
        logger.debug("URL %r has no scheme or host, using raw fallback", value)
        return lowered

    query = [
        (k, v)
        for k, v in parse_qsl(parts.query, keep_blank_values=True)
        if k not in tracking_params
    ]
    return urlunsplit(
        (parts.scheme, parts.netloc, parts.path or "/", urlencode(query), parts.fragment)
    )


def normalize_text(value: str) -> str:
    """Trim, lower-case and collapse whitespace runs to one space."""
    return _WHITESPACE.sub(" ", value.strip().lower())


def summarize_input(
    modality: InputModality | str,
    raw_input: str | bytes,
    barcode: str | None = None,
    product_url: str | None = None,
    max_chars: int = 500,
    url_max_chars: int = 200,
) -> str:
    """Bounded human-readable description of an input for records and logs.

    An explicit barcode wins, then an explicit product URL. Image bytes are
    described by size, never echoed.
    """
    if barcode:
        return barcode
    if product_url:
        return _truncate(product_url, url_max_chars)
    if isinstance(raw_input, bytes):
        return f"<{_modality_label(modality)}: {len(raw_input)} bytes>"
    if modality == InputModality.IMAGE:
        return f"<image: {len(raw_input)} chars>"
    return _truncate(raw_input.strip(), max_chars)


def display_name_from_payload(payload: dict[str, Any] | None) -> str | None:
    """Product name reported by the generator, if any."""
    if not payload:
        return None
    name = payload.get("productName")
    return name if isinstance(name, str) else None


@dataclass(frozen=True)
class KeyDeriver:
    """Key derivation bound to configured tracking params and digest length."""

    tracking_params: frozenset[str] = DEFAULT_TRACKING_PARAMS
    digest_length: int = DEFAULT_DIGEST_LENGTH
    summary_max_chars: int = 500
    url_summary_max_chars: int = 200

    @classmethod
    def from_settings(cls, settings: Settings) -> KeyDeriver:
        return cls(
            tracking_params=frozenset(settings.url_tracking_params_list),
            digest_length=settings.cache_key_digest_length,
            summary_max_chars=settings.input_summary_max_chars,
            url_summary_max_chars=settings.url_summary_max_chars,
        )

    def derive(
        self, owner_id: str, modality: InputModality | str, raw_input: str | bytes
    ) -> CacheKey:
        return derive_cache_key(
            owner_id,
            modality,
            raw_input,
            tracking_params=self.tracking_params,
            digest_length=self.digest_length,
        )

    def summarize(
        self,
        modality: InputModality | str,
        raw_input: str | bytes,
        barcode: str | None = None,
        product_url: str | None = None,
    ) -> str:
        return summarize_input(
            modality,
            raw_input,
            barcode=barcode,
            product_url=product_url,
            max_chars=self.summary_max_chars,
            url_max_chars=self.url_summary_max_chars,
        )


def _digest(value: str | bytes, length: int) -> str:
    """SHA-256 hex digest truncated to ``length`` chars."""
    data = value if isinstance(value, bytes) else value.encode("utf-8")
    return hashlib.sha256(data).hexdigest()[:length]


def _as_text(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _truncate(value: str, limit: int) -> str:
    return value[:limit] + "..." if len(value) > limit else value


def _modality_label(modality: InputModality | str) -> str:
    return modality.value if isinstance(modality, InputModality) else str(modality)
