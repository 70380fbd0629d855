"""
Picon Index

Resolves channel names and service references to logo files from a picons
build-source directory::

    <build-source>/snp.index    normalized channel name -> logo base name
    <build-source>/srp.index    service reference -> logo base name
    <build-source>/logos/       {logo base}.{variant}.{svg|png}

The index is loaded once at startup and never refreshed.
"""
import logging
import re
import unicodedata
from pathlib import Path
from typing import Literal

from epg_cache.services.fetch_types import PiconResult


logger = logging.getLogger(__name__)

PiconVariant = Literal["default", "light", "dark", "white", "black"]

PICON_VARIANTS: frozenset[str] = frozenset({"default", "light", "dark", "white", "black"})

SNP_INDEX_FILE = "snp.index"
SRP_INDEX_FILE = "srp.index"
LOGOS_DIR = "logos"

# Preference order within one variant tier
_LOGO_FORMATS = (
    ("svg", "image/svg+xml"),
    ("png", "image/png"),
)

_COMBINING_MARKS_RE = re.compile("[\u0300-\u036f]")
_NON_ALNUM_RE = re.compile("[^a-z0-9]")


def normalize_snp(name: str) -> str:
    """
    Normalize a channel name with the picons Service Name Picon convention.

    NFKD decompose, strip combining diacritics, spell out ``&``, ``+`` and
    ``*``, lowercase, then drop everything outside ``[a-z0-9]``.

    >>> normalize_snp("Das Erste HD")
    'daserstehd'
    >>> normalize_snp("Télé München")
    'telemunchen'
    """
    normalized = unicodedata.normalize("NFKD", name)
    normalized = _COMBINING_MARKS_RE.sub("", normalized)
    normalized = normalized.replace("&", "and").replace("+", "plus").replace("*", "star")
    return _NON_ALNUM_RE.sub("", normalized.lower())


def parse_index(content: str) -> dict[str, str]:
    """Parse ``key=value`` lines; lines without a key or a value are skipped."""
    entries: dict[str, str] = {}
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        if key and value:
            entries[key] = value
    return entries


class PiconIndex:
    """Static lookup from channel identity to logo file."""

    def __init__(self, build_source_path: str | Path) -> None:
        root = Path(build_source_path)
        if not root.exists():
            raise FileNotFoundError(f"Picon build-source path does not exist: {root}")

        snp_path = root / SNP_INDEX_FILE
        srp_path = root / SRP_INDEX_FILE
        if not snp_path.exists():
            raise FileNotFoundError(f"SNP index not found: {snp_path}")
        if not srp_path.exists():
            raise FileNotFoundError(f"SRP index not found: {srp_path}")

        self._snp_index = parse_index(snp_path.read_text(encoding="utf-8"))
        self._srp_index = parse_index(srp_path.read_text(encoding="utf-8"))
        self._logos_dir = root / LOGOS_DIR

        logger.info(
            "Picon index loaded from %s: %s SNP entries, %s SRP entries",
            root,
            len(self._snp_index),
            len(self._srp_index),
        )

    def resolve_by_channel_name(self, name: str, variant: PiconVariant = "default") -> PiconResult | None:
        logo_base = self._snp_index.get(normalize_snp(name))
        if not logo_base:
            return None
        return self._resolve_logo_file(logo_base, variant)

    def resolve_by_service_ref(self, ref: str, variant: PiconVariant = "default") -> PiconResult | None:
        logo_base = self._srp_index.get(ref)
        if not logo_base:
            return None
        return self._resolve_logo_file(logo_base, variant)

    def get_stats(self) -> dict[str, int]:
        return {
            "snpEntries": len(self._snp_index),
            "srpEntries": len(self._srp_index),
        }

    def _resolve_logo_file(self, logo_base: str, variant: str) -> PiconResult | None:
        tiers = [variant] if variant == "default" else [variant, "default"]

        for tier in tiers:
            for extension, content_type in _LOGO_FORMATS:
                candidate = self._logos_dir / f"{logo_base}.{tier}.{extension}"
                if candidate.is_file():
                    return PiconResult(file_path=str(candidate), content_type=content_type)

        logger.debug("No logo file for %s (variant=%s)", logo_base, variant)
        return None
