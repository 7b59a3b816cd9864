"""
Location normalization for member profiles.

Maps the free-text location a member typed into their profile onto a
canonical country name. Pure and deterministic; the mapping table is
built once at import time and never mutated.
"""

import re
from types import MappingProxyType
from typing import Optional

# Sentinel bucket for members whose location yields no country
NO_COUNTRY = "No country"

_COMMA_RE = re.compile(r"\s*,\s*")

# Normalized whole-location strings -> canonical country name.
# Keys must already be in normalized form (lower-case, ", " separators).
COUNTRY_ALIASES = MappingProxyType({
    # United States
    "usa": "United States",
    "us": "United States",
    "u.s.a.": "United States",
    "u.s.": "United States",
    "united states of america": "United States",
    "estados unidos": "United States",
    "eeuu": "United States",
    "ee.uu.": "United States",
    # United Kingdom
    "uk": "United Kingdom",
    "u.k.": "United Kingdom",
    "great britain": "United Kingdom",
    "england": "United Kingdom",
    "scotland": "United Kingdom",
    "wales": "United Kingdom",
    "reino unido": "United Kingdom",
    "london, england": "United Kingdom",
    "london, uk": "United Kingdom",
    # Netherlands (historically entered as either name)
    "holland": "Netherlands",
    "the netherlands": "Netherlands",
    "holanda": "Netherlands",
    "países bajos": "Netherlands",
    "paises bajos": "Netherlands",
    # Spanish-language country names
    "españa": "Spain",
    "espana": "Spain",
    "méxico": "Mexico",
    "ciudad de méxico": "Mexico",
    "ciudad de mexico": "Mexico",
    "cdmx": "Mexico",
    "cdmx, méxico": "Mexico",
    "cdmx, mexico": "Mexico",
    "perú": "Peru",
    "panamá": "Panama",
    "brasil": "Brazil",
    "alemania": "Germany",
    "deutschland": "Germany",
    "francia": "France",
    "italia": "Italy",
    "república dominicana": "Dominican Republic",
    "republica dominicana": "Dominican Republic",
    # Country-name variants
    "czechia": "Czech Republic",
    "türkiye": "Turkey",
    "turkiye": "Turkey",
    "korea": "South Korea",
    "republic of korea": "South Korea",
    "russian federation": "Russia",
    "uae": "United Arab Emirates",
    # Cities typed without their country
    "buenos aires": "Argentina",
    "caba": "Argentina",
    "caba, buenos aires": "Argentina",
    "bogotá": "Colombia",
    "bogota": "Colombia",
    "bogotá, d.c.": "Colombia",
    "santiago de chile": "Chile",
    "new york": "United States",
    "nyc": "United States",
    "san francisco, ca": "United States",
})


def normalize_text(location: str) -> str:
    """Lower-case, trim and collapse comma separators to ', '."""
    return _COMMA_RE.sub(", ", location.strip().lower())


def title_case(text: str) -> str:
    """Capitalize each space-separated word."""
    return " ".join(word.capitalize() for word in text.split())


def normalize_country(location: Optional[str]) -> str:
    """Resolve a free-text location to a canonical country name.

    Known locations and aliases are looked up whole. Otherwise the last
    comma-separated segment is taken as the country, or the whole string
    when there is no comma, and title-cased.

    Returns:
        The canonical country, or NO_COUNTRY when nothing usable remains.
    """
    if not location:
        return NO_COUNTRY

    normalized = normalize_text(location)
    if not normalized:
        return NO_COUNTRY

    known = COUNTRY_ALIASES.get(normalized)
    if known:
        return known

    segments = [s for s in normalized.split(", ") if s.strip()]
    if not segments:
        return NO_COUNTRY

    candidate = title_case(segments[-1])
    return candidate or NO_COUNTRY
