"""
Municipal branding lookup with deterministic fallbacks.
Unknown municipalities are a degraded-but-valid case: resolve() always returns a usable profile.
"""
import json
import logging
import re
import unicodedata
from typing import Dict, Mapping, Optional
from urllib.parse import urlparse

from .models import BrandingConfig, CulturalContext, MunicipalBrandingProfile
from .settings import BRANDING_PROFILES_PATH, DEFAULT_LOGO_BASE_URL

logger = logging.getLogger(__name__)

_HEX_COLOR = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")
_SEPARATORS = re.compile(r"[\s\-_.]+")

KNOWN_PROFILES: Dict[str, MunicipalBrandingProfile] = {
    "malmo": MunicipalBrandingProfile(
        municipality="Malmö Stad",
        primary_color="#005293",
        secondary_color="#E6F3FF",
        logo_url="https://malmo.se/images/malmo-logo.svg",
        cultural_context=CulturalContext.SWEDISH,
        branding_config=BrandingConfig(font_family="Inter, -apple-system, sans-serif", border_radius="8px", spacing="standard"),
    ),
    "stockholm": MunicipalBrandingProfile(
        municipality="Stockholms Stad",
        primary_color="#006633",
        secondary_color="#E8F5E9",
        logo_url="https://stockholm.se/images/stockholm-logo.svg",
        cultural_context=CulturalContext.SWEDISH,
        branding_config=BrandingConfig(font_family="Inter, sans-serif", border_radius="4px", spacing="compact"),
    ),
    "gothenburg": MunicipalBrandingProfile(
        municipality="Göteborgs Stad",
        primary_color="#004B8D",
        secondary_color="#E3F2FD",
        logo_url="https://goteborg.se/images/goteborg-logo.svg",
        cultural_context=CulturalContext.SWEDISH,
        branding_config=BrandingConfig(font_family="Inter, sans-serif", border_radius="8px", spacing="spacious"),
    ),
    "berlin": MunicipalBrandingProfile(
        municipality="Stadt Berlin",
        primary_color="#E3000F",
        secondary_color="#FFEBEE",
        logo_url="https://berlin.de/images/berlin-logo.svg",
        cultural_context=CulturalContext.GERMAN,
        branding_config=BrandingConfig(font_family="Inter, sans-serif", border_radius="4px", spacing="compact"),
    ),
    "paris": MunicipalBrandingProfile(
        municipality="Ville de Paris",
        primary_color="#004494",
        secondary_color="#E3F2FD",
        logo_url="https://paris.fr/images/paris-logo.svg",
        cultural_context=CulturalContext.FRENCH,
        branding_config=BrandingConfig(font_family="Inter, Georgia, serif", border_radius="12px", spacing="spacious"),
    ),
    "amsterdam": MunicipalBrandingProfile(
        municipality="Gemeente Amsterdam",
        primary_color="#EC0000",
        secondary_color="#FFEBEE",
        logo_url="https://amsterdam.nl/images/amsterdam-logo.svg",
        cultural_context=CulturalContext.DUTCH,
        branding_config=BrandingConfig(font_family="Inter, sans-serif", border_radius="6px", spacing="standard"),
    ),
}

ALIASES = {"goteborg": "gothenburg"}


def _default(context: CulturalContext, municipality: str, primary: str, secondary: str, config: BrandingConfig):
    return MunicipalBrandingProfile(
        municipality=municipality,
        primary_color=primary,
        secondary_color=secondary,
        logo_url=f"{DEFAULT_LOGO_BASE_URL}/default-{context.value}.svg",
        cultural_context=context,
        branding_config=config,
    )


DEFAULT_PROFILES: Dict[CulturalContext, MunicipalBrandingProfile] = {
    CulturalContext.SWEDISH: _default(
        CulturalContext.SWEDISH, "Svenska Kommuner", "#005AA0", "#E6F3FF",
        BrandingConfig(font_family="Inter, -apple-system, sans-serif", border_radius="8px", spacing="standard"),
    ),
    CulturalContext.GERMAN: _default(
        CulturalContext.GERMAN, "Deutsche Gemeinde", "#1F2937", "#F3F4F6",
        BrandingConfig(font_family="Inter, sans-serif", border_radius="4px", spacing="compact"),
    ),
    CulturalContext.FRENCH: _default(
        CulturalContext.FRENCH, "Commune Française", "#7C3AED", "#F3E8FF",
        BrandingConfig(font_family="Inter, Georgia, serif", border_radius="12px", spacing="spacious"),
    ),
    CulturalContext.DUTCH: _default(
        CulturalContext.DUTCH, "Nederlandse Gemeente", "#EA580C", "#FFF7ED",
        BrandingConfig(font_family="Inter, sans-serif", border_radius="6px", spacing="standard"),
    ),
}
BASELINE_CONTEXT = CulturalContext.SWEDISH

# (country codes matched as whole tokens, name fragments matched as substrings)
_CONTEXT_HINTS = [
    (CulturalContext.GERMAN, {"de", "at"}, ("german", "deutsch", "gemeinde", "stadt")),
    (CulturalContext.FRENCH, {"fr", "be"}, ("french", "france", "commune", "ville")),
    (CulturalContext.DUTCH, {"nl"}, ("dutch", "nederland", "holland", "gemeente")),
    (CulturalContext.SWEDISH, {"se"}, ("sweden", "sverige", "kommun")),
]


def _fold(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c)).lower()


def normalize_municipality_id(municipality_id: str) -> str:
    """``" Malmö-Stad "`` -> ``"malmostad"``."""
    return _SEPARATORS.sub("", _fold(municipality_id or ""))


def infer_cultural_context(municipality_id: str) -> CulturalContext:
    folded = _fold(municipality_id or "")
    tokens = {t for t in _SEPARATORS.split(folded) if t}
    compact = _SEPARATORS.sub("", folded)
    for context, codes, fragments in _CONTEXT_HINTS:
        if tokens & codes or any(f in compact for f in fragments):
            return context
    return BASELINE_CONTEXT


def is_valid_hex_color(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(_HEX_COLOR.match(value))


def is_valid_url(value: Optional[str]) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def sanitize_profile(profile: MunicipalBrandingProfile) -> MunicipalBrandingProfile:
    """Replace blank or malformed fields with the cultural-context default."""
    base = DEFAULT_PROFILES.get(profile.cultural_context, DEFAULT_PROFILES[BASELINE_CONTEXT])
    config = profile.branding_config
    return MunicipalBrandingProfile(
        municipality=profile.municipality.strip() or base.municipality,
        primary_color=profile.primary_color if is_valid_hex_color(profile.primary_color) else base.primary_color,
        secondary_color=profile.secondary_color if is_valid_hex_color(profile.secondary_color) else base.secondary_color,
        logo_url=profile.logo_url if is_valid_url(profile.logo_url) else base.logo_url,
        cultural_context=profile.cultural_context,
        branding_config=BrandingConfig(
            font_family=config.font_family.strip() or base.branding_config.font_family,
            border_radius=config.border_radius.strip() or base.branding_config.border_radius,
            spacing=config.spacing,
        ),
    )


class BrandingResolver:
    """Maps municipality identifiers to branding profiles."""

    def __init__(self, profiles: Optional[Mapping[str, MunicipalBrandingProfile]] = None):
        self._profiles: Dict[str, MunicipalBrandingProfile] = dict(KNOWN_PROFILES)
        for key, profile in (profiles or {}).items():
            self._profiles[normalize_municipality_id(key)] = profile

    @classmethod
    def from_file(cls, path: str) -> "BrandingResolver":
        """Load extra profiles from a JSON object of ``{municipalityId: profile}``."""
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        profiles = {key: MunicipalBrandingProfile.model_validate(value) for key, value in raw.items()}
        logger.info(f"Loaded {len(profiles)} branding profiles from {path}")
        return cls(profiles)

    def resolve(self, municipality_id: str) -> MunicipalBrandingProfile:
        key = normalize_municipality_id(municipality_id)
        key = ALIASES.get(key, key)
        profile = self._profiles.get(key)
        if profile is not None:
            return profile

        context = infer_cultural_context(municipality_id)
        base = DEFAULT_PROFILES[context]
        logger.info(f"No branding profile for '{municipality_id}', using {context.value} fallback")
        return base.model_copy(update={"municipality": (municipality_id or "").strip() or base.municipality})


def default_resolver() -> BrandingResolver:
    if BRANDING_PROFILES_PATH:
        return BrandingResolver.from_file(BRANDING_PROFILES_PATH)
    return BrandingResolver()
