import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from .branding import sanitize_profile
from .errors import TransformationError
from .models import (
    AssessmentScene,
    BrandingLevel,
    CulturalContext,
    DialogueScene,
    GameManifest,
    MunicipalBrandingProfile,
    QuizScene,
)

logger = logging.getLogger(__name__)

CULTURAL_HINTS: Dict[CulturalContext, Dict[str, str]] = {
    CulturalContext.SWEDISH: {"locale": "sv-SE", "formality": "informal", "dateFormat": "YYYY-MM-DD"},
    CulturalContext.GERMAN: {"locale": "de-DE", "formality": "formal", "dateFormat": "DD.MM.YYYY"},
    CulturalContext.FRENCH: {"locale": "fr-FR", "formality": "formal", "dateFormat": "DD/MM/YYYY"},
    CulturalContext.DUTCH: {"locale": "nl-NL", "formality": "informal", "dateFormat": "DD-MM-YYYY"},
}

LOGO_ALT = {
    CulturalContext.SWEDISH: "{name} logotyp",
    CulturalContext.GERMAN: "{name} Logo",
    CulturalContext.FRENCH: "Logo {name}",
    CulturalContext.DUTCH: "{name} logo",
}


def _shift_color(hex_color: str, amount: float, toward: int) -> str:
    value = hex_color.lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    channels = [int(value[i:i + 2], 16) for i in (0, 2, 4)]
    shifted = [round(c + (toward - c) * amount) for c in channels]
    return "#" + "".join(f"{c:02X}" for c in shifted)


def lighten_color(hex_color: str, amount: float) -> str:
    return _shift_color(hex_color, amount, 255)


def darken_color(hex_color: str, amount: float) -> str:
    return _shift_color(hex_color, amount, 0)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_scenes(manifest: Union[Dict[str, Any], GameManifest], processed_at: Optional[datetime] = None) -> GameManifest:
    """Parse a validated manifest into typed scenes and mark each one processed.

    Scene content is left untouched; only ``processed``/``processedAt`` change.
    """
    try:
        parsed = manifest.model_copy(deep=True) if isinstance(manifest, GameManifest) else GameManifest.model_validate(manifest)
    except ValidationError as e:
        problems = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise TransformationError("Manifest could not be normalised", problems) from e

    stamp = processed_at or _now()
    scenes = []
    for scene in parsed.scenes:
        if isinstance(scene, (DialogueScene, QuizScene, AssessmentScene)):
            scenes.append(scene.model_copy(update={"processed": True, "processed_at": stamp}))
        else:
            raise TransformationError(f"Unsupported scene variant {type(scene).__name__}")
    return parsed.model_copy(update={"scenes": scenes})


def build_theme(profile: MunicipalBrandingProfile, level: BrandingLevel, applied_at: Optional[datetime] = None) -> Dict[str, Any]:
    profile = sanitize_profile(profile)
    theme: Dict[str, Any] = {
        "colors": {
            "primary": profile.primary_color,
            "primaryDark": darken_color(profile.primary_color, 0.3),
            "secondary": profile.secondary_color,
            "success": "#38A169",
            "background": "#FFFFFF",
            "text": "#1A202C",
        }
    }
    if level == BrandingLevel.MINIMAL:
        return theme

    alt = LOGO_ALT[profile.cultural_context].format(name=profile.municipality)
    theme["brand"] = {
        "name": profile.municipality,
        "logo": {"url": profile.logo_url, "alt": alt, "placement": "header", "maxHeight": "48px"},
    }
    theme["typography"] = {
        "fontFamily": {
            "heading": profile.branding_config.font_family,
            "body": profile.branding_config.font_family,
        }
    }
    theme["settings"] = {
        "borderRadius": profile.branding_config.border_radius,
        "spacing": profile.branding_config.spacing,
    }
    if level == BrandingLevel.STANDARD:
        return theme

    theme["municipalMetadata"] = {
        "municipality": profile.municipality,
        "culturalContext": profile.cultural_context.value,
        "brandingLevel": level.value,
        "appliedAt": (applied_at or _now()).isoformat(),
    }
    theme["culturalAdaptation"] = {"context": profile.cultural_context.value, **CULTURAL_HINTS[profile.cultural_context]}
    return theme


def apply_branding(manifest: GameManifest, profile: MunicipalBrandingProfile, level: BrandingLevel) -> GameManifest:
    """Attach a ``theme`` for the given branding level. Returns a new manifest."""
    try:
        theme = build_theme(profile, BrandingLevel(level))
    except (KeyError, ValueError) as e:
        raise TransformationError(f"Branding could not be applied: {e}") from e
    logger.info(f"Applied {BrandingLevel(level).value} branding for {profile.municipality} to {manifest.game_id}")
    return manifest.model_copy(update={"theme": theme}, deep=True)


def transform(validated_manifest: Union[Dict[str, Any], GameManifest], branding_profile: MunicipalBrandingProfile,
              branding_level: BrandingLevel) -> GameManifest:
    return apply_branding(normalize_scenes(validated_manifest), branding_profile, branding_level)
