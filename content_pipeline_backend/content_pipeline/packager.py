"""
Deployment package descriptors, one per requested format.
Each builder runs independently so one broken format never blocks its siblings.
"""
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Mapping, Optional

from .models import (
    AssessmentScene,
    CulturalContext,
    DeploymentFormat,
    DialogueScene,
    GameManifest,
    PwaPackage,
    QuizScene,
    ScormPackage,
    WebPackage,
)
from .settings import SCORM_MASTERY_SCORE, SCORM_MAX_TIME_MINUTES

logger = logging.getLogger(__name__)

DEFAULT_THEME_COLOR = "#005AA0"
LIGHTHOUSE_TARGETS = {"performance": 95, "accessibility": 100, "bestPractices": 95, "seo": 90}

INSTALL_MESSAGES = {
    CulturalContext.SWEDISH.value: "Installera {title} för att spela offline",
    CulturalContext.GERMAN.value: "Installieren Sie {title}, um offline zu spielen",
    CulturalContext.FRENCH.value: "Installez {title} pour jouer hors ligne",
    CulturalContext.DUTCH.value: "Installeer {title} om offline te spelen",
}


def _theme(manifest: GameManifest) -> dict:
    return manifest.theme or {}


def _scene_asset(scene) -> str:
    if isinstance(scene, DialogueScene):
        return f"scenes/dialogue-{scene.id}.json"
    if isinstance(scene, QuizScene):
        return f"scenes/quiz-{scene.id}.json"
    if isinstance(scene, AssessmentScene):
        return f"scenes/assessment-{scene.id}.json"
    raise TypeError(f"Unsupported scene variant {type(scene).__name__}")


def build_web_package(manifest: GameManifest) -> WebPackage:
    metadata = _theme(manifest).get("municipalMetadata")
    analytics = None
    if metadata:
        analytics = {"provider": "matomo", "siteId": metadata.get("municipality")}
    return WebPackage(
        game_id=manifest.game_id,
        manifest=manifest,
        assets=["runtime-engine.js", "game-manifest.json"] + [_scene_asset(s) for s in manifest.scenes] + ["assets/**/*"],
        build_config={"format": "static-site", "minify": True, "optimize": True, "lighthouse": dict(LIGHTHOUSE_TARGETS)},
        analytics=analytics,
    )


def scorm_mastery_score(manifest: GameManifest) -> int:
    scores = [s.passing_score for s in manifest.scenes if isinstance(s, AssessmentScene)]
    return max(scores) if scores else SCORM_MASTERY_SCORE


def iso_duration(minutes: int) -> str:
    hours, rest = divmod(minutes, 60)
    return f"PT{hours}H{rest}M0S"


def render_imsmanifest(package: ScormPackage) -> str:
    """Minimal SCORM 2004 4th Edition imsmanifest.xml for a single SCO."""
    ns = "http://www.imsglobal.org/xsd/imscp_v1p1"
    adlcp = "http://www.adlnet.org/xsd/adlcp_v1p3"
    imsss = "http://www.imsglobal.org/xsd/imsss"
    ET.register_namespace("", ns)
    ET.register_namespace("adlcp", adlcp)
    ET.register_namespace("imsss", imsss)

    root = ET.Element(f"{{{ns}}}manifest", {"identifier": package.identifier, "version": "1"})
    meta = ET.SubElement(root, f"{{{ns}}}metadata")
    ET.SubElement(meta, f"{{{ns}}}schema").text = "ADL SCORM"
    ET.SubElement(meta, f"{{{ns}}}schemaversion").text = package.scorm_version

    orgs = ET.SubElement(root, f"{{{ns}}}organizations", {"default": f"{package.identifier}.org"})
    org = ET.SubElement(orgs, f"{{{ns}}}organization", {"identifier": f"{package.identifier}.org"})
    ET.SubElement(org, f"{{{ns}}}title").text = package.title
    item = ET.SubElement(org, f"{{{ns}}}item", {"identifier": "item_1", "identifierref": "resource_1"})
    ET.SubElement(item, f"{{{ns}}}title").text = package.title
    ET.SubElement(item, f"{{{adlcp}}}completionThreshold", {"minProgressMeasure": str(package.completion_threshold)})
    sequencing = ET.SubElement(item, f"{{{imsss}}}sequencing")
    limits = ET.SubElement(sequencing, f"{{{imsss}}}limitConditions")
    limits.set("attemptAbsoluteDurationLimit", package.max_time_allowed)
    objectives = ET.SubElement(sequencing, f"{{{imsss}}}objectives")
    primary = ET.SubElement(objectives, f"{{{imsss}}}primaryObjective", {"objectiveID": "mastery", "satisfiedByMeasure": "true"})
    ET.SubElement(primary, f"{{{imsss}}}minNormalizedMeasure").text = f"{package.mastery_score / 100:.2f}"

    resources = ET.SubElement(root, f"{{{ns}}}resources")
    resource = ET.SubElement(resources, f"{{{ns}}}resource", {
        "identifier": "resource_1",
        "type": "webcontent",
        f"{{{adlcp}}}scormType": "sco",
        "href": package.entry,
    })
    ET.SubElement(resource, f"{{{ns}}}file", {"href": package.entry})
    ET.SubElement(resource, f"{{{ns}}}file", {"href": "game-manifest.json"})
    return ET.tostring(root, encoding="unicode", xml_declaration=True)


def build_scorm_package(manifest: GameManifest) -> ScormPackage:
    package = ScormPackage(
        game_id=manifest.game_id,
        manifest=manifest,
        identifier=f"com.diginativa.{manifest.game_id}",
        title=manifest.metadata.title,
        description=manifest.metadata.description,
        mastery_score=scorm_mastery_score(manifest),
        max_time_allowed=iso_duration(SCORM_MAX_TIME_MINUTES),
        completion_threshold=0.8,
        tracking={
            "scoreTracking": True,
            "progressTracking": True,
            "interactionTracking": True,
            "objectiveTracking": True,
        },
        lms_compatibility={"moodle": True, "cornerstone": True, "successFactors": True, "workday": True},
    )
    return package.model_copy(update={"imsmanifest": render_imsmanifest(package)})


def build_pwa_package(manifest: GameManifest) -> PwaPackage:
    theme = _theme(manifest)
    title = manifest.metadata.title
    context = (theme.get("municipalMetadata") or {}).get("culturalContext") or CulturalContext.SWEDISH.value
    message = INSTALL_MESSAGES.get(context, INSTALL_MESSAGES[CulturalContext.SWEDISH.value])
    return PwaPackage(
        game_id=manifest.game_id,
        manifest=manifest,
        web_manifest={
            "name": title,
            "short_name": title[:12],
            "description": manifest.metadata.description,
            "lang": manifest.metadata.language,
            "start_url": "/",
            "display": "standalone",
            "background_color": "#ffffff",
            "theme_color": (theme.get("colors") or {}).get("primary") or DEFAULT_THEME_COLOR,
            "icons": [
                {"src": "/icons/icon-192x192.png", "sizes": "192x192", "type": "image/png"},
                {"src": "/icons/icon-512x512.png", "sizes": "512x512", "type": "image/png"},
            ],
        },
        offline_support={"strategy": "cache-first", "cacheAssets": True, "cacheApi": False, "offlinePage": "/offline.html"},
        install_prompt={"enabled": True, "timing": "after-engagement", "customMessage": message.format(title=title)},
        features={"pushNotifications": False, "backgroundSync": False, "webShare": True, "installable": True},
    )


BUILDERS: Dict[DeploymentFormat, Callable] = {
    DeploymentFormat.WEB: build_web_package,
    DeploymentFormat.SCORM: build_scorm_package,
    DeploymentFormat.PWA: build_pwa_package,
}


@dataclass
class PackagingReport:
    packages: Dict[str, object] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failures


class PackageBuilder:
    def __init__(self, builders: Optional[Mapping[DeploymentFormat, Callable]] = None):
        self.builders = dict(BUILDERS)
        self.builders.update(builders or {})

    def build(self, manifest: GameManifest, formats: Iterable[DeploymentFormat]) -> PackagingReport:
        report = PackagingReport()
        for fmt in formats:
            fmt = DeploymentFormat(fmt)
            builder = self.builders.get(fmt)
            if builder is None:
                report.failures[fmt.value] = f"No package builder for format '{fmt.value}'"
                continue
            try:
                report.packages[fmt.value] = builder(manifest)
                logger.info(f"Built {fmt.value} package for {manifest.game_id}")
            except Exception as e:
                logger.error(f"Building {fmt.value} package for {manifest.game_id} failed: {e}")
                report.failures[fmt.value] = f"{fmt.value} package failed: {e}"
        return report
