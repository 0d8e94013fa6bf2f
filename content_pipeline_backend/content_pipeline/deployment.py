import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Optional
from urllib.parse import quote

import httpx

from .branding import normalize_municipality_id
from .errors import DeploymentError
from .models import DeploymentFormat, DeploymentOptions, MunicipalMarket
from .settings import ARTIFACT_UPLOAD_TOKEN, ARTIFACT_UPLOAD_URL, DEPLOYMENT_BASE_URL

logger = logging.getLogger(__name__)

MARKET_REGIONS: Dict[MunicipalMarket, str] = {
    MunicipalMarket.SWEDEN: "eu-north-1",
    MunicipalMarket.GERMANY: "eu-central-1",
    MunicipalMarket.FRANCE: "eu-west-3",
    MunicipalMarket.NETHERLANDS: "eu-west-1",
}
DEFAULT_REGION = "eu-north-1"


@dataclass(frozen=True)
class DeploymentTarget:
    format: DeploymentFormat
    region: str
    url: str


def resolve_region(markets: Iterable[MunicipalMarket]) -> str:
    for market in markets:
        return MARKET_REGIONS.get(MunicipalMarket(market), DEFAULT_REGION)
    return DEFAULT_REGION


def municipality_slug(municipality_id: str) -> str:
    return normalize_municipality_id(municipality_id) or "default"


def resolve(format: DeploymentFormat, package, options: DeploymentOptions, base_url: str = DEPLOYMENT_BASE_URL) -> str:
    """Deployment URL for one package. Pure; same inputs give the same URL."""
    return resolve_target(format, package, options, base_url).url


def resolve_target(format: DeploymentFormat, package, options: DeploymentOptions,
                   base_url: str = DEPLOYMENT_BASE_URL) -> DeploymentTarget:
    fmt = DeploymentFormat(format)
    region = resolve_region(options.markets)
    base = base_url.rstrip("/")
    municipality = quote(municipality_slug(options.municipality_id), safe="")
    game = quote(package.game_id, safe="")

    if fmt == DeploymentFormat.WEB:
        url = f"{base}/{region}/{municipality}/{game}/"
    elif fmt == DeploymentFormat.SCORM:
        url = f"{base}/{region}/scorm/{municipality}/{game}/scorm-package.zip"
    elif fmt == DeploymentFormat.PWA:
        url = f"{base}/{region}/apps/{municipality}/{game}/"
    else:
        raise DeploymentError(f"Unsupported deployment format '{fmt.value}'")
    return DeploymentTarget(format=fmt, region=region, url=url)


class ArtifactPublisher(ABC):
    """Pushes a built package to the storage/CDN location behind a deployment URL."""

    @abstractmethod
    async def publish(self, target: DeploymentTarget, package) -> None:
        """Raise DeploymentError when the upload fails."""


class LoggingPublisher(ArtifactPublisher):
    async def publish(self, target: DeploymentTarget, package) -> None:
        logger.info(f"Deploying {target.format.value} package to {target.region}: {target.url}")


class HttpArtifactPublisher(ArtifactPublisher):
    """PUTs the package descriptor JSON to an object storage endpoint."""

    def __init__(self, upload_url: str, token: str = "", timeout: float = 30,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.upload_url = upload_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def object_key(self, target: DeploymentTarget) -> str:
        path = target.url.split("://", 1)[-1].split("/", 1)[-1]
        if path.endswith("/"):
            path += "package.json"
        return path

    async def publish(self, target: DeploymentTarget, package) -> None:
        key = self.object_key(target)
        body = json.dumps(package.model_dump(mode="json", by_alias=True))
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.put(f"{self.upload_url}/{key}", headers=self._headers(), content=body)
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeploymentError(f"Upload of {target.format.value} package to {key} failed: {e}") from e
        logger.info(f"Uploaded {target.format.value} package to {key} ({target.region})")


def default_publisher() -> ArtifactPublisher:
    if ARTIFACT_UPLOAD_URL:
        return HttpArtifactPublisher(ARTIFACT_UPLOAD_URL, ARTIFACT_UPLOAD_TOKEN)
    return LoggingPublisher()
