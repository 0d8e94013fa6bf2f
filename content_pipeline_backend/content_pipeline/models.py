from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeploymentFormat(str, Enum):
    WEB = "web"
    SCORM = "scorm"
    PWA = "pwa"


class MunicipalMarket(str, Enum):
    SWEDEN = "sweden"
    GERMANY = "germany"
    FRANCE = "france"
    NETHERLANDS = "netherlands"


class BrandingLevel(str, Enum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    FULL = "full"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class CulturalContext(str, Enum):
    SWEDISH = "swedish"
    GERMAN = "german"
    FRENCH = "french"
    DUTCH = "dutch"


class ProcessingStatus(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    PROCESSING = "processing"
    BRANDING = "branding"
    PACKAGING = "packaging"
    DEPLOYING = "deploying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ProcessingStatus.COMPLETED, ProcessingStatus.FAILED)


# Forward order of the pipeline; FAILED sits outside it
STATUS_ORDER = [
    ProcessingStatus.RECEIVED,
    ProcessingStatus.VALIDATING,
    ProcessingStatus.PROCESSING,
    ProcessingStatus.BRANDING,
    ProcessingStatus.PACKAGING,
    ProcessingStatus.DEPLOYING,
    ProcessingStatus.COMPLETED,
]


# --- Manifest ---

class GameMetadata(CamelModel):
    model_config = ConfigDict(extra="allow")

    title: str
    subtitle: Optional[str] = None
    description: str
    duration: Union[int, float, str]
    difficulty: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    learning_objectives: List[str] = Field(default_factory=list)
    target_audience: str
    language: str
    version: str = "1.0.0"


class DialogueMessage(CamelModel):
    model_config = ConfigDict(extra="allow")

    speaker: str
    text: str
    character_id: Optional[str] = None


class QuizOption(CamelModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    text: str
    is_correct: bool = False


class QuizQuestion(CamelModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    question: str
    options: List[QuizOption]
    explanation: Optional[str] = None


class SceneBase(CamelModel):
    model_config = ConfigDict(extra="allow")

    id: str
    title: Optional[str] = None
    duration: Optional[float] = None
    processed: bool = False
    processed_at: Optional[datetime] = None


class DialogueScene(SceneBase):
    type: Literal["dialogue"] = "dialogue"
    messages: List[DialogueMessage]


class QuizScene(SceneBase):
    type: Literal["quiz"] = "quiz"
    questions: List[QuizQuestion]


class AssessmentScene(SceneBase):
    type: Literal["assessment"] = "assessment"
    questions: List[QuizQuestion]
    passing_score: int = Field(default=80, ge=0, le=100)


Scene = Annotated[Union[DialogueScene, QuizScene, AssessmentScene], Field(discriminator="type")]

SCENE_TYPES = ("dialogue", "quiz", "assessment")


class GameManifest(CamelModel):
    model_config = ConfigDict(extra="allow")

    game_id: str
    metadata: GameMetadata
    scenes: List[Scene] = Field(min_length=1)
    theme: Optional[Dict[str, Any]] = None


# --- Submission ---

class DeploymentOptions(CamelModel):
    formats: List[DeploymentFormat] = Field(min_length=1)
    markets: List[MunicipalMarket] = Field(default_factory=list)
    municipality_id: str
    branding_level: BrandingLevel = BrandingLevel.STANDARD

    @field_validator("formats")
    @classmethod
    def _unique_formats(cls, value: List[DeploymentFormat]) -> List[DeploymentFormat]:
        # formats is a set on the wire; keep first-seen order
        return list(dict.fromkeys(value))

    @field_validator("municipality_id")
    @classmethod
    def _non_blank_municipality(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("municipalityId must not be empty")
        return value.strip()


class ProcessingOptions(CamelModel):
    priority: Priority = Priority.NORMAL
    webhook_url: Optional[str] = None
    dry_run: bool = False

    @field_validator("webhook_url")
    @classmethod
    def _http_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("webhookUrl must be an absolute http(s) URL")
        return value


class ContentSubmission(CamelModel):
    game_manifest: Dict[str, Any]
    deployment_options: DeploymentOptions
    processing_options: ProcessingOptions = Field(default_factory=ProcessingOptions)


# --- Job record ---

class ProcessingJob(CamelModel):
    job_id: str
    game_id: Optional[str] = None
    municipality_id: str
    formats: List[DeploymentFormat]
    status: ProcessingStatus = ProcessingStatus.RECEIVED
    progress: int = Field(default=0, ge=0, le=100)
    message: str = "Content received, waiting for a worker"
    start_time: datetime
    end_time: Optional[datetime] = None
    deployment_urls: Optional[Dict[str, str]] = None
    errors: Optional[List[str]] = None
    warnings: List[str] = Field(default_factory=list)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# --- Branding ---

class BrandingConfig(CamelModel):
    model_config = ConfigDict(frozen=True)

    font_family: str = "Inter, sans-serif"
    border_radius: str = "8px"
    spacing: Literal["compact", "standard", "spacious"] = "standard"


class MunicipalBrandingProfile(CamelModel):
    model_config = ConfigDict(frozen=True)

    municipality: str
    primary_color: str
    secondary_color: str
    logo_url: str
    cultural_context: CulturalContext
    branding_config: BrandingConfig = Field(default_factory=BrandingConfig)


# --- Validation ---

class PerformanceEstimate(CamelModel):
    content_size: int = 0
    estimated_load_time: int = 0


class ValidationResult(CamelModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    performance: PerformanceEstimate = Field(default_factory=PerformanceEstimate)
    suggestions: List[str] = Field(default_factory=list)
    validation_time: float = 0.0


# --- Packages ---

class PackageBase(CamelModel):
    game_id: str
    manifest: GameManifest
    entry: str = "index.html"


class WebPackage(PackageBase):
    format: Literal["web"] = "web"
    assets: List[str]
    build_config: Dict[str, Any]
    analytics: Optional[Dict[str, Any]] = None


class ScormPackage(PackageBase):
    format: Literal["scorm"] = "scorm"
    scorm_version: str = "2004 4th Edition"
    manifest_file: str = "imsmanifest.xml"
    identifier: str
    title: str
    description: str
    mastery_score: int
    max_time_allowed: str
    completion_threshold: float
    tracking: Dict[str, bool]
    lms_compatibility: Dict[str, bool]
    imsmanifest: str = ""


class PwaPackage(PackageBase):
    format: Literal["pwa"] = "pwa"
    service_worker: str = "sw.js"
    web_manifest: Dict[str, Any]
    offline_support: Dict[str, Any]
    install_prompt: Dict[str, Any]
    features: Dict[str, bool]


Package = Annotated[Union[WebPackage, ScormPackage, PwaPackage], Field(discriminator="format")]


class PipelineState(BaseModel):
    job_id: str
    submission: ContentSubmission
    validation: Optional[ValidationResult] = None
    manifest: Optional[GameManifest] = None
    profile: Optional[MunicipalBrandingProfile] = None
    packages: Dict[str, Package] = Field(default_factory=dict)
    deployment_urls: Dict[str, str] = Field(default_factory=dict)
    warnings: List[str] = Field(default_factory=list)
