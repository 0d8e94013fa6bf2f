"""
Manifest validation for DevTeam game submissions.
Accumulates every structural and budget problem so submitters see them in one round-trip.
"""
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from .models import SCENE_TYPES, GameManifest, PerformanceEstimate, ValidationResult
from .settings import MAX_CONTENT_BYTES, MAX_LOAD_TIME_MS, SESSION_BUDGET_S, VALIDATION_BUDGET_S

logger = logging.getLogger(__name__)

SCENE_SIZE_LIMITS = {
    "dialogue": 50 * 1024,
    "quiz": 30 * 1024,
    "assessment": 75 * 1024,
}
REQUIRED_METADATA = ("title", "description", "duration", "targetAudience", "language")
SUPPORTED_LANGUAGES = ("sv", "de", "fr", "nl", "en")
MAX_DIALOGUE_TEXT = 500
MAX_QUESTIONS = 10
WARN_RATIO = 0.8

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(minutes?|mins?|m|seconds?|secs?|s)\s*$", re.IGNORECASE)


def parse_duration_seconds(value: Any) -> Optional[float]:
    """Seconds for ``420``, ``"7 minutes"`` or ``"420 s"``; None when unparseable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if value >= 0 else None
    if isinstance(value, str):
        match = _DURATION_RE.match(value)
        if not match:
            return None
        amount = float(match.group(1))
        return amount * 60 if match.group(2).lower().startswith("m") else amount
    return None


def estimate_load_time_ms(content_size: int) -> int:
    return int(round(max(500, content_size * 0.002)))


def content_size_bytes(value: Any) -> int:
    return len(json.dumps(value, ensure_ascii=False, separators=(",", ":")).encode("utf-8"))


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


SCHEMA_ERROR_PREFIX = "Invalid field"


class _Collector:
    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []
        # locations already reported, so schema errors beneath them are not repeated
        self.flagged = set()

    def error(self, message: str, loc: Tuple = ()):
        self.errors.append(message)
        if loc:
            self.flagged.add(loc)

    def is_flagged(self, loc: Tuple) -> bool:
        return any(loc[:n] in self.flagged for n in range(1, len(loc) + 1))

    def warn(self, message: str):
        self.warnings.append(message)


def validate(manifest: Any) -> ValidationResult:
    """Validate a submitted game manifest.

    Malformed content is reported through ``is_valid``/``errors``; only a missing
    manifest (``None``) raises, since callers must check presence first.
    """
    if manifest is None:
        raise TypeError("validate() requires a manifest; got None")

    started = time.perf_counter()
    out = _Collector()
    content_size = 0

    if not isinstance(manifest, dict):
        out.error(f"Manifest must be a JSON object, got {type(manifest).__name__}")
    else:
        _check_top_level(manifest, out)
        scenes = manifest.get("scenes")
        if "scenes" not in manifest or not isinstance(scenes, list):
            out.error("Missing or invalid scenes array", ("scenes",))
        elif not scenes:
            out.error("Manifest must contain at least one scene in scenes", ("scenes",))
        else:
            _check_scenes(scenes, out)
            _check_session_duration(manifest, scenes, out)
        _check_schema(manifest, out)

    try:
        content_size = content_size_bytes(manifest)
    except (TypeError, ValueError) as e:
        out.error(f"Manifest is not JSON serialisable: {e}")

    load_time = estimate_load_time_ms(content_size)
    if content_size > MAX_CONTENT_BYTES:
        out.error(f"Total manifest size {round(content_size / 1024)}KB exceeds {round(MAX_CONTENT_BYTES / 1024)}KB limit")
    elif content_size > MAX_CONTENT_BYTES * WARN_RATIO:
        out.warn(f"Manifest size {round(content_size / 1024)}KB is close to the {round(MAX_CONTENT_BYTES / 1024)}KB limit")
    if load_time > MAX_LOAD_TIME_MS:
        out.warn(f"Estimated load time {load_time}ms exceeds {MAX_LOAD_TIME_MS}ms target")

    elapsed = time.perf_counter() - started
    if elapsed > VALIDATION_BUDGET_S:
        logger.warning(f"Validation took {elapsed:.2f}s, exceeding {VALIDATION_BUDGET_S}s budget")
        out.warn(f"Validation took {round(elapsed * 1000)}ms, exceeds {round(VALIDATION_BUDGET_S * 1000)}ms target")

    return ValidationResult(
        is_valid=not out.errors,
        errors=out.errors,
        warnings=out.warnings,
        performance=PerformanceEstimate(content_size=content_size, estimated_load_time=load_time),
        suggestions=suggestions_for(out.errors),
        validation_time=round(elapsed * 1000, 3),
    )


def _check_top_level(manifest: Dict[str, Any], out: _Collector):
    if _is_blank(manifest.get("gameId")):
        out.error("Missing required field: gameId", ("gameId",))

    metadata = manifest.get("metadata")
    if not isinstance(metadata, dict) or not metadata:
        out.error("Missing required field: metadata", ("metadata",))
        return

    for field in REQUIRED_METADATA:
        value = metadata.get(field)
        loc = ("metadata", field)
        if value is None or (isinstance(value, str) and not value.strip()):
            out.error(f"Missing required metadata field: {field}", loc)
        elif field == "duration":
            if isinstance(value, bool) or not isinstance(value, (int, float, str)):
                out.error("metadata.duration must be a number of seconds or a string", loc)
            elif parse_duration_seconds(value) is None:
                out.warn('metadata.duration should be seconds or a string like "7 minutes"')
        elif not isinstance(value, str):
            out.error(f"metadata.{field} must be a string", loc)

    language = metadata.get("language")
    if isinstance(language, str) and language and language not in SUPPORTED_LANGUAGES:
        out.warn(f"Language '{language}' might not be fully supported")

    if "version" not in metadata:
        out.warn("metadata.version not set, defaulting to 1.0.0")
    if metadata.get("learningObjectives") is None:
        out.warn("metadata.learningObjectives is empty")


def _check_scenes(scenes: List[Any], out: _Collector):
    seen_ids = set()
    for index, scene in enumerate(scenes):
        loc = ("scenes", index)
        if not isinstance(scene, dict):
            out.error(f"Scene {index} must be an object", loc)
            continue

        scene_id = scene.get("id")
        if _is_blank(scene_id):
            out.error(f"Scene {index} missing id", loc)
            label = f"Scene {index}"
        else:
            label = f"Scene {scene_id}"
            if scene_id in seen_ids:
                out.error(f"{label} has a duplicate id", loc)
            seen_ids.add(scene_id)

        scene_type = scene.get("type")
        if scene_type is None:
            out.error(f"{label} missing type", loc)
            continue
        if scene_type not in SCENE_TYPES:
            out.error(f"{label} has invalid type '{scene_type}'. Must be one of: {', '.join(SCENE_TYPES)}", loc)
            continue

        size = content_size_bytes(scene)
        limit = SCENE_SIZE_LIMITS[scene_type]
        if size > limit:
            out.error(f"{label} ({scene_type}) size {round(size / 1024)}KB exceeds {round(limit / 1024)}KB limit")

        duration = scene.get("duration")
        if duration is not None and (isinstance(duration, (bool, str)) or parse_duration_seconds(duration) is None):
            out.error(f"{label} duration must be a non-negative number of seconds", loc + ("duration",))

        if scene_type == "dialogue":
            _check_dialogue(scene, label, loc, out)
        elif scene_type == "quiz":
            _check_questions(scene, label, loc, out)
        elif scene_type == "assessment":
            _check_questions(scene, label, loc, out)
            _check_passing_score(scene, label, loc, out)


def _check_dialogue(scene: Dict[str, Any], label: str, loc: Tuple, out: _Collector):
    messages = scene.get("messages")
    if not isinstance(messages, list):
        out.error(f"{label} dialogue must have a messages array", loc + ("messages",))
        return
    if not messages:
        out.error(f"{label} dialogue must have at least one message", loc + ("messages",))
        return
    for index, message in enumerate(messages):
        if not isinstance(message, dict) or _is_blank(message.get("speaker")) or _is_blank(message.get("text")):
            out.error(f"{label} message {index} missing speaker or text", loc + ("messages", index))
            continue
        if len(message["text"]) > MAX_DIALOGUE_TEXT:
            out.warn(f"{label} message {index} text is very long ({len(message['text'])} chars)")


def _check_questions(scene: Dict[str, Any], label: str, loc: Tuple, out: _Collector):
    questions = scene.get("questions")
    if not isinstance(questions, list):
        out.error(f"{label} must have a questions array", loc + ("questions",))
        return
    if not questions:
        out.error(f"{label} must have at least one question", loc + ("questions",))
        return
    if len(questions) > MAX_QUESTIONS:
        out.warn(f"{label} has {len(questions)} questions, may be too long for a 7-minute session")

    for q_index, question in enumerate(questions):
        q_label = f"{label} question {q_index}"
        q_loc = loc + ("questions", q_index)
        if not isinstance(question, dict):
            out.error(f"{q_label} must be an object", q_loc)
            continue
        if _is_blank(question.get("question")):
            out.error(f"{q_label} missing question text", q_loc + ("question",))

        options = question.get("options")
        if not isinstance(options, list):
            out.error(f"{q_label} missing options array", q_loc + ("options",))
            continue
        if len(options) < 2:
            out.error(f"{q_label} must have at least 2 options")

        has_correct = False
        for o_index, option in enumerate(options):
            o_loc = q_loc + ("options", o_index)
            if not isinstance(option, dict) or _is_blank(option.get("text")):
                out.error(f"{q_label} option {o_index} missing text", o_loc)
                continue
            correct = option.get("isCorrect", False)
            if not isinstance(correct, bool):
                out.error(f"{q_label} option {o_index} isCorrect must be a boolean", o_loc + ("isCorrect",))
            elif correct:
                has_correct = True
        if options and not has_correct:
            out.error(f"{q_label} has no correct option")


def _check_passing_score(scene: Dict[str, Any], label: str, loc: Tuple, out: _Collector):
    if "passingScore" not in scene:
        return
    score = scene["passingScore"]
    if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
        out.error(f"{label} passingScore must be an integer between 0 and 100", loc + ("passingScore",))


def schema_error_loc(error: Dict[str, Any]) -> Tuple:
    """Location of a pydantic error with the scene union tag segment dropped."""
    loc = tuple(error["loc"])
    if len(loc) > 2 and loc[0] == "scenes" and loc[2] in SCENE_TYPES:
        loc = loc[:2] + loc[3:]
    return loc


def _check_schema(manifest: Dict[str, Any], out: _Collector):
    """Report type problems the manifest model rejects that the checks above did not already flag."""
    try:
        GameManifest.model_validate(manifest)
    except ValidationError as e:
        for error in e.errors():
            loc = schema_error_loc(error)
            if out.is_flagged(loc):
                continue
            path = ".".join(str(part) for part in loc) or "manifest"
            out.error(f"{SCHEMA_ERROR_PREFIX} {path}: {error['msg']}", loc)


def estimated_duration_seconds(manifest: Dict[str, Any], scenes: List[Any]) -> Optional[float]:
    scene_durations = [
        parse_duration_seconds(s.get("duration"))
        for s in scenes
        if isinstance(s, dict) and "duration" in s
    ]
    scene_durations = [d for d in scene_durations if d is not None]
    if scene_durations:
        return sum(scene_durations)
    metadata = manifest.get("metadata")
    if isinstance(metadata, dict):
        return parse_duration_seconds(metadata.get("duration"))
    return None


def _check_session_duration(manifest: Dict[str, Any], scenes: List[Any], out: _Collector):
    total = estimated_duration_seconds(manifest, scenes)
    if total is None:
        return
    if total > SESSION_BUDGET_S:
        out.error(f"Estimated duration {round(total)}s exceeds {SESSION_BUDGET_S}s session budget")
    elif total > SESSION_BUDGET_S * WARN_RATIO:
        out.warn(f"Estimated duration {round(total)}s is close to the {SESSION_BUDGET_S}s session budget")


def suggestions_for(errors: List[str]) -> List[str]:
    suggestions: List[str] = []
    for error in errors:
        if error.startswith(SCHEMA_ERROR_PREFIX):
            suggestions.append("Check field types against the game manifest format")
        elif "gameId" in error:
            suggestions.append("Add a unique gameId to your manifest")
        elif "scenes" in error:
            suggestions.append("Include at least one scene in your game manifest")
        elif "metadata" in error:
            suggestions.append("Fill in title, description, duration, targetAudience and language in metadata")
        elif "options" in error or "correct option" in error:
            suggestions.append("Give every question at least 2 options and mark one with isCorrect: true")
        elif "exceeds" in error:
            suggestions.append("Split long content into shorter scenes or games")
    return list(dict.fromkeys(suggestions))
