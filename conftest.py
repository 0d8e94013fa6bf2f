"""Test configuration for the content pipeline backend."""

import copy
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "content_pipeline_backend"))

from typing import Any, Dict, List, Optional

import pytest

from content_pipeline.job_store import InMemoryJobStore
from content_pipeline.models import DeploymentOptions


BASE_MANIFEST: Dict[str, Any] = {
    "gameId": "demo-1",
    "metadata": {
        "title": "Välkommen till kommunen",
        "description": "Introduktion för nyanställda",
        "duration": "7 minutes",
        "learningObjectives": ["Känna till GDPR-grunder"],
        "targetAudience": "Municipal employees",
        "language": "sv",
        "version": "1.0.0",
    },
    "scenes": [
        {
            "id": "intro",
            "type": "dialogue",
            "messages": [
                {"speaker": "Anna", "text": "Hej! Välkommen till första dagen."},
                {"speaker": "Erik", "text": "Tack, jag ser fram emot det."},
            ],
        },
        {
            "id": "check",
            "type": "quiz",
            "questions": [
                {
                    "question": "Får du dela personuppgifter via privat e-post?",
                    "options": [
                        {"text": "Ja", "isCorrect": False},
                        {"text": "Nej", "isCorrect": True},
                    ],
                }
            ],
        },
    ],
}

ASSESSMENT_SCENE: Dict[str, Any] = {
    "id": "final",
    "type": "assessment",
    "passingScore": 70,
    "questions": [
        {
            "question": "Vem ansvarar för dataskydd?",
            "options": [
                {"text": "Dataskyddsombudet", "isCorrect": True},
                {"text": "Ingen", "isCorrect": False},
            ],
        }
    ],
}


@pytest.fixture()
def manifest() -> Dict[str, Any]:
    """A fresh copy of a valid two-scene manifest."""

    return copy.deepcopy(BASE_MANIFEST)


@pytest.fixture()
def make_manifest():
    """Factory fixture: a valid manifest with selected fields replaced."""

    def _factory(scenes: Optional[List[Dict[str, Any]]] = None, **overrides: Any) -> Dict[str, Any]:
        data = copy.deepcopy(BASE_MANIFEST)
        if scenes is not None:
            data["scenes"] = scenes
        data.update(overrides)
        return data

    return _factory


@pytest.fixture()
def assessment_scene() -> Dict[str, Any]:
    return copy.deepcopy(ASSESSMENT_SCENE)


@pytest.fixture()
def make_options():
    def _factory(formats=("web",), municipality_id: str = "malmo", markets=("sweden",),
                 branding_level: str = "standard") -> DeploymentOptions:
        return DeploymentOptions(
            formats=list(formats),
            markets=list(markets),
            municipality_id=municipality_id,
            branding_level=branding_level,
        )

    return _factory


@pytest.fixture()
def store() -> InMemoryJobStore:
    return InMemoryJobStore()
