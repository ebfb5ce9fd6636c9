"""Classification, preference resolution, and context composition."""

from specialist_router.routing.classifier import ClassifierSettings, RequestClassifier, classify
from specialist_router.routing.composer import ContextComposer, compose_context
from specialist_router.routing.resolver import (
    ActiveProfile,
    PreferenceResolver,
    ResolutionPolicy,
    resolve,
    resolve_all,
)

__all__ = [
    "ActiveProfile",
    "ClassifierSettings",
    "ContextComposer",
    "PreferenceResolver",
    "RequestClassifier",
    "ResolutionPolicy",
    "classify",
    "compose_context",
    "resolve",
    "resolve_all",
]
