"""External content classifiers behind a common classify(text) interface."""

from toolguard.classifiers.base import (
    INJECTION_LABEL,
    SAFE_LABEL,
    Classification,
    ClassifierError,
    ClassifierHandle,
    TextClassifier,
)
from toolguard.classifiers.local import MODEL_ID, LocalModelClassifier
from toolguard.classifiers.remote import OpenRouterClassifier, parse_verdict

__all__ = [
    "Classification",
    "ClassifierError",
    "ClassifierHandle",
    "INJECTION_LABEL",
    "LocalModelClassifier",
    "MODEL_ID",
    "OpenRouterClassifier",
    "SAFE_LABEL",
    "TextClassifier",
    "parse_verdict",
]
