"""Classifier interface and the lazily-initialized shared handle."""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)

SAFE_LABEL = "SAFE"
INJECTION_LABEL = "INJECTION"

T = TypeVar("T")


class ClassifierError(RuntimeError):
    """Raised when a classifier is unavailable or returns an unusable result."""


@dataclass(frozen=True)
class Classification:
    """Top label and its score for one piece of text."""

    label: str
    score: float


class TextClassifier(Protocol):
    """Anything that maps text to a (label, score) pair."""

    async def classify(self, text: str) -> Classification: ...


class ClassifierHandle(Generic[T]):
    """Single-initialization holder for an expensive classifier resource.

    Concurrent first calls block on one lock; exactly one of them runs the
    factory and the rest reuse its result. A factory that raises leaves the
    handle empty so the next call retries.

    Example:
        >>> handle = ClassifierHandle(lambda: load_model("deberta"))
        >>> model = handle.get()  # loads once
        >>> handle.get() is model
        True
    """

    def __init__(self, factory: Callable[[], T], name: str = "classifier"):
        self._factory = factory
        self._name = name
        self._lock = threading.Lock()
        self._value: T | None = None
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def get(self) -> T:
        if self._loaded:
            return self._value  # type: ignore[return-value]
        with self._lock:
            if not self._loaded:
                logger.info("Initializing %s", self._name)
                self._value = self._factory()
                self._loaded = True
        return self._value  # type: ignore[return-value]

    def reset(self) -> None:
        """Drop the cached value. Useful for testing."""
        with self._lock:
            self._value = None
            self._loaded = False
