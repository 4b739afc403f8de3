# tests/conftest.py
"""Shared pytest fixtures for all test modules.

Provides common fixtures for:
- A scripted text classifier (no model download)
- Fake DNS resolvers (no network)
- Singleton reset (model handles, default pattern set)
"""

from collections.abc import Callable, Generator

import pytest

from toolguard.classifiers import INJECTION_LABEL, SAFE_LABEL, Classification
from toolguard.classifiers.local import reset_pipeline_handles
from toolguard.middleware.guardrails import commands


class FakeClassifier:
    """TextClassifier returning scripted results.

    Args:
        rule: Maps chunk text to a Classification. Defaults to SAFE.
    """

    def __init__(self, rule: Callable[[str], Classification] | None = None):
        self.rule = rule or (lambda text: Classification(SAFE_LABEL, 0.99))
        self.calls: list[str] = []

    async def classify(self, text: str) -> Classification:
        self.calls.append(text)
        return self.rule(text)


def keyword_rule(keyword: str, score: float = 0.99) -> Callable[[str], Classification]:
    """INJECTION with score when keyword appears in the chunk, else SAFE."""

    def rule(text: str) -> Classification:
        if keyword in text:
            return Classification(INJECTION_LABEL, score)
        return Classification(SAFE_LABEL, 0.99)

    return rule


def static_resolver(*addresses: str):
    """Async resolver answering every hostname with the given addresses."""

    async def resolve(hostname: str) -> list[str]:
        return list(addresses)

    return resolve


@pytest.fixture
def safe_classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def public_resolver():
    return static_resolver("93.184.216.34")


@pytest.fixture
def private_resolver():
    return static_resolver("10.0.0.5")


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset module-level caches before and after each test."""
    reset_pipeline_handles()
    commands._default_pattern_set = None

    yield

    reset_pipeline_handles()
    commands._default_pattern_set = None


@pytest.fixture
def make_classifier() -> Callable[..., FakeClassifier]:
    """Factory for FakeClassifier instances."""
    return FakeClassifier


@pytest.fixture
def injection_on() -> Callable[..., Callable[[str], Classification]]:
    """Factory for keyword-triggered classification rules."""
    return keyword_rule


@pytest.fixture
def make_resolver():
    """Factory for static async resolvers."""
    return static_resolver
