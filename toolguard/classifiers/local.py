"""Local prompt-injection model via Hugging Face transformers.

Model: protectai/deberta-v3-base-prompt-injection-v2 (Apache 2.0). Runs
locally, no API key required. Downloaded on first use and cached by
transformers; the pipeline is shared process-wide through a ClassifierHandle.

transformers is an optional dependency (``pip install toolguard[local]``) and
is imported only when the model is first loaded.
"""

import asyncio
import logging
from typing import Any

from toolguard.classifiers.base import (
    Classification,
    ClassifierError,
    ClassifierHandle,
)

logger = logging.getLogger(__name__)

MODEL_ID = "ProtectAI/deberta-v3-base-prompt-injection-v2"


def _load_pipeline(model_id: str, cache_dir: str | None) -> Any:
    try:
        from transformers import pipeline
    except ImportError as e:
        raise ClassifierError(
            "transformers is not installed; install toolguard[local]"
        ) from e

    logger.info("Loading model %s (first run downloads ~370MB)...", model_id)
    model_kwargs = {"cache_dir": cache_dir} if cache_dir else {}
    return pipeline(
        "text-classification",
        model=model_id,
        model_kwargs=model_kwargs,
    )


_handles: dict[tuple[str, str | None], ClassifierHandle[Any]] = {}


def get_pipeline_handle(model_id: str = MODEL_ID, cache_dir: str | None = None) -> ClassifierHandle[Any]:
    """Get the shared handle for a model, creating it on first use."""
    key = (model_id, cache_dir)
    handle = _handles.get(key)
    if handle is None:
        handle = _handles.setdefault(
            key,
            ClassifierHandle(lambda: _load_pipeline(model_id, cache_dir), name=model_id),
        )
    return handle


def reset_pipeline_handles() -> None:
    """Forget every loaded model. Useful for testing."""
    _handles.clear()


class LocalModelClassifier:
    """TextClassifier backed by a local text-classification pipeline.

    Attributes:
        model_id: Hugging Face model identifier.
        cache_dir: Optional model cache directory.
        timeout: Seconds allowed per classification call.
    """

    def __init__(
        self,
        model_id: str = MODEL_ID,
        cache_dir: str | None = None,
        timeout: float = 30.0,
        handle: ClassifierHandle[Any] | None = None,
    ):
        self.model_id = model_id
        self.cache_dir = cache_dir
        self.timeout = timeout
        self._handle = handle or get_pipeline_handle(model_id, cache_dir)

    def _run(self, text: str) -> Classification:
        classifier = self._handle.get()
        results = classifier(text, truncation=True)
        top = results[0] if isinstance(results, list) else results
        try:
            return Classification(label=str(top["label"]).upper(), score=float(top["score"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ClassifierError(f"Unexpected model output: {top!r}") from e

    async def classify(self, text: str) -> Classification:
        """Classify text in a worker thread under the configured timeout.

        Raises:
            ClassifierError: On load failure, malformed output or timeout.
        """
        try:
            return await asyncio.wait_for(asyncio.to_thread(self._run, text), self.timeout)
        except asyncio.TimeoutError as e:
            raise ClassifierError(f"Classification timed out after {self.timeout}s") from e
