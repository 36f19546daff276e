"""HTTP text classification client.

Talks to a moderation classifier exposing ``POST /v1/classify``. The server
may answer with an explicit decision or with per-category scores:

    {"is_violation": true, "reason": "threat"}
    {"scores": {"threat": 0.93, "spam": 0.02}}

Usage:
    config = ClassifierConfig(base_url="http://localhost:8080", threshold=0.7)
    classifier = HttpClassifier(config=config)

    verdict = classifier.classify("I will find and hurt you")
    print(verdict.is_violation, verdict.reason)
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from vigil_core.domain.errors import ClassifierResponseError, ClassifierUnavailable
from vigil_core.providers.base import Classifier, Verdict

logger = logging.getLogger(__name__)

# Statuses meaning the classifier refused the input itself
UNANALYZABLE_STATUSES = {400, 413, 422}

DEFAULT_VIOLATION_REASON = "Content flagged by AI moderation."


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class ClassifierConfig:
    """Configuration for the classifier client.

    Attributes:
        base_url: URL of the classifier server (e.g., http://localhost:8080)
        timeout: Request timeout in seconds
        threshold: Minimum category score counted as a violation
        api_key: Optional API key for authentication
    """

    base_url: str
    timeout: float = 10.0
    threshold: float = 0.7
    api_key: Optional[str] = None


# =============================================================================
# CLASSIFIER CLIENT
# =============================================================================


class HttpClassifier(Classifier):
    """Classifier backed by an HTTP moderation service."""

    def __init__(
        self,
        config: ClassifierConfig,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the classifier client.

        Args:
            config: Classifier configuration.
            transport: Optional httpx transport (used by tests).
        """
        self.config = config
        self._transport = transport
        self._http_client: Optional[httpx.Client] = None

    def _get_http_client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._http_client is None:
            headers = {}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key}"
            self._http_client = httpx.Client(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client:
            self._http_client.close()
            self._http_client = None

    def classify(self, text: str) -> Verdict:
        """Classify a piece of text.

        Args:
            text: The text to classify.

        Returns:
            Verdict for the text. Structurally rejected input yields an
            ``unanalyzable`` verdict.

        Raises:
            ClassifierUnavailable: On connection errors, timeouts, 429 or 5xx.
            ClassifierResponseError: On a body that cannot be interpreted.
        """
        client = self._get_http_client()
        start_time = time.monotonic()

        try:
            response = client.post("/v1/classify", json={"text": text})
        except httpx.ConnectError as e:
            raise ClassifierUnavailable(f"Connection error: {e}") from e
        except httpx.TimeoutException as e:
            raise ClassifierUnavailable(f"Timeout error: {e}") from e
        except httpx.HTTPError as e:
            raise ClassifierUnavailable(f"Transport error: {e}") from e

        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        if response.status_code in UNANALYZABLE_STATUSES:
            detail = _error_detail(response)
            logger.warning(
                f"Classifier rejected input ({response.status_code}): {detail}"
            )
            return Verdict.rejected_input(detail)

        if response.status_code == 429 or response.status_code >= 500:
            raise ClassifierUnavailable(
                f"Classifier returned HTTP {response.status_code}"
            )

        if response.status_code >= 400:
            raise ClassifierUnavailable(
                f"Unexpected classifier status HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ClassifierResponseError(f"Invalid JSON from classifier: {e}") from e

        verdict = self._parse_verdict(data)
        logger.debug(
            f"Classified {len(text)} chars in {elapsed_ms}ms: "
            f"violation={verdict.is_violation} reason={verdict.reason}"
        )
        return verdict

    def _parse_verdict(self, data: Any) -> Verdict:
        """Interpret either response shape."""
        if not isinstance(data, dict):
            raise ClassifierResponseError("Invalid response: expected a JSON object")

        if "is_violation" in data:
            is_violation = data["is_violation"]
            if not isinstance(is_violation, bool):
                raise ClassifierResponseError("Invalid response: is_violation must be boolean")
            if not is_violation:
                return Verdict.clean()
            reason = data.get("reason") or DEFAULT_VIOLATION_REASON
            return Verdict.violation(str(reason))

        scores = data.get("scores")
        if isinstance(scores, dict):
            try:
                parsed = {str(k): float(v) for k, v in scores.items()}
            except (TypeError, ValueError) as e:
                raise ClassifierResponseError(f"Invalid score value: {e}") from e

            if not parsed:
                return Verdict.clean()

            category, top = max(parsed.items(), key=lambda item: item[1])
            if top >= self.config.threshold:
                return Verdict.violation(category, scores=parsed)
            return Verdict.clean(scores=parsed)

        raise ClassifierResponseError(
            "Invalid response: expected 'is_violation' or 'scores'"
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)[:200]
    return str(body)[:200]


# =============================================================================
# FACTORY FUNCTION
# =============================================================================


def get_classifier() -> HttpClassifier:
    """Create a properly configured HttpClassifier from settings.

    Raises:
        RuntimeError: If classifier_url is not configured.
    """
    from vigil_core.config import get_settings

    settings = get_settings()

    if not settings.classifier_url:
        raise RuntimeError("CLASSIFIER_URL not configured")

    config = ClassifierConfig(
        base_url=settings.classifier_url,
        timeout=settings.classifier_timeout,
        threshold=settings.classifier_threshold,
        api_key=settings.classifier_api_key,
    )

    return HttpClassifier(config=config)


# =============================================================================
# EXPORTS
# =============================================================================


__all__ = [
    "ClassifierConfig",
    "DEFAULT_VIOLATION_REASON",
    "HttpClassifier",
    "UNANALYZABLE_STATUSES",
    "get_classifier",
]
