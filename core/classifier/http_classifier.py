"""Classifier client for an HTTP JSON review endpoint."""

import logging
from typing import Optional

import httpx

from config.settings import settings
from core.classifier.base import ClassificationResult, SubmissionContent
from core.exceptions import ClassifierUnavailable

logger = logging.getLogger(__name__)


class HttpClassifier:
    """
    Posts submission content to a review endpoint.

    The endpoint answers {"passed": bool, "confidence": float, "reasons": [str]}.
    Transport errors, non-2xx responses and malformed verdicts all raise
    ClassifierUnavailable.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url or settings.classifier_url
        self.api_key = api_key if api_key is not None else settings.classifier_api_key
        self.timeout = timeout or settings.classifier_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def classify(self, content: SubmissionContent) -> ClassificationResult:
        """Ask the endpoint for a verdict on one submission."""
        client = await self._get_client()
        try:
            response = await client.post(self.url, json=content.to_dict())
            response.raise_for_status()
            result = ClassificationResult.from_dict(response.json())
        except httpx.TimeoutException as e:
            raise ClassifierUnavailable(f"Classifier timed out: {e}")
        except httpx.HTTPStatusError as e:
            raise ClassifierUnavailable(f"Classifier returned {e.response.status_code}")
        except httpx.HTTPError as e:
            raise ClassifierUnavailable(f"Classifier request failed: {e}")
        except ValueError as e:
            raise ClassifierUnavailable(f"Classifier returned an invalid verdict: {e}")

        logger.debug(
            f"Classifier verdict for submission {content.submission_id}: "
            f"passed={result.passed} confidence={result.confidence:.2f}"
        )
        return result
