"""Classifier backed by a Claude vision model."""

import json
import logging
from typing import Any, Dict, List, Optional

import anthropic

from config.settings import settings
from core.classifier.base import ClassificationResult, SubmissionContent
from core.exceptions import ClassifierUnavailable

logger = logging.getLogger(__name__)

TASK_GUIDELINES = {
    "note": "The screenshots must show a published note whose title matches the claimed note.",
    "comment": "The screenshots must show the claimed comment text posted under a note.",
    "lead": "The screenshots must show a real conversation with a prospective customer.",
}


class ClaudeClassifier:
    """
    Reviews submission screenshots with Claude.

    The model is asked for a JSON verdict with passed, confidence and
    reasons fields.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 500,
        timeout: Optional[float] = None,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        """
        Initialize the classifier.

        Args:
            api_key: Anthropic API key
            model: Claude model to use
            max_tokens: Maximum tokens for the verdict
            timeout: Request timeout in seconds
            client: Pre-built client (tests)
        """
        self.model = model or settings.claude_model
        self.max_tokens = max_tokens
        self.client = client or anthropic.AsyncAnthropic(
            api_key=api_key or settings.anthropic_api_key,
            timeout=timeout or settings.classifier_timeout,
            max_retries=0,
        )

    async def close(self) -> None:
        await self.client.close()

    def _build_prompt(self, content: SubmissionContent) -> str:
        details = [f"Task type: {content.task_type}"]
        if content.note_url:
            details.append(f"Note URL: {content.note_url}")
        if content.note_title:
            details.append(f"Note title: {content.note_title}")
        if content.note_author:
            details.append(f"Note author: {content.note_author}")
        if content.comment_text:
            details.append(f"Comment text: {content.comment_text}")

        return f"""You review proof-of-work screenshots for a task platform.
{TASK_GUIDELINES.get(content.task_type, "")}

{chr(10).join(details)}

Answer with only a JSON object:
{{"passed": true|false, "confidence": <0.0-1.0>, "reasons": ["short reason", ...]}}"""

    def _build_messages(self, content: SubmissionContent) -> List[Dict[str, Any]]:
        blocks: List[Dict[str, Any]] = [
            {"type": "image", "source": {"type": "url", "url": url}}
            for url in content.image_urls
        ]
        blocks.append({"type": "text", "text": self._build_prompt(content)})
        return [{"role": "user", "content": blocks}]

    @staticmethod
    def _parse_verdict(text: str) -> ClassificationResult:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("no JSON object in response")
        return ClassificationResult.from_dict(json.loads(text[start:end + 1]))

    async def classify(self, content: SubmissionContent) -> ClassificationResult:
        """Ask Claude for a verdict on one submission."""
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=self._build_messages(content),
            )
            text = response.content[0].text
            result = self._parse_verdict(text)
        except anthropic.APITimeoutError as e:
            raise ClassifierUnavailable(f"Claude timed out: {e}")
        except anthropic.APIError as e:
            raise ClassifierUnavailable(f"Claude request failed: {e}")
        except (ValueError, IndexError, AttributeError) as e:
            raise ClassifierUnavailable(f"Claude returned an unusable verdict: {e}")

        logger.info(
            f"Claude verdict for submission {content.submission_id}: "
            f"passed={result.passed} confidence={result.confidence:.2f}"
        )
        return result
