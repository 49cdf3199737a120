from typing import Optional

from config.settings import settings

from .base import Classifier, ClassificationResult, SubmissionContent
from .http_classifier import HttpClassifier
from .claude_classifier import ClaudeClassifier

__all__ = [
    "Classifier",
    "ClassificationResult",
    "SubmissionContent",
    "HttpClassifier",
    "ClaudeClassifier",
    "create_classifier",
]


def create_classifier(backend: Optional[str] = None) -> Classifier:
    """Build a classifier backend, the configured one when backend is omitted."""
    use_claude = backend.lower() == "claude" if backend else settings.use_claude
    if use_claude:
        return ClaudeClassifier()
    return HttpClassifier()
