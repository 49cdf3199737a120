"""Classifier contract used by the automated review step."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from database.models import Submission


@dataclass
class SubmissionContent:
    """What a classifier sees of a submission."""

    submission_id: int
    task_type: str
    image_urls: List[str]
    note_url: Optional[str] = None
    note_title: Optional[str] = None
    note_author: Optional[str] = None
    comment_text: Optional[str] = None

    @classmethod
    def from_submission(cls, submission: Submission) -> "SubmissionContent":
        return cls(
            submission_id=submission.id,
            task_type=submission.task_type.value,
            image_urls=[image.image_url for image in submission.images],
            note_url=submission.note_url,
            note_title=submission.note_title,
            note_author=submission.note_author,
            comment_text=submission.comment_text,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submission_id": self.submission_id,
            "task_type": self.task_type,
            "image_urls": self.image_urls,
            "note_url": self.note_url,
            "note_title": self.note_title,
            "note_author": self.note_author,
            "comment_text": self.comment_text,
        }


@dataclass
class ClassificationResult:
    """Verdict returned by a classifier."""

    passed: bool
    confidence: float
    reasons: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassificationResult":
        """
        Build a result from a JSON verdict.

        Raises:
            ValueError: required fields are missing or malformed
        """
        if not isinstance(data, dict) or "passed" not in data:
            raise ValueError("verdict must be an object with a 'passed' field")
        if not isinstance(data["passed"], bool):
            raise ValueError(f"passed must be true or false, got {data['passed']!r}")

        confidence = float(data.get("confidence", 0.0))
        if not 0.0 <= confidence <= 1.0:
            raise ValueError(f"confidence {confidence} outside [0, 1]")

        reasons = data.get("reasons") or []
        if isinstance(reasons, str):
            reasons = [reasons]
        return cls(
            passed=data["passed"],
            confidence=confidence,
            reasons=[str(reason) for reason in reasons],
        )

    def accepts(self, threshold: float) -> bool:
        """True if the verdict is a pass with enough confidence."""
        return self.passed and self.confidence >= threshold


class Classifier(Protocol):
    """Anything that can judge a submission."""

    async def classify(self, content: SubmissionContent) -> ClassificationResult:
        ...

    async def close(self) -> None:
        ...
