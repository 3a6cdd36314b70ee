from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.schemas.guardrails import GuardrailCheckType, TopicScope


@dataclass(frozen=True)
class ClassifierVerdict:
    """Raw classifier output for one check.

    Attributes:
        tripped: True when the classifier considers the text a violation.
        confidence: Classifier confidence in [0, 1] that the verdict is correct.
    """

    tripped: bool
    confidence: float


class AbstractSafetyClassifier(ABC):
    """Interface for the external classifiers behind each safety check."""

    @abstractmethod
    async def classify(
        self,
        check_type: GuardrailCheckType,
        text: str,
        *,
        topic_scope: TopicScope | None = None,
    ) -> ClassifierVerdict:
        """Classify ``text`` for a single risk category.

        Raises:
            Exception: Any failure; callers treat failures as fail-open.
        """
        ...
