"""Pydantic schemas for input safety checks and security events."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GuardrailCheckType(str, Enum):
    """Kinds of safety checks that can run against an input."""

    PROMPT_INJECTION = "prompt_injection"
    JAILBREAK = "jailbreak"
    OFF_TOPIC = "off_topic"
    CONTENT_MODERATION = "content_moderation"


class SecurityEventType(str, Enum):
    """Event types written to the security log."""

    PROMPT_INJECTION = "prompt_injection"
    JAILBREAK = "jailbreak"
    OFF_TOPIC = "off_topic"
    CONTENT_MODERATION = "content_moderation"
    OUTPUT_BLOCKED = "output_blocked"


class GuardrailEndpoint(str, Enum):
    """Endpoint contexts with their own rejection message tables."""

    CHAT = "chat"
    FIT_ANALYSIS = "fit_analysis"


class GuardrailCheckResult(BaseModel):
    """Outcome of a single safety check."""

    model_config = ConfigDict(frozen=True)

    check_type: GuardrailCheckType
    passed: bool
    confidence: float = Field(..., ge=0.0, le=1.0)
    details: str | None = None


class GuardrailValidationResult(BaseModel):
    """Aggregated outcome of all enabled checks for one input.

    ``checks`` holds exactly one result per enabled check, in the order the
    checks were enabled.
    """

    model_config = ConfigDict(frozen=True)

    passed: bool
    checks: list[GuardrailCheckResult] = Field(default_factory=list)
    failed_check: GuardrailCheckType | None = None
    user_message: str = ""


class TopicScope(BaseModel):
    """Allowed topics for the off-topic check."""

    model_config = ConfigDict(frozen=True)

    allowed_topics: tuple[str, ...]
    description: str


class GuardrailConfig(BaseModel):
    """Immutable, per-endpoint safety check configuration."""

    model_config = ConfigDict(frozen=True)

    endpoint: GuardrailEndpoint = GuardrailEndpoint.FIT_ANALYSIS
    enabled_checks: tuple[GuardrailCheckType, ...]
    topic_scope: TopicScope | None = None
    block_threshold: float = Field(0.8, ge=0.0, le=1.0)
    validate_output: bool = False

    @field_validator("enabled_checks")
    @classmethod
    def _dedupe_checks(
        cls, value: tuple[GuardrailCheckType, ...]
    ) -> tuple[GuardrailCheckType, ...]:
        # First declaration wins so blocking tie-breaks stay deterministic
        return tuple(dict.fromkeys(value))


class SecurityEventMetadata(BaseModel):
    """Non-identifying context attached to a security event."""

    check_duration_ms: float | None = None
    input_length: int | None = None


class SecurityEvent(BaseModel):
    """A single security log entry."""

    timestamp: str
    event_type: SecurityEventType
    endpoint: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    blocked: bool
    request_id: str
    metadata: SecurityEventMetadata | None = None


CHAT_GUARDRAIL_CONFIG = GuardrailConfig(
    endpoint=GuardrailEndpoint.CHAT,
    enabled_checks=(
        GuardrailCheckType.PROMPT_INJECTION,
        GuardrailCheckType.JAILBREAK,
        GuardrailCheckType.OFF_TOPIC,
        GuardrailCheckType.CONTENT_MODERATION,
    ),
    topic_scope=TopicScope(
        allowed_topics=(
            "professional experience",
            "skills and expertise",
            "projects and portfolio",
            "career background",
            "technical decisions",
            "general greetings",
            "contact information",
        ),
        description="Questions about the portfolio owner's professional background, experience, skills, and projects",
    ),
    block_threshold=0.8,
    validate_output=True,
)

FIT_ANALYSIS_GUARDRAIL_CONFIG = GuardrailConfig(
    endpoint=GuardrailEndpoint.FIT_ANALYSIS,
    enabled_checks=(
        GuardrailCheckType.PROMPT_INJECTION,
        GuardrailCheckType.JAILBREAK,
        GuardrailCheckType.CONTENT_MODERATION,
    ),
    topic_scope=TopicScope(
        allowed_topics=(
            "job descriptions",
            "role requirements",
            "qualifications",
            "candidate fit assessment",
        ),
        description="Job description analysis and fit assessment",
    ),
    block_threshold=0.8,
    validate_output=False,
)
