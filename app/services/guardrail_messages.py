"""User-facing rejection messages for blocked inputs.

Messages for prompt injection and jailbreak are deliberately generic so they
reveal nothing about how the input was classified.
"""

from __future__ import annotations

from app.schemas.guardrails import GuardrailCheckType, GuardrailEndpoint

_GENERIC_CHAT = (
    "I can only help with questions about the portfolio owner's professional "
    "background. Could you rephrase your question?"
)
_GENERIC_FIT_ANALYSIS = (
    "Please provide a valid job description for analysis. I can help assess "
    "how well the candidate fits the role."
)

REJECTION_MESSAGES: dict[GuardrailEndpoint, dict[GuardrailCheckType, str]] = {
    GuardrailEndpoint.CHAT: {
        GuardrailCheckType.PROMPT_INJECTION: _GENERIC_CHAT,
        GuardrailCheckType.JAILBREAK: _GENERIC_CHAT,
        GuardrailCheckType.OFF_TOPIC: (
            "I'm here to answer questions about professional experience, skills, "
            "and projects. What would you like to know?"
        ),
        GuardrailCheckType.CONTENT_MODERATION: (
            "I can't respond to that type of message. Feel free to ask about "
            "professional experience instead."
        ),
    },
    GuardrailEndpoint.FIT_ANALYSIS: {
        GuardrailCheckType.PROMPT_INJECTION: _GENERIC_FIT_ANALYSIS,
        GuardrailCheckType.JAILBREAK: _GENERIC_FIT_ANALYSIS,
        GuardrailCheckType.OFF_TOPIC: (
            "I can only analyze job descriptions and assess candidate fit. "
            "Please paste a job description to get started."
        ),
        GuardrailCheckType.CONTENT_MODERATION: (
            "I can't process that content. Please provide a professional job "
            "description for analysis."
        ),
    },
}

OUTPUT_REJECTION_MESSAGE = (
    "I apologize, but I can't provide that response. Please try again with a "
    "different job description."
)

# Vocabulary that must never appear in messages for security-class checks
FORBIDDEN_SECURITY_TERMS: tuple[str, ...] = (
    "injection",
    "jailbreak",
    "detected",
    "blocked",
    "security",
    "attack",
    "malicious",
)


def get_rejection_message(
    check_type: GuardrailCheckType,
    endpoint: GuardrailEndpoint | str,
) -> str:
    """Look up the safe message for a blocking check in an endpoint context.

    Unknown endpoints fall back to the chat table.
    """
    try:
        table = REJECTION_MESSAGES[GuardrailEndpoint(endpoint)]
    except ValueError:
        table = REJECTION_MESSAGES[GuardrailEndpoint.CHAT]
    return table[check_type]


def contains_forbidden_terms(message: str) -> bool:
    """Return True if the message leaks detection vocabulary."""

    lowered = message.lower()
    return any(term in lowered for term in FORBIDDEN_SECURITY_TERMS)
