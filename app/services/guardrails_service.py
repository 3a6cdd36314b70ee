"""Input safety validation for untrusted text.

Runs every enabled check concurrently, waits for all of them to settle and
applies a single block threshold. A check that fails internally is treated
as passed (fail-open), so classifier outages never block users.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone

from app.adapters.guardrails.base import AbstractSafetyClassifier
from app.core.security_log import build_security_event, log_security_event
from app.schemas.guardrails import (
    GuardrailCheckResult,
    GuardrailCheckType,
    GuardrailConfig,
    GuardrailValidationResult,
    SecurityEventType,
)
from app.services.guardrail_messages import OUTPUT_REJECTION_MESSAGE, get_rejection_message

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_THRESHOLD = 0.8

_DETAILS: dict[GuardrailCheckType, str] = {
    GuardrailCheckType.PROMPT_INJECTION: "Instruction override pattern",
    GuardrailCheckType.JAILBREAK: "Policy bypass pattern",
    GuardrailCheckType.OFF_TOPIC: "Outside allowed topics",
    GuardrailCheckType.CONTENT_MODERATION: "Content policy category",
}


def apply_threshold(confidence: float, threshold: float) -> bool:
    """Return True when a failed check with ``confidence`` must block."""

    return confidence >= threshold


def _fail_open(check_type: GuardrailCheckType) -> GuardrailCheckResult:
    return GuardrailCheckResult(check_type=check_type, passed=True, confidence=0.0)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class GuardrailsService:
    """Validates inputs and outputs against a GuardrailConfig.

    The endpoint written to security events and logs is always
    ``config.endpoint``, the same one that selects the rejection message.

    Attributes:
        classifier: Classifier used for every individual check.
    """

    def __init__(self, classifier: AbstractSafetyClassifier) -> None:
        self.classifier = classifier

    async def _run_check(
        self,
        check_type: GuardrailCheckType,
        text: str,
        config: GuardrailConfig,
    ) -> GuardrailCheckResult:
        """Run one check; any failure becomes a neutral passing result."""

        if check_type is GuardrailCheckType.OFF_TOPIC and config.topic_scope is None:
            logger.debug("guardrails.off_topic_skipped", extra={"reason": "no_topic_scope"})
            return _fail_open(check_type)

        try:
            verdict = await self.classifier.classify(
                check_type,
                text,
                topic_scope=config.topic_scope,
            )
            confidence = max(0.0, min(1.0, float(verdict.confidence)))
            return GuardrailCheckResult(
                check_type=check_type,
                passed=not verdict.tripped,
                confidence=confidence,
                details=_DETAILS[check_type] if verdict.tripped else None,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "guardrails.check_failed",
                extra={
                    "check_type": check_type.value,
                    "error_type": type(exc).__name__,
                    "endpoint": config.endpoint.value,
                },
            )
            return _fail_open(check_type)

    async def validate_input(
        self,
        text: str,
        config: GuardrailConfig,
        request_id: str | None = None,
    ) -> GuardrailValidationResult:
        """Validate user input against every enabled check.

        Args:
            text: Untrusted input text.
            config: Which checks run and the block threshold.
            request_id: Anonymized caller identifier for the security log.

        Returns:
            GuardrailValidationResult with one result per enabled check. Never raises.
        """
        started = time.perf_counter()
        threshold = config.block_threshold

        try:
            checks = list(
                await asyncio.gather(
                    *(self._run_check(check, text, config) for check in config.enabled_checks)
                )
            )
        except Exception as exc:  # noqa: BLE001
            # _run_check already isolates failures; this guards the join itself
            logger.error(
                "guardrails.validation_failed",
                extra={"error_type": type(exc).__name__, "endpoint": config.endpoint.value},
            )
            checks = [_fail_open(check) for check in config.enabled_checks]

        failed = next(
            (
                check
                for check in checks
                if not check.passed and apply_threshold(check.confidence, threshold)
            ),
            None,
        )

        if failed is None:
            return GuardrailValidationResult(passed=True, checks=checks)

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        log_security_event(
            build_security_event(
                SecurityEventType(failed.check_type.value),
                endpoint=config.endpoint.value,
                confidence=failed.confidence,
                request_id=request_id,
                check_duration_ms=duration_ms,
                input_length=len(text),
                timestamp=_now_iso(),
            )
        )
        logger.info(
            "guardrails.blocked",
            extra={
                "check_type": failed.check_type.value,
                "confidence": failed.confidence,
                "endpoint": config.endpoint.value,
            },
        )

        return GuardrailValidationResult(
            passed=False,
            checks=checks,
            failed_check=failed.check_type,
            user_message=get_rejection_message(failed.check_type, config.endpoint),
        )

    async def validate_output(
        self,
        text: str,
        config: GuardrailConfig,
        request_id: str | None = None,
    ) -> GuardrailValidationResult:
        """Run content moderation on generated text before it is returned."""

        check = await self._run_check(GuardrailCheckType.CONTENT_MODERATION, text, config)

        if check.passed or not apply_threshold(check.confidence, config.block_threshold):
            return GuardrailValidationResult(passed=True, checks=[check])

        log_security_event(
            build_security_event(
                SecurityEventType.OUTPUT_BLOCKED,
                endpoint=config.endpoint.value,
                confidence=check.confidence,
                request_id=request_id,
                timestamp=_now_iso(),
            )
        )
        return GuardrailValidationResult(
            passed=False,
            checks=[check],
            failed_check=GuardrailCheckType.CONTENT_MODERATION,
            user_message=OUTPUT_REJECTION_MESSAGE,
        )
