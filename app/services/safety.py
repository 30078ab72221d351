"""Content safety gate consulted before any paid work runs.

Keyword policy: blocking rules are tried in order and the first match wins;
warning rules never block and are all collected. Pure and deterministic, so
it holds no lock and never retries.
"""

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class SafetyRule:
    pattern: re.Pattern[str]
    category: str
    reason: str = ""


@dataclass(frozen=True)
class SafetyVerdict:
    blocked: bool
    category: str | None = None
    reason: str | None = None
    warnings: list[str] = field(default_factory=list)


BLOCKING_RULES: tuple[SafetyRule, ...] = (
    SafetyRule(
        re.compile(r"\b(deepfake|face\s*swap)\b", re.IGNORECASE),
        "deepfake_attempt",
        "Deepfake or face swap content is not allowed",
    ),
    SafetyRule(
        re.compile(r"\b(gore|mutilat\w*|dismember\w*|torture\w*)\b", re.IGNORECASE),
        "extreme_violence",
        "Extreme violence content is not allowed",
    ),
    SafetyRule(
        re.compile(
            r"\b(child|minor|underage)\b.*\b(nude|naked|sexual|explicit)\b",
            re.IGNORECASE | re.DOTALL,
        ),
        "csam",
        "Content involving minors in sexual contexts is strictly prohibited",
    ),
)

WARNING_RULES: tuple[SafetyRule, ...] = (
    SafetyRule(re.compile(r"\b(weapon|gun|knife|bomb)\b", re.IGNORECASE), "weapon_reference"),
    SafetyRule(re.compile(r"\b(blood|violent|fight)\b", re.IGNORECASE), "violence_reference"),
)


def evaluate(prompt: str) -> SafetyVerdict:
    """Classify a prompt. Blocking verdicts carry no warnings."""
    text = prompt or ""
    for rule in BLOCKING_RULES:
        if rule.pattern.search(text):
            return SafetyVerdict(blocked=True, category=rule.category, reason=rule.reason)

    warnings = [rule.category for rule in WARNING_RULES if rule.pattern.search(text)]
    return SafetyVerdict(blocked=False, warnings=warnings)


def prompt_for(job_input: dict) -> str:
    """The text a job will be generated from (prompt or TTS text)."""
    return str(job_input.get("prompt") or job_input.get("text") or "")
