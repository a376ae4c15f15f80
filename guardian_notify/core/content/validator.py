# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tone and content validator for rendered guardian messages.

Rendered text is checked once, at queue admission, against a policy of
pattern categories. Each category has a severity:

- blocked: the message must not be queued.
- warning: the message is queued but flagged for reviewers.

Example:
    >>> validator = ContentValidator()
    >>> result = validator.validate("Amara ranked 3rd place in class")
    >>> result.is_valid, result.severity
    (False, <Severity.BLOCKED: 'blocked'>)
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Validation severity, ordered none < warning < blocked."""

    NONE = "none"
    WARNING = "warning"
    BLOCKED = "blocked"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.NONE: 0, Severity.WARNING: 1, Severity.BLOCKED: 2}


@dataclass(frozen=True)
class PatternCategory:
    """A named group of patterns sharing a severity.

    Attributes:
        name: Category name reported on violations.
        severity: Severity of any match.
        patterns: Compiled patterns.
        guidance: Suggestion shown when the category matches.
    """

    name: str
    severity: Severity
    patterns: tuple[re.Pattern[str], ...]
    guidance: str


@dataclass(frozen=True)
class Violation:
    """A single policy match in a message."""

    category: str
    severity: Severity
    matched_text: str
    position: int


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating one message.

    Attributes:
        is_valid: False when any blocked category matched.
        severity: Highest severity found.
        violations: Every match, in text order per category.
        suggestions: Rewording hints for reviewers.
    """

    is_valid: bool
    severity: Severity
    violations: tuple[Violation, ...] = ()
    suggestions: tuple[str, ...] = ()

    @property
    def warnings(self) -> list[str]:
        return [
            f"{v.category}: {v.matched_text}" for v in self.violations if v.severity == Severity.WARNING
        ]

    @property
    def blocked_reasons(self) -> list[str]:
        return [
            f"{v.category}: {v.matched_text}" for v in self.violations if v.severity == Severity.BLOCKED
        ]


def _compile(*patterns: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(pattern, re.IGNORECASE) for pattern in patterns)


def _phrases(*phrases: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE) for phrase in phrases)


PROMPT_INJECTION = PatternCategory(
    name="prompt_injection",
    severity=Severity.BLOCKED,
    patterns=(
        *_compile(
            r"ignore\s+(previous|above|all)\s+instructions?",
            r"disregard\s+(previous|above|all)",
            r"forget\s+(everything|what|previous)",
            r"new\s+instructions?:\s*",
            r"\bsystem\s*:\s*",
            r"\[INST\]",
            r"```\s*(system|assistant|user)",
            r"role\s*:\s*(system|assistant)",
        ),
        re.compile(r"\[\[.*?\]\]"),
        re.compile(r"<\|.*?\|>"),
        re.compile(r"\{\{.*?\}\}"),
    ),
    guidance="Remove instruction-like text and unrendered placeholders",
)

RANKING = PatternCategory(
    name="ranking",
    severity=Severity.BLOCKED,
    patterns=_compile(
        r"\b(ranked?|ranking|position)\s*(in|among|out of)",
        r"\b(top|bottom)\s*\d+",
        r"\b(best|worst)\s*(student|performer|in class)",
        r"\b(better|worse)\s*than\s*(other|most|many)",
        r"\b(ahead|behind)\s*(of|the)\s*(class|others|peers)",
        r"\b\d+(st|nd|rd|th)\s*(place|position|out of)",
        r"\bclass\s*average",
        r"\bpercentile",
    ),
    guidance="Do not compare the child with other students",
)

GRADE_DISCLOSURE = PatternCategory(
    name="grade_disclosure",
    severity=Severity.BLOCKED,
    patterns=_compile(
        r"\b(grade|score|mark|marks)\s*(of|was|is|:)\s*[A-F0-9]",
        r"\b(scored|got)\s+\d+",
        r"\b\d+(\.\d+)?\s*%",
        r"\b\d+\s*/\s*\d+\s*(marks|points)",
    ),
    guidance="Share results through the report channel, not in notifications",
)

SENSITIVE_CONTENT = PatternCategory(
    name="sensitive_content",
    severity=Severity.BLOCKED,
    patterns=_compile(
        r"\b(diagnosis|diagnosed)",
        r"\b(medication|medicated)",
        r"\b(therapy|therapist|counseling)",
        r"\bmental\s*health",
        r"\bspecial\s*needs",
        r"\b(disability|disabled)",
        r"\b(adhd|autism|dyslexia)",
    ),
    guidance="Remove medical and personal details",
)

DIAGNOSTIC_JARGON = PatternCategory(
    name="diagnostic_jargon",
    severity=Severity.BLOCKED,
    patterns=_compile(
        r"\b(ai|artificial\s*intelligence)\s*(detected|suggests|analysis)",
        r"\b(algorithm|automated\s*system)",
        r"\b(diagnostic|diagnostics)",
        r"\blearning\s*profile\s*score",
        r"\bintervention\s*plan",
        r"\b(risk\s*score|at.risk\s*indicator)",
    ),
    guidance="Remove internal or diagnostic terminology",
)

FINANCIAL_SHAMING = PatternCategory(
    name="financial_shaming",
    severity=Severity.BLOCKED,
    patterns=_compile(
        r"\b(defaulter|defaulting)",
        r"\b(outstanding\s*)?debt",
        r"\bowe(s|d)?\s*(us|the school|fees)",
        r"\b(will be|may be)\s*(sent home|excluded)",
        r"\b(immediate|urgent)\s*payment",
        r"\blegal\s*action",
        r"\bcollection\s*agency",
    ),
    guidance="Fee matters are handled privately with respectful wording",
)

PERSONAL_DATA = PatternCategory(
    name="pii",
    severity=Severity.BLOCKED,
    patterns=(
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
        re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),
    ),
    guidance="Remove email addresses and identity or card numbers",
)

PHONE_NUMBER = PatternCategory(
    name="phone_number",
    severity=Severity.WARNING,
    patterns=(re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b"),),
    guidance="Check that any phone number is the school's own",
)

NEGATIVE_LABELS = PatternCategory(
    name="negative_labels",
    severity=Severity.WARNING,
    patterns=_compile(
        r"\b(slow|slower)\s*(learner|student|child)",
        r"\b(struggling|struggles)\s*(with|in|to)",
        r"\bfailing\b",
        r"\bfailed\b",
        r"\b(poor|weak)\s*(performance|student|work)",
        r"\b(low|lower)\s*(performer|achieving)",
        r"\b(behind|lagging)\s*(in|on)\b",
        r"\bunderperforming",
        r"\b(needs|requires)\s*(remedial|extra help)",
    ),
    guidance="Describe progress without labelling the child",
)

DISCIPLINARY = PatternCategory(
    name="disciplinary",
    severity=Severity.WARNING,
    patterns=_compile(
        r"\b(punish|punishment|punished)",
        r"\b(suspend|suspension|suspended)",
        r"\b(expel|expulsion|expelled)",
        r"\bdetention",
        r"\b(bad|naughty)\s*(behavior|behaviour|child)",
        r"\b(troublemaker|problem\s*child)",
        r"\b(disruptive|disobedient)",
    ),
    guidance="Keep disciplinary matters out of routine notices",
)

SHAMING = PatternCategory(
    name="shaming",
    severity=Severity.WARNING,
    patterns=_phrases(
        "failed to attend",
        "truant",
        "skipped",
        "bunked",
        "did not bother",
        "irresponsible",
        "concerning",
        "worrying",
        "unacceptable",
        "must explain",
        "needs improvement",
        "falling behind",
        "poor attendance",
        "disappointing",
    ),
    guidance="Use neutral, factual wording",
)

ALARMING = PatternCategory(
    name="alarming",
    severity=Severity.WARNING,
    patterns=_phrases(
        "urgent",
        "immediately",
        "serious matter",
        "disciplinary action",
        "consequences",
        "warning",
        "final notice",
    ),
    guidance="Avoid alarming language outside emergencies",
)

DEFAULT_POLICY: tuple[PatternCategory, ...] = (
    PROMPT_INJECTION,
    RANKING,
    GRADE_DISCLOSURE,
    SENSITIVE_CONTENT,
    DIAGNOSTIC_JARGON,
    FINANCIAL_SHAMING,
    PERSONAL_DATA,
    PHONE_NUMBER,
    NEGATIVE_LABELS,
    DISCIPLINARY,
    SHAMING,
    ALARMING,
)

SAFE_ALTERNATIVES: dict[str, str] = {
    "struggling with": "working on",
    "failed": "did not complete",
    "poor performance": "opportunity for growth",
    "weak in": "developing skills in",
    "slow learner": "learning at own pace",
    "ranked": "participated in",
    "came last": "completed the activity",
    "bottom of class": "has room to grow",
    "punished": "reminded of expectations",
    "detention": "reflection time",
    "bad behavior": "behavior that needs attention",
    "naughty": "needing guidance",
    "defaulter": "fee balance pending",
    "owes fees": "has outstanding balance",
    "sent home": "requires attention",
}


class ContentValidator:
    """Check rendered text against a content policy.

    Stateless and side-effect free; one instance can be shared.
    """

    def __init__(
        self,
        policy: Iterable[PatternCategory] = DEFAULT_POLICY,
        alternatives: Mapping[str, str] = SAFE_ALTERNATIVES,
    ) -> None:
        self._policy = tuple(policy)
        self._alternatives = dict(alternatives)

    def validate(self, text: str) -> ValidationResult:
        """Validate rendered text.

        Args:
            text: Rendered subject and body.

        Returns:
            ValidationResult with every violation and reviewer suggestions.
        """
        violations: list[Violation] = []
        suggestions: list[str] = []

        for category in self._policy:
            matched = False
            for pattern in category.patterns:
                for match in pattern.finditer(text):
                    violations.append(
                        Violation(
                            category=category.name,
                            severity=category.severity,
                            matched_text=match.group(0),
                            position=match.start(),
                        )
                    )
                    matched = True
            if matched:
                suggestions.append(category.guidance)

        lowered = text.lower()
        for phrase, alternative in self._alternatives.items():
            if phrase in lowered:
                suggestions.append(f'Replace "{phrase}" with "{alternative}"')

        severity = max(
            (violation.severity for violation in violations),
            key=lambda s: s.rank,
            default=Severity.NONE,
        )
        if violations:
            logger.debug(
                "Content validation found %d violations (severity %s)",
                len(violations),
                severity.value,
            )

        return ValidationResult(
            is_valid=severity != Severity.BLOCKED,
            severity=severity,
            violations=tuple(violations),
            suggestions=tuple(dict.fromkeys(suggestions)),
        )
