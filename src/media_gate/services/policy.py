"""Publication policy: turns analysis results into an approve/reject verdict.

``decide`` is pure. Rules apply in priority order:

1. Either analysis channel failed: reject with ``AnalysisIncomplete``.
2. A disallowed visual category (or pose flag) reaches its threshold: reject,
   naming the most likely offending category.
3. Text screening flagged the transcript outside the innocuous allow-list:
   reject with ``PolicyViolation``.
4. Otherwise approve.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from media_gate.core.settings import settings
from media_gate.models.moderation import DECISION_APPROVED, DECISION_REJECTED
from media_gate.services.analysis import (
    ChannelResult,
    TranscriptResult,
    VisualDetection,
    VisualResult,
    normalize_label,
)
from media_gate.services.errors import ErrorKind
from media_gate.services.text_screening import ScreeningResult

POSE_FLAG_LIKELIHOOD = 1.0


@dataclass(frozen=True)
class Verdict:
    """Result of applying the publication policy to one analysis attempt."""

    outcome: str
    reason: str | None
    confidence: float
    reasoning: str
    categories: tuple[str, ...] = field(default_factory=tuple)

    @property
    def approved(self) -> bool:
        return self.outcome == DECISION_APPROVED


def _offending_detections(
    visual: VisualResult,
    thresholds: Mapping[str, float],
    disallowed_pose_flags: Iterable[str],
) -> list[VisualDetection]:
    offending = [
        detection
        for detection in visual.categories
        if detection.category in thresholds and detection.likelihood >= thresholds[detection.category]
    ]
    blocked_flags = {normalize_label(flag) for flag in disallowed_pose_flags}
    offending.extend(
        VisualDetection(category=flag, likelihood=POSE_FLAG_LIKELIHOOD)
        for flag in visual.pose_flags
        if flag in blocked_flags
    )
    return sorted(offending, key=lambda detection: detection.likelihood, reverse=True)


def _max_disallowed_likelihood(visual: VisualResult, thresholds: Mapping[str, float]) -> float:
    return max(
        (d.likelihood for d in visual.categories if d.category in thresholds),
        default=0.0,
    )


def decide(
    visual: ChannelResult[VisualResult],
    transcript: ChannelResult[TranscriptResult],
    text: ScreeningResult | None,
    *,
    thresholds: Mapping[str, float] | None = None,
    disallowed_pose_flags: Iterable[str] | None = None,
) -> Verdict:
    """Apply the publication policy to the outputs of both analysis channels."""
    if thresholds is None:
        thresholds = settings.visual_category_thresholds
    thresholds = {normalize_label(name): value for name, value in thresholds.items()}
    if disallowed_pose_flags is None:
        disallowed_pose_flags = settings.disallowed_pose_flags

    failures = [
        f"{channel} {result.error_kind.value}"
        for channel, result in (("visual", visual), ("transcription", transcript))
        if not result.ok and result.error_kind is not None
    ]
    if not (visual.ok and transcript.ok):
        return Verdict(
            outcome=DECISION_REJECTED,
            reason=ErrorKind.ANALYSIS_INCOMPLETE.value,
            confidence=0.0,
            reasoning="Analysis incomplete: " + (", ".join(failures) or "missing result"),
        )

    visual_result = visual.value or VisualResult()
    offending = _offending_detections(visual_result, thresholds, disallowed_pose_flags)
    if offending:
        top = offending[0]
        return Verdict(
            outcome=DECISION_REJECTED,
            reason=top.category,
            confidence=round(top.likelihood, 4),
            reasoning="Disallowed visual content: "
            + ", ".join(f"{d.category} ({d.likelihood:.2f})" for d in offending),
            categories=tuple(d.category for d in offending),
        )

    screening = text or ScreeningResult(flagged=False)
    if screening.flagged and not screening.matched_allow_list:
        return Verdict(
            outcome=DECISION_REJECTED,
            reason=ErrorKind.POLICY_VIOLATION.value,
            confidence=round(screening.score, 4),
            reasoning=screening.reason or "Transcript flagged by text screening",
            categories=("text",),
        )

    max_visual = _max_disallowed_likelihood(visual_result, thresholds)
    confidence = round((1.0 - max_visual) * (1.0 - screening.score), 4)
    return Verdict(
        outcome=DECISION_APPROVED,
        reason=None,
        confidence=confidence,
        reasoning="No disallowed content detected",
    )
