"""Typed analysis results shared by the analysis clients and the policy engine.

An analysis channel either succeeded with a value or failed with an error
kind. There is no third "missing" state: a channel that timed out, errored or
returned garbage is reported as failed, so the policy engine can never mistake
absent data for a clean result.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from media_gate.services.errors import ErrorKind, MediaGateError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Vendor likelihood labels mapped onto the 0..1 scale used by category thresholds.
LIKELIHOOD_SCORES: dict[str, float] = {
    "UNKNOWN": 0.0,
    "VERY_UNLIKELY": 0.0,
    "UNLIKELY": 0.25,
    "POSSIBLE": 0.5,
    "LIKELY": 0.75,
    "VERY_LIKELY": 1.0,
}


def normalize_label(label: str) -> str:
    """Canonical form for category names and pose flags."""
    return label.strip().lower().replace(" ", "_").replace("-", "_")


def parse_likelihood(value: Any) -> float:
    """Accept either a vendor likelihood label or a numeric score."""
    if isinstance(value, str):
        label = value.strip().upper()
        if label in LIKELIHOOD_SCORES:
            return LIKELIHOOD_SCORES[label]
        value = float(label)
    score = float(value)
    if not 0.0 <= score <= 1.0:
        raise ValueError(f"likelihood {score} outside 0..1")
    return score


@dataclass(frozen=True)
class VisualDetection:
    category: str
    likelihood: float


@dataclass(frozen=True)
class VisualResult:
    """Detected categories with likelihoods plus pose/gesture flags."""

    categories: tuple[VisualDetection, ...] = ()
    pose_flags: tuple[str, ...] = ()

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> VisualResult:
        categories = tuple(
            VisualDetection(
                category=normalize_label(str(entry["name"])),
                likelihood=parse_likelihood(entry["likelihood"]),
            )
            for entry in payload.get("categories", [])
        )
        pose_flags = tuple(normalize_label(str(flag)) for flag in payload.get("pose_flags", []))
        return cls(categories=categories, pose_flags=pose_flags)


@dataclass(frozen=True)
class TranscriptResult:
    text: str = ""
    language: str | None = None
    language_confidence: float = 0.0

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> TranscriptResult:
        return cls(
            text=str(payload.get("text") or ""),
            language=payload.get("language"),
            language_confidence=float(payload.get("language_confidence") or 0.0),
        )


@dataclass(frozen=True)
class ChannelResult(Generic[T]):
    """Outcome of one analysis channel: ``succeeded(value)`` or ``failed(error_kind)``."""

    value: T | None = None
    error_kind: ErrorKind | None = None
    detail: str = field(default="", compare=False)

    @classmethod
    def succeeded(cls, value: T) -> ChannelResult[T]:
        return cls(value=value)

    @classmethod
    def failed(cls, error_kind: ErrorKind, detail: str = "") -> ChannelResult[T]:
        return cls(error_kind=error_kind, detail=detail)

    @property
    def ok(self) -> bool:
        return self.error_kind is None and self.value is not None


async def run_channel(
    channel: str,
    call: Callable[[], Awaitable[T]],
    timeout: float,
) -> ChannelResult[T]:
    """Await ``call`` under ``timeout`` and fold every failure into a failed result.

    A timeout cancels only this call and is never retried here.
    """
    try:
        value = await asyncio.wait_for(call(), timeout=timeout)
    except TimeoutError:
        logger.warning("%s analysis timed out after %.1fs", channel, timeout)
        return ChannelResult.failed(ErrorKind.TIMEOUT, f"{channel} timed out")
    except MediaGateError as exc:
        logger.warning("%s analysis failed (%s): %s", channel, exc.kind.value, exc)
        return ChannelResult.failed(exc.kind, str(exc))
    except (ValueError, TypeError, KeyError, AttributeError) as exc:
        logger.error("%s analysis returned malformed data: %s", channel, exc, exc_info=True)
        return ChannelResult.failed(ErrorKind.MALFORMED_RESPONSE, str(exc))
    return ChannelResult.succeeded(value)
