# src/media_gate/services/__init__.py
"""Pipeline services for the Media Gate application."""

from .orchestrator import ModerationOrchestrator, PipelineOutcome
from .recovery import RecoverySweep, SweepReport
from .strikes import StrikeLedger
from .text_screening import TextScreener
from .worker_pool import WorkerPool

__all__ = [
    "ModerationOrchestrator",
    "PipelineOutcome",
    "RecoverySweep",
    "SweepReport",
    "StrikeLedger",
    "TextScreener",
    "WorkerPool",
]
