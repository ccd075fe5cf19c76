"""Execution engine -- context, dispatcher, orchestrator, analysis, evidence, controller."""

from specrun.engine.analysis import FailureAnalysisEngine, TechnicalDebtEngine
from specrun.engine.context import ContextView, ExecutionContext
from specrun.engine.controller import RunController
from specrun.engine.dispatcher import ActionDispatcher
from specrun.engine.events import EventChannel, EventKind
from specrun.engine.evidence import EvidenceWriter
from specrun.engine.orchestrator import TaskOrchestrator
from specrun.engine.validation import ValidationEngine

__all__ = [
    "ActionDispatcher",
    "ContextView",
    "EventChannel",
    "EventKind",
    "EvidenceWriter",
    "ExecutionContext",
    "FailureAnalysisEngine",
    "RunController",
    "TaskOrchestrator",
    "TechnicalDebtEngine",
    "ValidationEngine",
]
