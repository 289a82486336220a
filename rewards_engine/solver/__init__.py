"""Selector resolution, robust clicking, quiz solving and activity orchestration."""

from __future__ import annotations

from rewards_engine.solver.activity_classifier import ActivityKind, classify_activity, type_label
from rewards_engine.solver.activity_handlers import ActivityHandlers
from rewards_engine.solver.interaction import CandidateClick, InteractionProtocol
from rewards_engine.solver.orchestrator import ActivityOrchestrator
from rewards_engine.solver.overlay_manager import OverlayManager
from rewards_engine.solver.quiz_solver import QuizOutcome, QuizResult, QuizSolver
from rewards_engine.solver.retry import RetryPolicy
from rewards_engine.solver.selector_resolver import SelectorResolver
from rewards_engine.solver.throttle import AdaptiveThrottler

__all__ = [
    "ActivityHandlers",
    "ActivityKind",
    "ActivityOrchestrator",
    "AdaptiveThrottler",
    "CandidateClick",
    "InteractionProtocol",
    "OverlayManager",
    "QuizOutcome",
    "QuizResult",
    "QuizSolver",
    "RetryPolicy",
    "SelectorResolver",
    "classify_activity",
    "type_label",
]
