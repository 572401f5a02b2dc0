"""Orchestrator module - Task graph admission, selection, verification, and self-correction."""

from .correction import CorrectionAction, CorrectionDecision, SelfCorrectionPolicy
from .engine import Orchestrator
from .graph import admit_drafts, topological_order
from .selector import Selection, select_next_task, setup_first
from .verifier import PipelineResult, StageResult, StageStatus, VerificationPipeline

__all__ = [
	"Orchestrator",
	"admit_drafts",
	"topological_order",
	"select_next_task",
	"setup_first",
	"Selection",
	"SelfCorrectionPolicy",
	"CorrectionAction",
	"CorrectionDecision",
	"VerificationPipeline",
	"PipelineResult",
	"StageResult",
	"StageStatus",
]
