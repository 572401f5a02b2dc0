"""pilot-orchestrator - spec-driven task orchestration with verified self-correction."""

__version__ = "0.1.0"
