"""Plans module - Pre-decomposed task lists."""

from .loader import PlanFileDecomposer, load_plan_file, parse_plan

__all__ = [
	"PlanFileDecomposer",
	"load_plan_file",
	"parse_plan",
]
