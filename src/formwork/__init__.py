"""Public API for formwork area generation with contact deduction."""

from formwork.contracts import FormworkConfig, FormworkRunResult
from formwork.interactive import run_face_pick_loop
from formwork.pipeline import run_formwork_pipeline

__all__ = [
    "FormworkConfig",
    "FormworkRunResult",
    "run_face_pick_loop",
    "run_formwork_pipeline",
]
