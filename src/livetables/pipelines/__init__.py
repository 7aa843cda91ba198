"""
Pipeline definitions.
"""

from .retail import build_retail_pipeline, default_quality_constraints, gold_views

__all__ = ["build_retail_pipeline", "default_quality_constraints", "gold_views"]
