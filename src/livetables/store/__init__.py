"""
Filesystem-backed storage for stage outputs, keyed tables and views.
"""

from .codec import record_from_json, record_to_json
from .stage_store import StageStore
from .state_store import StateStore
from .view_store import ViewStore

__all__ = [
    "StageStore",
    "StateStore",
    "ViewStore",
    "record_to_json",
    "record_from_json",
]
