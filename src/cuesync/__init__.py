"""
cuesync - Speech-synced teleprompter alignment.

Follows a live, error-prone speech-to-text stream through a script and
turns the estimated position into smooth, mostly forward scrolling.
"""

__version__ = "0.1.0"

from .engine import AlignmentEngine, BatchResult
from .layout import LayoutProvider, LineLayout, ScrollCommand, StaticLayout
from .script_index import ScriptIndex
from .session import SyncSession
from .tokenizer import tokenize
from .tuning import PidParams, TuningError, TuningProfile

__all__ = [
    "AlignmentEngine",
    "BatchResult",
    "LayoutProvider",
    "LineLayout",
    "ScrollCommand",
    "StaticLayout",
    "ScriptIndex",
    "SyncSession",
    "tokenize",
    "PidParams",
    "TuningError",
    "TuningProfile",
]
