"""Heal module - rule engine, fix strategies and the bounded healing loop."""

from .fixes import FixContext, apply_fix
from .logger import HealingLogger, load_healing_log
from .loop import preview_healing_fixes, run_healing_loop, would_fix_apply
from .rules import DEFAULT_HEALING_RULES, evaluate_healing, get_next_fix

__all__ = [
    "DEFAULT_HEALING_RULES",
    "FixContext",
    "HealingLogger",
    "apply_fix",
    "evaluate_healing",
    "get_next_fix",
    "load_healing_log",
    "preview_healing_fixes",
    "run_healing_loop",
    "would_fix_apply",
]
