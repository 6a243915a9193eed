"""
Motion, normal mode and group annotation modules
"""

from belka.analysis.groups import load_groups, save_groups
from belka.analysis.modes import ModeSet, NormalModeCalculator
from belka.analysis.motion import DisplacementField, MotionAnalyzer, ScrewMotion

__all__ = [
    "DisplacementField",
    "ModeSet",
    "MotionAnalyzer",
    "NormalModeCalculator",
    "ScrewMotion",
    "load_groups",
    "save_groups",
]
