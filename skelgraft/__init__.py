"""
skelgraft: glTF character retargeting onto a donor skeleton

Takes a character asset built for one rig and rebuilds it around a donor
skeleton, ready for a runtime that expects that skeleton.

Key Features:
- Donor skeleton grafting with joint pruning and inverse bind recompute
- Animation filtering (rotation tracks, rescaled root translation)
- Rigid single-influence skinning of unskinned mesh parts
- Optional single draw call merge with grid texture atlases
- glTF/GLB I/O on an arena document with stable integer handles

API Design:
- Every stage takes the Document and entity handles explicitly
- Fatal conditions raise SkelgraftError subclasses
- Non-fatal conditions are logged and emitted as RetargetWarning subclasses
- Matrices are row-major in memory, quaternions [x, y, z, w] on nodes

Example:
    >>> from skelgraft import RetargetConfig, convert
    >>> report = convert('hero.glb', 'hero.retarget.glb', RetargetConfig(data_dir='data'), merge=True)
    >>> report.grid_side
    3
"""

__version__ = "0.1.0"
__author__ = "skelgraft contributors"

from . import core
from . import utils
from . import document
from . import retarget
from . import pipeline

from .utils.config import RetargetConfig
from .pipeline import convert, format_report

__all__ = [
    "core",
    "utils",
    "document",
    "retarget",
    "pipeline",
    "RetargetConfig",
    "convert",
    "format_report",
]
