"""
Core module for skelgraft.

Contains:
- Constants: Centralized default values and glTF names
- Types: Handle/matrix aliases and the TargetPath / ChannelRole enums
- Errors: Fatal exceptions and non-fatal warning categories
"""

from .constants import (
    # Numeric constants
    DEFAULT_DEGENERATE_EPS,
    DEFAULT_MATRIX_TOLERANCE,
    DEFAULT_EPS_NORM,
    # Retargeting defaults
    DEFAULT_UNIT_SCALE,
    ROOT_CONTROLLER_NAME,
    WORLD_NODE_NAMES,
    LOCAL_ONLY_SUFFIX,
    INFLUENCES_PER_VERTEX,
    # Atlas defaults
    CELL_PIXEL_SIZE,
    DEFAULT_ATLAS_CHANNELS,
)

from .types import (
    Handle,
    Matrix4,
    MatrixStack,
    UVBuffer,
    TargetPath,
    ChannelRole,
)

from .errors import (
    SkelgraftError,
    DocumentError,
    GLTFReadError,
    GLTFWriteError,
    RetargetError,
    MissingDonorRoot,
    DegenerateTransform,
    RetargetWarning,
    UnresolvedJointReference,
    MissingAncestorJoint,
    MissingTextureChannel,
    DuplicateJointName,
    MissingRootNode,
)

__all__ = [
    # Constants
    "DEFAULT_DEGENERATE_EPS",
    "DEFAULT_MATRIX_TOLERANCE",
    "DEFAULT_EPS_NORM",
    "DEFAULT_UNIT_SCALE",
    "ROOT_CONTROLLER_NAME",
    "WORLD_NODE_NAMES",
    "LOCAL_ONLY_SUFFIX",
    "INFLUENCES_PER_VERTEX",
    "CELL_PIXEL_SIZE",
    "DEFAULT_ATLAS_CHANNELS",
    # Types
    "Handle",
    "Matrix4",
    "MatrixStack",
    "UVBuffer",
    "TargetPath",
    "ChannelRole",
    # Errors
    "SkelgraftError",
    "DocumentError",
    "GLTFReadError",
    "GLTFWriteError",
    "RetargetError",
    "MissingDonorRoot",
    "DegenerateTransform",
    "RetargetWarning",
    "UnresolvedJointReference",
    "MissingAncestorJoint",
    "MissingTextureChannel",
    "DuplicateJointName",
    "MissingRootNode",
]
