"""
Type aliases and closed enumerations for skelgraft.

Matrix Convention:
==================

All 4x4 matrices held in memory are row-major mathematical matrices that
act on column vectors:

    p' = M @ [x, y, z, 1]

glTF stores matrices column-major; the flip happens only inside
``skelgraft.document.gltf_io``. Quaternions on nodes and in animation
samplers keep the glTF order [x, y, z, w]; the torch helpers in
``skelgraft.utils.quaternion`` use [w, x, y, z] and convert at the edge.
"""

from enum import Enum
from typing import Dict, Tuple
import numpy as np


# =============================================================================
# Basic Type Aliases
# =============================================================================

# Handle of an entity inside a Document arena
Handle = int

# (4, 4) float64 transform
Matrix4 = np.ndarray

# (J, 4, 4) stack of transforms
MatrixStack = np.ndarray

# (N, 2) float32 texture coordinates
UVBuffer = np.ndarray

# Translation + rotation [x, y, z, w] pair
CanonicalPose = Tuple[np.ndarray, np.ndarray]

# Named vertex attribute buffers of a primitive
AttributeDict = Dict[str, np.ndarray]


# =============================================================================
# Enumerations
# =============================================================================

class TargetPath(Enum):
    """Animated property of a channel's target node."""
    TRANSLATION = "translation"
    ROTATION = "rotation"
    SCALE = "scale"

    @property
    def components(self) -> int:
        return 4 if self is TargetPath.ROTATION else 3


class ChannelRole(Enum):
    """Material texture slot packed into an atlas."""
    BASE = "base"
    EMISSIVE = "emissive"
    NORMAL = "normal"
    METALLIC_ROUGHNESS = "metallic_roughness"

    @property
    def material_slot(self) -> str:
        """Attribute of ``Material`` holding the source texture."""
        return _ROLE_SLOTS[self]

    @property
    def neutral_color(self) -> Tuple[int, int, int, int]:
        """RGBA fill used where a primitive has no texture for this role."""
        return _ROLE_NEUTRALS[self]


_ROLE_SLOTS = {
    ChannelRole.BASE: "base_color_texture",
    ChannelRole.EMISSIVE: "emissive_texture",
    ChannelRole.NORMAL: "normal_texture",
    ChannelRole.METALLIC_ROUGHNESS: "metallic_roughness_texture",
}

_ROLE_NEUTRALS = {
    ChannelRole.BASE: (255, 255, 255, 255),
    ChannelRole.EMISSIVE: (0, 0, 0, 255),
    ChannelRole.NORMAL: (128, 128, 255, 255),
    ChannelRole.METALLIC_ROUGHNESS: (255, 255, 255, 255),
}
