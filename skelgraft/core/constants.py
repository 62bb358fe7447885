"""
Centralized constants for skelgraft.

This module defines the default values used throughout the retargeting
pipeline. Using these constants ensures the pipeline stages, the config
layer and the tests agree on the same numbers.

Usage:
    from skelgraft.core.constants import DEFAULT_UNIT_SCALE, CELL_PIXEL_SIZE

    def rescale(values, factor: float = DEFAULT_UNIT_SCALE):
        ...
"""

# =============================================================================
# Numeric Constants
# =============================================================================

# Determinant magnitude below which a world matrix is treated as singular
DEFAULT_DEGENERATE_EPS: float = 1e-12

# Tolerance used when comparing matrices (inverse round trips, decompositions)
DEFAULT_MATRIX_TOLERANCE: float = 1e-5

# Epsilon for normalization operations
DEFAULT_EPS_NORM: float = 1e-12


# =============================================================================
# Retargeting Defaults
# =============================================================================

# Uniform scale converting source units into the donor skeleton's units
DEFAULT_UNIT_SCALE: float = 0.032 * 1.1

# Node whose translation animation is kept and rescaled
ROOT_CONTROLLER_NAME: str = "Controller-Global"

# Nodes holding the source rig's global transform (old skeleton root)
WORLD_NODE_NAMES = ("World-Global", "Root-Global")

# Suffix marking decorative, geometry-less nodes that are deleted
LOCAL_ONLY_SUFFIX: str = "-Local"

# Maximum number of joint influences per vertex in a glTF JOINTS_n set
INFLUENCES_PER_VERTEX: int = 4


# =============================================================================
# Atlas Defaults
# =============================================================================

# Pixel size of one atlas grid cell
CELL_PIXEL_SIZE: int = 64

# Channel roles packed when merging
DEFAULT_ATLAS_CHANNELS = ("base", "emissive")

# Material written for the merged mesh
MERGED_EMISSIVE_FACTOR = (10.0, 10.0, 10.0)
MERGED_EMISSIVE_STRENGTH: float = 5.0
MERGED_METALLIC_FACTOR: float = 0.0


# =============================================================================
# Data Files
# =============================================================================

DATA_DIR_ENV: str = "SKELGRAFT_DATA_DIR"
SKELETON_FILE: str = "skeleton.glb"
JOINT_MAP_FILE: str = "joints-map.json"
JOINT_REMOVE_FILE: str = "joints-remove.json"
T_POSE_FILE: str = "t-pose.json"


# =============================================================================
# glTF Attribute and Extension Names
# =============================================================================

ATTR_POSITION: str = "POSITION"
ATTR_NORMAL: str = "NORMAL"
ATTR_TANGENT: str = "TANGENT"
ATTR_TEXCOORD_0: str = "TEXCOORD_0"
ATTR_TEXCOORD_1: str = "TEXCOORD_1"
ATTR_JOINTS_0: str = "JOINTS_0"
ATTR_WEIGHTS_0: str = "WEIGHTS_0"

EXT_EMISSIVE_STRENGTH: str = "KHR_materials_emissive_strength"

# glTF primitive mode for triangle lists
MODE_TRIANGLES: int = 4
