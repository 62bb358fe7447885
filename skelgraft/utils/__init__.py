"""
Utility functions for skelgraft.

Includes quaternion/transform math and configuration management.
"""

from .quaternion import (
    from_gltf,
    to_gltf,
    normalize_quaternion,
    quaternion_to_matrix,
    matrix_to_quaternion,
)
from .transforms import (
    compose_matrix,
    decompose_matrix,
    scale_matrix,
    chain_matrices,
    invert_matrices,
)
from .config import (
    RetargetConfig,
    JointNameMap,
    load_config,
    save_config,
    resolve_data_path,
    load_joint_name_map,
)

__all__ = [
    # Quaternion
    "from_gltf",
    "to_gltf",
    "normalize_quaternion",
    "quaternion_to_matrix",
    "matrix_to_quaternion",
    # Transforms
    "compose_matrix",
    "decompose_matrix",
    "scale_matrix",
    "chain_matrices",
    "invert_matrices",
    # Config
    "RetargetConfig",
    "JointNameMap",
    "load_config",
    "save_config",
    "resolve_data_path",
    "load_joint_name_map",
]
