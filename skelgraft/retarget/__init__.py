"""
Retargeting stages.

Includes:
- Joint name indexing
- Skeleton splicing (graft, joint pruning, inverse bind matrices)
- Canonical pose application
- Animation channel filtering
- Rigid skin assignment
- Texture atlas packing and single mesh merge
"""

from .joint_index import JointIndex, build_joint_index
from .skeleton import (
    graft,
    prune_joints,
    recompute_inverse_bind_matrices,
    splice_skeleton,
)
from .pose import (
    find_world_node,
    reset_world_node,
    apply_canonical_pose,
    remove_world_node,
)
from .animation import FilterStats, filter_animations, rebind_channels
from .rigid_skin import find_ancestor_joint, rigid_bind_attributes, assign_rigid_skins
from .atlas import (
    AtlasSlot,
    AtlasResult,
    layout,
    slot,
    remap_uv,
    composite,
    encode_atlas,
    pack_atlas,
)
from .merge import MergeResult, collect_primitives, merge_meshes, mergeable_nodes

__all__ = [
    # Joint index
    "JointIndex",
    "build_joint_index",
    # Skeleton
    "graft",
    "prune_joints",
    "recompute_inverse_bind_matrices",
    "splice_skeleton",
    # Pose
    "find_world_node",
    "reset_world_node",
    "apply_canonical_pose",
    "remove_world_node",
    # Animation
    "FilterStats",
    "filter_animations",
    "rebind_channels",
    # Rigid skin
    "find_ancestor_joint",
    "rigid_bind_attributes",
    "assign_rigid_skins",
    # Atlas
    "AtlasSlot",
    "AtlasResult",
    "layout",
    "slot",
    "remap_uv",
    "composite",
    "encode_atlas",
    "pack_atlas",
    # Merge
    "MergeResult",
    "mergeable_nodes",
    "collect_primitives",
    "merge_meshes",
]
