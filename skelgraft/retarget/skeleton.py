"""
Skeleton splicing: graft a donor skeleton, prune joints, rebuild bind poses.

Stage order is fixed. Inverse bind matrices must be recomputed after
pruning and after every edit to joint transforms, otherwise the bind pose
no longer matches the skeleton's posture.
"""

import logging
from typing import Iterable, List

import numpy as np

from ..core.constants import DEFAULT_DEGENERATE_EPS
from ..core.errors import DegenerateTransform, MissingDonorRoot, UnresolvedJointReference, warn
from ..core.types import Handle
from ..document.scene import Document
from ..utils.transforms import invert_matrices
from .joint_index import build_joint_index

logger = logging.getLogger(__name__)


# =============================================================================
# Graft
# =============================================================================

def graft(doc: Document, target_scene: Handle, donor_scene: Handle, skin: Handle) -> Handle:
    """
    Move the donor scene's root node under the target scene.

    The grafted node becomes the skin's skeleton root and the emptied donor
    scene is released.

    Args:
        doc: Document holding both scenes
        target_scene: Scene receiving the skeleton
        donor_scene: Scene holding the donor skeleton as its first root child
        skin: Skin whose skeleton root is set

    Returns:
        Handle of the grafted root node

    Raises:
        MissingDonorRoot: If the donor scene has no root children
    """
    roots = doc.scene(donor_scene).children
    if not roots:
        raise MissingDonorRoot(f"Donor scene '{doc.scene(donor_scene).name}' has no root node to graft")
    if len(roots) > 1:
        logger.warning(
            f"Donor scene has {len(roots)} root nodes; grafting '{doc.node(roots[0]).name}' only"
        )

    skeleton_root = roots[0]
    doc.scene_add_child(target_scene, skeleton_root)
    doc.set_skeleton(skin, skeleton_root)
    doc.dispose_scene(donor_scene)

    logger.info(f"Grafted skeleton root '{doc.node(skeleton_root).name}'")
    return skeleton_root


# =============================================================================
# Prune
# =============================================================================

def _inverse_world(doc: Document, handle: Handle, eps: float = DEFAULT_DEGENERATE_EPS) -> np.ndarray:
    """Inverse of a node's world matrix; raises DegenerateTransform when singular."""
    inverses, determinants, singular = invert_matrices(doc.get_world_matrix(handle)[None], eps)
    if singular[0]:
        det = float(determinants[0]) if np.isfinite(determinants[0]) else None
        raise DegenerateTransform(doc.node(handle).name, det)
    return inverses[0]


def _lift_children(doc: Document, handle: Handle) -> None:
    """Re-attach a node's children to its parent, keeping their world transforms."""
    parent = doc.get_parent(handle)
    scene = doc.find_scene(handle) if parent is None else None
    parent_inverse = _inverse_world(doc, parent) if parent is not None else None
    for child in doc.list_children(handle):
        world = doc.get_world_matrix(child)
        if parent is not None:
            doc.add_child(parent, child)
            local = parent_inverse @ world
        else:
            doc.remove_child(handle, child)
            if scene is not None:
                doc.scene_add_child(scene, child)
            local = world
        doc.set_matrix(child, local)


def prune_joints(doc: Document, skin: Handle, names: Iterable[str]) -> List[str]:
    """
    Remove named joints from a skin and from the scene graph.

    Each removed joint loses its inverse bind matrix in the same step, so
    the skin stays index-aligned. Names not present in the skin are
    reported with ``UnresolvedJointReference`` and skipped.

    Args:
        doc: Document holding the skin
        skin: Skin to prune
        names: Joint names to remove

    Returns:
        Names that were actually removed, in request order
    """
    removed = []
    for name in names:
        # Re-index every time: removal shifts later joint indices
        index = build_joint_index(doc, skin)
        joint = index.joint(name)
        if joint is None:
            warn(logger, f"Joint '{name}' not found in skin, skipping removal", UnresolvedJointReference)
            continue

        _lift_children(doc, joint)
        parent = doc.get_parent(joint)
        if parent is not None:
            doc.remove_child(parent, joint)
        doc.remove_joint(skin, joint)
        doc.dispose_node(joint, recursive=False)
        removed.append(name)

    logger.info(f"Pruned {len(removed)} joints, {len(doc.list_joints(skin))} remain")
    return removed


# =============================================================================
# Inverse Bind Matrices
# =============================================================================

def recompute_inverse_bind_matrices(
    doc: Document,
    skin: Handle,
    eps: float = DEFAULT_DEGENERATE_EPS,
) -> np.ndarray:
    """
    Set every inverse bind matrix to the inverse of its joint's world matrix.

    Args:
        doc: Document holding the skin
        skin: Skin to update
        eps: Determinant magnitude treated as singular

    Returns:
        (J, 4, 4) new inverse bind matrices

    Raises:
        DegenerateTransform: If any joint's world matrix is not invertible;
            the skin is left unchanged
    """
    joints = doc.list_joints(skin)
    worlds = np.stack([doc.get_world_matrix(j) for j in joints]) if joints else np.zeros((0, 4, 4))
    inverses, determinants, singular = invert_matrices(worlds, eps)

    if singular.any():
        i = int(np.flatnonzero(singular)[0])
        det = float(determinants[i]) if np.isfinite(determinants[i]) else None
        raise DegenerateTransform(doc.node(joints[i]).name, det)

    doc.set_inverse_bind_matrices(skin, inverses)
    logger.debug(f"Recomputed {len(joints)} inverse bind matrices")
    return inverses


def splice_skeleton(
    doc: Document,
    scene: Handle,
    donor_scene: Handle,
    skin: Handle,
    deny_list: Iterable[str],
) -> List[str]:
    """
    Graft the donor skeleton, prune the deny list, rebuild inverse binds.

    Returns:
        Names of the pruned joints
    """
    graft(doc, scene, donor_scene, skin)
    removed = prune_joints(doc, skin, deny_list)
    recompute_inverse_bind_matrices(doc, skin)
    return removed


__all__ = [
    'graft',
    'prune_joints',
    'recompute_inverse_bind_matrices',
    'splice_skeleton',
]
