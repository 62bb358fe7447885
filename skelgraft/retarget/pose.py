"""
Canonical pose application for the source rig.

The source asset's old world node is neutralized and every node of the
source hierarchy is moved to the donor skeleton's T-pose before meshes
are baked.
"""

import logging
from typing import Dict, Iterable, Optional, Sequence

import numpy as np

from ..core.errors import MissingRootNode, warn
from ..core.types import CanonicalPose, Handle
from ..document.scene import Document

logger = logging.getLogger(__name__)


def find_world_node(doc: Document, nodes: Iterable[Handle], names: Sequence[str]) -> Optional[Handle]:
    """First node (in the given order) whose name is one of ``names``."""
    for handle in nodes:
        if doc.has_node(handle) and doc.node(handle).name in names:
            return handle
    return None


def reset_world_node(doc: Document, nodes: Iterable[Handle], names: Sequence[str]) -> Optional[Handle]:
    """
    Give the source rig's world node unit scale and identity rotation.

    Args:
        doc: Document holding the nodes
        nodes: Candidate nodes in traversal order
        names: Accepted world node names

    Returns:
        The world node handle, or None (with a ``MissingRootNode`` warning)
    """
    world = find_world_node(doc, nodes, names)
    if world is None:
        warn(
            logger,
            f"No {' or '.join(names)} node found, skipping world node transformation",
            MissingRootNode,
        )
        return None

    node = doc.node(world)
    node.scale = np.ones(3, dtype=np.float64)
    node.rotation = np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)
    return world


def apply_canonical_pose(
    doc: Document,
    nodes: Iterable[Handle],
    t_pose: Dict[str, CanonicalPose],
    unit_scale: float,
    skip: Optional[Handle] = None,
) -> int:
    """
    Move source nodes to the canonical T-pose.

    Nodes with a canonical entry take its translation and rotation;
    the rest keep their rotation and have their translation scaled into
    skeleton units.

    Args:
        doc: Document holding the nodes
        nodes: Nodes to pose
        t_pose: Node name -> (translation, rotation [x, y, z, w])
        unit_scale: Translation factor for nodes without an entry
        skip: Node left untouched (the world node)

    Returns:
        Number of nodes set from the canonical table
    """
    posed = 0
    for handle in nodes:
        if handle == skip or not doc.has_node(handle):
            continue
        node = doc.node(handle)
        entry = t_pose.get(node.name)
        if entry is not None:
            translation, rotation = entry
            node.translation = np.asarray(translation, dtype=np.float64).copy()
            node.rotation = np.asarray(rotation, dtype=np.float64).copy()
            posed += 1
        else:
            node.translation = node.translation * unit_scale

    logger.info(f"Applied canonical pose to {posed} nodes")
    return posed


def remove_world_node(doc: Document, handle: Optional[Handle]) -> int:
    """Release the old world node and whatever is still under it."""
    if handle is None or not doc.has_node(handle):
        return 0
    released = doc.dispose_node(handle, recursive=True)
    logger.info(f"Removed old skeleton ({released} nodes)")
    return released


__all__ = [
    'find_world_node',
    'reset_world_node',
    'apply_canonical_pose',
    'remove_world_node',
]
