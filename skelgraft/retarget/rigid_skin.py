"""
Rigid skinning of unskinned mesh parts.

Every mesh node is flattened to the scene root with its world transform
baked into the geometry, then bound with a single influence to the joint
its nearest mapped ancestor names. Parts already skinned to another rig
keep their weights and have their joint indices remapped onto the skin.
"""

import logging
from typing import Dict, List, Optional, Sequence, Set

import numpy as np

from ..core.constants import ATTR_JOINTS_0, ATTR_WEIGHTS_0, INFLUENCES_PER_VERTEX, LOCAL_ONLY_SUFFIX
from ..core.errors import MissingAncestorJoint, UnresolvedJointReference, warn
from ..core.types import Handle
from ..document.functions import transform_mesh
from ..document.scene import Document
from ..utils.config import JointNameMap
from ..utils.transforms import scale_matrix
from .joint_index import JointIndex, build_joint_index

logger = logging.getLogger(__name__)


def find_ancestor_joint(
    lineage: Sequence[str],
    joint_name_map: JointNameMap,
    joint_index: JointIndex,
    reported: Optional[Set[str]] = None,
) -> Optional[int]:
    """
    Walk a parent chain for the first name mapped to a joint of the skin.

    A mapped joint name the skin does not contain is reported once with
    ``UnresolvedJointReference`` and the walk continues upward.

    Args:
        lineage: Ancestor names, nearest first
        joint_name_map: Ancestor name -> joint name table
        joint_index: Index of the skin being bound to
        reported: Joint names already reported; shared across calls

    Returns:
        Joint index in the skin, or None when the chain is exhausted
    """
    if reported is None:
        reported = set()
    for name in lineage:
        joint_name = joint_name_map.joint_for(name)
        if joint_name is None:
            continue
        index = joint_index.index(joint_name)
        if index is not None:
            return index
        if joint_name not in reported:
            reported.add(joint_name)
            warn(
                logger,
                f"'{name}' maps to joint '{joint_name}', which is not in the skin",
                UnresolvedJointReference,
            )
    return None


def rigid_bind_attributes(vertex_count: int, joint: int):
    """
    JOINTS_0 / WEIGHTS_0 buffers binding every vertex to one joint.

    Returns:
        joints: (N, 4) uint16 rows of [joint, 0, 0, 0]
        weights: (N, 4) float32 rows of [1, 0, 0, 0]
    """
    joints = np.zeros((vertex_count, INFLUENCES_PER_VERTEX), dtype=np.uint16)
    joints[:, 0] = joint
    weights = np.zeros((vertex_count, INFLUENCES_PER_VERTEX), dtype=np.float32)
    weights[:, 0] = 1.0
    return joints, weights


def _joint_lineages(doc: Document, skin: Handle) -> List[List[str]]:
    """Per joint of ``skin``: its own name followed by its ancestors' names."""
    return [
        [doc.node(joint).name] + [doc.node(a).name for a in doc.list_ancestors(joint)]
        for joint in doc.list_joints(skin)
    ]


def _remap_joints(doc: Document, mesh: Handle, table: np.ndarray, fallback: int) -> None:
    """Rewrite every JOINTS_n set through ``table`` (old index -> new index)."""
    for primitive in doc.list_primitives(mesh):
        sets = [name for name in primitive.attributes if name.startswith('JOINTS_')]
        if not sets:
            joints, weights = rigid_bind_attributes(primitive.vertex_count, fallback)
            primitive.set_attribute(ATTR_JOINTS_0, joints)
            primitive.set_attribute(ATTR_WEIGHTS_0, weights)
            continue
        for name in sets:
            old = primitive.get_attribute(name).astype(np.int64)
            old = np.clip(old, 0, len(table) - 1)
            primitive.set_attribute(name, table[old].astype(np.uint16))


def assign_rigid_skins(
    doc: Document,
    scene: Handle,
    nodes: Sequence[Handle],
    joint_name_map: JointNameMap,
    skin: Handle,
    geometry_scale: float = 1.0,
    local_only_suffix: str = LOCAL_ONLY_SUFFIX,
) -> Dict[str, int]:
    """
    Flatten, bake and rigidly bind every unskinned mesh node.

    World matrices and ancestor names are captured for all nodes before
    anything moves, so reparenting one node never changes what another
    node bakes or binds to. The world transform (times a uniform
    ``geometry_scale``) is applied to each mesh exactly once; meshes
    shared with other nodes are cloned first. Mesh-less nodes whose name
    ends with ``local_only_suffix`` are released with their subtree after
    all mesh nodes have moved out.

    Mesh nodes bound to another skin are moved to the scene root too. Their
    geometry already lives in bind space, so only ``geometry_scale`` is
    baked, and each old joint index is remapped to the skin joint its
    nearest mapped name resolves to. Old joints that resolve to nothing
    follow the node's own ancestor joint, or the skin root. Nodes already
    bound to ``skin`` are only moved to the scene root.

    Args:
        doc: Document to modify in place
        scene: Scene whose root receives the mesh nodes
        nodes: Nodes in depth-first pre-order
        joint_name_map: Ancestor name -> joint name table
        skin: Skin to bind to
        geometry_scale: Uniform scale baked together with the world matrix
        local_only_suffix: Name suffix of disposable decorative nodes

    Returns:
        {'skinned': bound or remapped mesh nodes, 'deleted': released decorative nodes}
    """
    live = [h for h in nodes if doc.has_node(h)]
    joint_index = build_joint_index(doc, skin)
    geometry = scale_matrix(geometry_scale)
    reported: Set[str] = set()

    mesh_nodes = [h for h in live if doc.node(h).mesh is not None]
    worlds = {h: doc.get_world_matrix(h) for h in mesh_nodes}
    lineages = {h: [doc.node(a).name for a in doc.list_ancestors(h)] for h in mesh_nodes}
    foreign_skins = {doc.node(h).skin for h in mesh_nodes} - {None, skin}
    joint_lineages = {s: _joint_lineages(doc, s) for s in foreign_skins}
    local_only = [
        h for h in live
        if doc.node(h).mesh is None and doc.node(h).name.endswith(local_only_suffix)
    ]

    skinned = 0
    rebound = 0
    for handle in mesh_nodes:
        node = doc.node(handle)
        if node.skin == skin:
            doc.scene_add_child(scene, handle)
            continue
        if len(doc.mesh_users(node.mesh)) > 1:
            node.mesh = doc.clone_mesh(node.mesh)

        doc.scene_add_child(scene, handle)
        doc.clear_transform(handle)
        joint = find_ancestor_joint(lineages[handle], joint_name_map, joint_index, reported)

        if node.skin is not None:
            transform_mesh(doc, node.mesh, geometry)
            resolved = [
                find_ancestor_joint(names, joint_name_map, joint_index, reported)
                for names in joint_lineages[node.skin]
            ]
            fallback = joint
            if fallback is None:
                fallback = 0
                if None in resolved or not resolved:
                    warn(
                        logger,
                        f"Joints of '{node.name}' with no mapped skeleton joint follow the skeleton root",
                        MissingAncestorJoint,
                    )
            table = np.array([fallback if r is None else r for r in resolved] or [fallback], dtype=np.int64)
            _remap_joints(doc, node.mesh, table, fallback)
            node.skin = skin
            skinned += 1
            rebound += 1
            continue

        transform_mesh(doc, node.mesh, worlds[handle] @ geometry)

        if joint is None:
            warn(
                logger,
                f"No ancestor of '{node.name}' maps to a skeleton joint, leaving it unskinned",
                MissingAncestorJoint,
            )
            continue

        node.skin = skin
        for primitive in doc.list_primitives(node.mesh):
            joints, weights = rigid_bind_attributes(primitive.vertex_count, joint)
            primitive.set_attribute(ATTR_JOINTS_0, joints)
            primitive.set_attribute(ATTR_WEIGHTS_0, weights)
        skinned += 1

    deleted = 0
    for handle in local_only:
        if doc.has_node(handle):
            doc.dispose_node(handle, recursive=True)
            deleted += 1

    logger.info(
        f"Rigid skinning: {skinned} of {len(mesh_nodes)} mesh nodes bound "
        f"({rebound} remapped from another skin), {deleted} local nodes deleted"
    )
    return {'skinned': skinned, 'deleted': deleted}


__all__ = ['find_ancestor_joint', 'rigid_bind_attributes', 'assign_rigid_skins']
