"""
Single draw call merge: every mesh part joined into one skinned mesh with
atlas-backed material.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..core.constants import EXT_EMISSIVE_STRENGTH, MERGED_METALLIC_FACTOR
from ..core.errors import warn
from ..core.types import ChannelRole, Handle
from ..document.functions import join_primitives
from ..document.scene import Document, Primitive, TextureRef
from ..utils.config import RetargetConfig
from .atlas import encode_atlas, pack_atlas

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Handles created by ``merge_meshes`` plus the atlas grid side."""
    node: Handle
    mesh: Handle
    material: Handle
    grid_side: int
    primitive_count: int


def mergeable_nodes(doc: Document, nodes: Sequence[Handle], skin: Handle) -> List[Handle]:
    """
    Mesh nodes that can join a mesh bound to ``skin``.

    Nodes bound to a different skin are left out with a warning: their
    joint indices refer to that skin, not to ``skin``.
    """
    parts = []
    for handle in nodes:
        if not doc.has_node(handle):
            continue
        node = doc.node(handle)
        if node.mesh is None:
            continue
        if node.skin is not None and node.skin != skin:
            warn(logger, f"'{node.name}' is bound to another skin, kept out of the merged mesh")
            continue
        parts.append(handle)
    return parts


def collect_primitives(doc: Document, nodes: Sequence[Handle]) -> List[Primitive]:
    """Primitives of the given nodes' meshes, first-seen mesh order, each mesh once."""
    seen = set()
    primitives = []
    for handle in nodes:
        if not doc.has_node(handle):
            continue
        mesh = doc.node(handle).mesh
        if mesh is None or mesh in seen:
            continue
        seen.add(mesh)
        primitives.extend(doc.list_primitives(mesh))
    return primitives


def merge_meshes(
    doc: Document,
    scene: Handle,
    nodes: Sequence[Handle],
    skin: Handle,
    config: Optional[RetargetConfig] = None,
    progress: bool = False,
) -> Optional[MergeResult]:
    """
    Join all mesh parts of ``nodes`` into a single skinned mesh.

    A node ``model`` carrying the skin, a mesh ``mesh`` and a material
    ``material`` are created. The atlases are packed from the parts'
    original materials before the joined primitive switches to the new
    material; the emissive factor and strength are only written when an
    emissive atlas is built. The old mesh nodes and meshes are released.
    Nodes bound to a skin other than ``skin`` stay as separate nodes.

    Args:
        doc: Document to modify
        scene: Scene receiving the merged node
        nodes: Candidate mesh nodes, in traversal order
        skin: Skin for the merged node
        config: Atlas and material settings
        progress: Show a progress bar while packing

    Returns:
        MergeResult, or None when there is no mesh to merge
    """
    config = config or RetargetConfig()
    parts = mergeable_nodes(doc, nodes, skin)
    primitives = collect_primitives(doc, parts)
    if not primitives:
        logger.warning("No mesh primitives to merge")
        return None

    roles = config.channel_roles
    atlas = pack_atlas(
        doc,
        primitives,
        roles,
        cell_pixel_size=config.cell_pixel_size,
        workers=config.atlas_workers,
        progress=progress,
    )

    material = doc.create_material('material', metallic_factor=MERGED_METALLIC_FACTOR)
    target = doc.material(material)
    for role, image in atlas.images.items():
        texture = doc.create_texture(f'atlas_{role.value}', encode_atlas(image), 'image/png')
        setattr(target, role.material_slot, TextureRef(texture=texture))
    if ChannelRole.EMISSIVE in atlas.images:
        target.emissive_factor = np.asarray(config.emissive_factor, dtype=np.float64)
        target.set_extension(EXT_EMISSIVE_STRENGTH, {'emissiveStrength': float(config.emissive_strength)})

    joined = join_primitives(primitives, material=material)
    mesh = doc.create_mesh('mesh', [joined])
    model = doc.create_node('model', mesh=mesh)
    doc.node(model).skin = skin
    doc.scene_add_child(scene, model)

    old_meshes = []
    for handle in parts:
        old_meshes.append(doc.node(handle).mesh)
        doc.dispose_node(handle, recursive=False)
    for old in dict.fromkeys(old_meshes):
        if old in doc.meshes and not doc.mesh_users(old):
            doc.dispose_mesh(old)

    logger.info(
        f"Merged {len(primitives)} primitives ({joined.vertex_count} vertices) "
        f"into one mesh, atlas {atlas.atlas_size}px"
    )
    return MergeResult(
        node=model,
        mesh=mesh,
        material=material,
        grid_side=atlas.grid_side,
        primitive_count=len(primitives),
    )


__all__ = ['MergeResult', 'mergeable_nodes', 'collect_primitives', 'merge_meshes']
