"""
Whole-document transforms: merging, pruning, mesh baking and joining.

These are the document-level operations the retargeting stages lean on;
none of them know anything about skeletons or atlases.
"""

import copy
import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
import trimesh

from ..core.constants import (
    ATTR_POSITION,
    ATTR_NORMAL,
    ATTR_TANGENT,
    ATTR_WEIGHTS_0,
    MODE_TRIANGLES,
)
from ..core.types import Handle, Matrix4
from .scene import Document, Material, Primitive

logger = logging.getLogger(__name__)


# =============================================================================
# Merge
# =============================================================================

HandleMap = Dict[str, Dict[Handle, Handle]]


def merge_documents(target: Document, source: Document) -> HandleMap:
    """
    Append every entity of ``source`` to ``target``.

    Entities are deep-copied and given fresh handles in ``target``; all
    internal references are remapped. Source scenes become additional
    scenes of ``target`` (the default scene of ``target`` is unchanged).

    Args:
        target: Document receiving the entities (mutated)
        source: Document to copy from (unchanged)

    Returns:
        Per-kind mapping {kind: {source_handle: target_handle}}
    """
    tables = ('nodes', 'scenes', 'meshes', 'materials', 'textures', 'skins', 'animations')
    handle_map: HandleMap = {
        kind: {h: target.allocate_handle() for h in getattr(source, kind)} for kind in tables
    }
    nodes, meshes = handle_map['nodes'], handle_map['meshes']
    materials, textures = handle_map['materials'], handle_map['textures']
    skins = handle_map['skins']

    def remap(table: Dict[Handle, Handle], handle: Optional[Handle]) -> Optional[Handle]:
        return None if handle is None else table.get(handle)

    for old, texture in source.textures.items():
        new = copy.deepcopy(texture)
        new.handle = textures[old]
        target.textures[new.handle] = new

    for old, material in source.materials.items():
        new = copy.deepcopy(material)
        new.handle = materials[old]
        for slot in Material.TEXTURE_SLOTS:
            ref = getattr(new, slot)
            if ref is not None:
                ref.texture = textures[ref.texture]
        target.materials[new.handle] = new

    for old, mesh in source.meshes.items():
        new = copy.deepcopy(mesh)
        new.handle = meshes[old]
        for primitive in new.primitives:
            primitive.material = remap(materials, primitive.material)
        target.meshes[new.handle] = new

    for old, node in source.nodes.items():
        new = copy.deepcopy(node)
        new.handle = nodes[old]
        new.children = [nodes[c] for c in node.children]
        new.parent = remap(nodes, node.parent)
        new.mesh = remap(meshes, node.mesh)
        new.skin = remap(skins, node.skin)
        target.nodes[new.handle] = new

    for old, skin in source.skins.items():
        new = copy.deepcopy(skin)
        new.handle = skins[old]
        new.joints = [nodes[j] for j in skin.joints]
        new.skeleton = remap(nodes, skin.skeleton)
        target.skins[new.handle] = new

    for old, scene in source.scenes.items():
        new = copy.deepcopy(scene)
        new.handle = handle_map['scenes'][old]
        new.children = [nodes[c] for c in scene.children]
        target.scenes[new.handle] = new
        if target.default_scene is None:
            target.default_scene = new.handle

    for old, animation in source.animations.items():
        new = copy.deepcopy(animation)
        new.handle = handle_map['animations'][old]
        for channel in new.channels:
            channel.target_node = remap(nodes, channel.target_node)
        target.animations[new.handle] = new

    logger.debug(
        f"Merged '{source.name}' into '{target.name}': "
        + ", ".join(f"{len(v)} {k}" for k, v in handle_map.items() if v)
    )
    return handle_map


# =============================================================================
# Prune
# =============================================================================

def _reachable_nodes(doc: Document) -> set:
    reachable = set()
    for scene in doc.scenes:
        reachable.update(doc.traverse(scene))
    return reachable


def prune(doc: Document) -> Dict[str, int]:
    """
    Remove entities that nothing in the scene graph uses.

    Order matters: skins are judged against reachable nodes before the
    unreachable nodes are released, so joints of a used skin survive even
    when they hang outside every scene.

    Args:
        doc: Document to prune in place

    Returns:
        Counts of released entities per kind
    """
    counts = {k: 0 for k in ('skins', 'nodes', 'channels', 'samplers', 'animations',
                             'meshes', 'materials', 'textures')}

    reachable = _reachable_nodes(doc)

    for handle in [h for h in doc.skins if not any(doc.nodes[n].skin == h for n in reachable)]:
        doc.dispose_skin(handle)
        counts['skins'] += 1

    joints = {j for skin in doc.skins.values() for j in skin.joints}
    skeletons = {skin.skeleton for skin in doc.skins.values() if skin.skeleton is not None}
    keep = reachable | joints | skeletons
    for handle in [h for h in doc.nodes if h not in keep]:
        doc.dispose_node(handle, recursive=False)
        counts['nodes'] += 1

    for handle in list(doc.animations):
        animation = doc.animations[handle]
        for channel in list(animation.channels):
            if not doc.has_node(channel.target_node):
                doc.remove_channel(handle, channel)
                counts['channels'] += 1
        used = {id(c.sampler) for c in animation.channels}
        for sampler in list(animation.samplers):
            if id(sampler) not in used:
                doc.remove_sampler(handle, sampler)
                counts['samplers'] += 1
        if not animation.channels:
            doc.dispose_animation(handle)
            counts['animations'] += 1

    used_meshes = {n.mesh for n in doc.nodes.values() if n.mesh is not None}
    for handle in [h for h in doc.meshes if h not in used_meshes]:
        doc.dispose_mesh(handle)
        counts['meshes'] += 1

    used_materials = {
        p.material for m in doc.meshes.values() for p in m.primitives if p.material is not None
    }
    for handle in [h for h in doc.materials if h not in used_materials]:
        doc.dispose_material(handle)
        counts['materials'] += 1

    used_textures = {ref.texture for m in doc.materials.values() for ref in m.texture_refs()}
    for handle in [h for h in doc.textures if h not in used_textures]:
        doc.dispose_texture(handle)
        counts['textures'] += 1

    released = {k: v for k, v in counts.items() if v}
    if released:
        logger.info("Pruned " + ", ".join(f"{v} {k}" for k, v in released.items()))
    return counts


# =============================================================================
# Geometry
# =============================================================================

def transform_primitive(primitive: Primitive, matrix: Matrix4) -> None:
    """
    Bake an affine transform into a primitive's vertex data.

    POSITION gets the full transform, NORMAL the inverse-transpose of the
    linear part (re-normalized) and TANGENT the linear part with its w
    (handedness) component kept.

    Args:
        primitive: Primitive modified in place
        matrix: (4, 4) transform
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    linear = np.eye(4)
    linear[:3, :3] = matrix[:3, :3]

    positions = primitive.get_attribute(ATTR_POSITION)
    if positions is not None:
        baked = trimesh.transform_points(positions.astype(np.float64), matrix)
        primitive.set_attribute(ATTR_POSITION, baked.astype(np.float32))

    normals = primitive.get_attribute(ATTR_NORMAL)
    if normals is not None:
        det = np.linalg.det(matrix[:3, :3])
        if abs(det) > 1e-12:
            normal_matrix = np.eye(4)
            normal_matrix[:3, :3] = np.linalg.inv(matrix[:3, :3]).T
            baked = trimesh.transform_points(normals.astype(np.float64), normal_matrix, translate=False)
            primitive.set_attribute(ATTR_NORMAL, trimesh.util.unitize(baked).astype(np.float32))
        else:
            logger.warning("Singular transform, normals left unchanged")

    tangents = primitive.get_attribute(ATTR_TANGENT)
    if tangents is not None:
        baked = trimesh.transform_points(tangents[:, :3].astype(np.float64), linear, translate=False)
        result = tangents.astype(np.float32).copy()
        result[:, :3] = trimesh.util.unitize(baked)
        primitive.set_attribute(ATTR_TANGENT, result)


def transform_mesh(doc: Document, mesh: Handle, matrix: Matrix4) -> None:
    """Bake a transform into every primitive of a mesh."""
    for primitive in doc.mesh(mesh).primitives:
        transform_primitive(primitive, matrix)


# =============================================================================
# Join
# =============================================================================

def _fill_value(name: str, count: int, width: int, dtype) -> np.ndarray:
    fill = np.zeros((count, width), dtype=dtype)
    if name == ATTR_WEIGHTS_0:
        # Bind to joint 0 rather than leaving an all-zero weight set
        fill[:, 0] = 1.0
    elif name.startswith('COLOR_'):
        fill[:] = 1.0
    return fill


def join_primitives(
    primitives: Sequence[Primitive],
    material: Optional[Handle] = None,
) -> Primitive:
    """
    Concatenate triangle primitives into one.

    The joined primitive carries the union of the inputs' attributes;
    primitives lacking an attribute get a filler (zeros, or weight 1 on
    joint 0 for WEIGHTS_0, or white for COLOR_n). Non-indexed primitives
    get sequential indices.

    Args:
        primitives: Primitives in join order
        material: Material for the result (defaults to the first input's)

    Returns:
        New primitive; inputs are not modified

    Raises:
        ValueError: If the list is empty, a primitive is not a triangle
            list or an attribute has inconsistent widths
    """
    if not primitives:
        raise ValueError("join_primitives needs at least one primitive")
    for primitive in primitives:
        if primitive.mode != MODE_TRIANGLES:
            raise ValueError(f"Only triangle primitives can be joined, got mode {primitive.mode}")

    names: List[str] = []
    for primitive in primitives:
        for name in primitive.attributes:
            if name not in names:
                names.append(name)

    attributes = {}
    for name in names:
        present = [p.attributes[name] for p in primitives if name in p.attributes]
        widths = {a.shape[1] for a in present}
        if len(widths) != 1:
            raise ValueError(f"Attribute {name} has inconsistent widths {sorted(widths)}")
        width = widths.pop()
        dtype = np.uint16 if name.startswith('JOINTS_') else np.float32

        parts = []
        for primitive in primitives:
            data = primitive.attributes.get(name)
            if data is None:
                logger.debug(f"Filling missing {name} for {primitive.vertex_count} vertices")
                data = _fill_value(name, primitive.vertex_count, width, dtype)
            parts.append(data.astype(dtype))
        attributes[name] = np.concatenate(parts, axis=0)

    indices = []
    offset = 0
    for primitive in primitives:
        count = primitive.vertex_count
        if primitive.indices is None:
            local = np.arange(count, dtype=np.uint32)
        else:
            local = primitive.indices.astype(np.uint32).reshape(-1)
        indices.append(local + offset)
        offset += count

    return Primitive(
        attributes=attributes,
        indices=np.concatenate(indices),
        material=primitives[0].material if material is None else material,
        mode=MODE_TRIANGLES,
    )


__all__ = [
    'HandleMap',
    'merge_documents',
    'prune',
    'transform_primitive',
    'transform_mesh',
    'join_primitives',
]
