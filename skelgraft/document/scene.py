"""
Arena-based scene document.

Every entity (node, scene, mesh, material, texture, skin, animation) lives
in a ``Document`` and is addressed by a stable integer handle. Relations
between entities (parent, children, joints, channel targets, material and
texture references) are stored as handles, never as object references, so
there are no ownership cycles and releasing an entity is a matter of
clearing the handles that point at it.

Primitives, channels and samplers are owned by their mesh or animation and
are manipulated as plain objects.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence

import numpy as np

from ..core.constants import ATTR_POSITION, MODE_TRIANGLES
from ..core.errors import DocumentError
from ..core.types import Handle, Matrix4, TargetPath
from ..utils.transforms import compose_matrix, decompose_matrix, chain_matrices

logger = logging.getLogger(__name__)


# =============================================================================
# Entities
# =============================================================================

def _zeros3() -> np.ndarray:
    return np.zeros(3, dtype=np.float64)


def _ones3() -> np.ndarray:
    return np.ones(3, dtype=np.float64)


def _identity_rotation() -> np.ndarray:
    return np.array([0.0, 0.0, 0.0, 1.0], dtype=np.float64)


@dataclass(eq=False)
class Node:
    """Scene node with a local TRS transform (rotation in glTF [x, y, z, w])."""
    handle: Handle
    name: str = ''
    translation: np.ndarray = field(default_factory=_zeros3)
    rotation: np.ndarray = field(default_factory=_identity_rotation)
    scale: np.ndarray = field(default_factory=_ones3)
    children: List[Handle] = field(default_factory=list)
    parent: Optional[Handle] = None
    mesh: Optional[Handle] = None
    skin: Optional[Handle] = None
    extras: Dict[str, Any] = field(default_factory=dict)


@dataclass(eq=False)
class Scene:
    handle: Handle
    name: str = ''
    children: List[Handle] = field(default_factory=list)


@dataclass(eq=False)
class Primitive:
    """
    Vertex attribute buffers of one draw call.

    Attributes are (N, C) arrays keyed by glTF semantic name.
    """
    attributes: Dict[str, np.ndarray] = field(default_factory=dict)
    indices: Optional[np.ndarray] = None
    material: Optional[Handle] = None
    mode: int = MODE_TRIANGLES

    @property
    def vertex_count(self) -> int:
        position = self.attributes.get(ATTR_POSITION)
        return 0 if position is None else int(position.shape[0])

    def get_attribute(self, name: str) -> Optional[np.ndarray]:
        return self.attributes.get(name)

    def set_attribute(self, name: str, data: Optional[np.ndarray]) -> None:
        """
        Set or clear a named vertex attribute.

        Raises:
            ValueError: If the buffer length disagrees with the vertex count
        """
        if data is None:
            self.attributes.pop(name, None)
            return
        data = np.asarray(data)
        if data.ndim == 1:
            data = data[:, None]
        if name != ATTR_POSITION and ATTR_POSITION in self.attributes and data.shape[0] != self.vertex_count:
            raise ValueError(
                f"Attribute {name} has {data.shape[0]} elements, primitive has {self.vertex_count} vertices"
            )
        self.attributes[name] = data

    def list_attributes(self) -> List[str]:
        return list(self.attributes.keys())

    def copy(self) -> 'Primitive':
        return Primitive(
            attributes={k: v.copy() for k, v in self.attributes.items()},
            indices=None if self.indices is None else self.indices.copy(),
            material=self.material,
            mode=self.mode,
        )


@dataclass(eq=False)
class Mesh:
    handle: Handle
    name: str = ''
    primitives: List[Primitive] = field(default_factory=list)


@dataclass(eq=False)
class TextureRef:
    """Material slot reference to a texture and the UV set sampling it."""
    texture: Handle
    tex_coord: int = 0
    # normalTexture.scale / occlusionTexture.strength
    scale: float = 1.0


@dataclass(eq=False)
class Material:
    handle: Handle
    name: str = ''
    base_color_factor: np.ndarray = field(default_factory=lambda: np.ones(4, dtype=np.float64))
    metallic_factor: float = 1.0
    roughness_factor: float = 1.0
    emissive_factor: np.ndarray = field(default_factory=_zeros3)
    base_color_texture: Optional[TextureRef] = None
    metallic_roughness_texture: Optional[TextureRef] = None
    normal_texture: Optional[TextureRef] = None
    occlusion_texture: Optional[TextureRef] = None
    emissive_texture: Optional[TextureRef] = None
    alpha_mode: str = 'OPAQUE'
    alpha_cutoff: Optional[float] = None
    double_sided: bool = False
    extensions: Dict[str, Any] = field(default_factory=dict)

    TEXTURE_SLOTS = (
        'base_color_texture',
        'metallic_roughness_texture',
        'normal_texture',
        'occlusion_texture',
        'emissive_texture',
    )

    def texture_refs(self) -> List[TextureRef]:
        refs = (getattr(self, slot) for slot in self.TEXTURE_SLOTS)
        return [ref for ref in refs if ref is not None]

    def set_extension(self, name: str, payload: Optional[Dict[str, Any]]) -> None:
        if payload is None:
            self.extensions.pop(name, None)
        else:
            self.extensions[name] = payload


@dataclass(eq=False)
class Texture:
    """A glTF texture collapsed together with its image payload."""
    handle: Handle
    name: str = ''
    image: bytes = b''
    mime_type: str = 'image/png'
    sampler: Dict[str, int] = field(default_factory=dict)


@dataclass(eq=False)
class Skin:
    """
    Ordered joint handles plus index-aligned inverse bind matrices.

    Invariant: ``len(inverse_bind_matrices) == len(joints)``.
    """
    handle: Handle
    name: str = ''
    joints: List[Handle] = field(default_factory=list)
    inverse_bind_matrices: np.ndarray = field(default_factory=lambda: np.zeros((0, 4, 4)))
    skeleton: Optional[Handle] = None


@dataclass(eq=False)
class Sampler:
    """Keyframe times and values; rows of ``output`` align with ``input``."""
    input: np.ndarray
    output: np.ndarray
    interpolation: str = 'LINEAR'


@dataclass(eq=False)
class Channel:
    target_node: Optional[Handle]
    target_path: TargetPath
    sampler: Sampler


@dataclass(eq=False)
class Animation:
    handle: Handle
    name: str = ''
    channels: List[Channel] = field(default_factory=list)
    samplers: List[Sampler] = field(default_factory=list)


# =============================================================================
# Document
# =============================================================================

class Document:
    """
    In-memory glTF scene document.

    Entity tables are insertion-ordered dicts keyed by handle; handles are
    never reused within one document.
    """

    def __init__(self, name: str = ''):
        self.name = name
        self.nodes: Dict[Handle, Node] = {}
        self.scenes: Dict[Handle, Scene] = {}
        self.meshes: Dict[Handle, Mesh] = {}
        self.materials: Dict[Handle, Material] = {}
        self.textures: Dict[Handle, Texture] = {}
        self.skins: Dict[Handle, Skin] = {}
        self.animations: Dict[Handle, Animation] = {}
        self.default_scene: Optional[Handle] = None
        self._next_handle = 0

    def allocate_handle(self) -> Handle:
        handle = self._next_handle
        self._next_handle += 1
        return handle

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    @staticmethod
    def _get(table: Dict[Handle, Any], kind: str, handle: Handle):
        try:
            return table[handle]
        except KeyError:
            raise DocumentError(kind, handle) from None

    def node(self, handle: Handle) -> Node:
        return self._get(self.nodes, 'node', handle)

    def scene(self, handle: Handle) -> Scene:
        return self._get(self.scenes, 'scene', handle)

    def mesh(self, handle: Handle) -> Mesh:
        return self._get(self.meshes, 'mesh', handle)

    def material(self, handle: Handle) -> Material:
        return self._get(self.materials, 'material', handle)

    def texture(self, handle: Handle) -> Texture:
        return self._get(self.textures, 'texture', handle)

    def skin(self, handle: Handle) -> Skin:
        return self._get(self.skins, 'skin', handle)

    def animation(self, handle: Handle) -> Animation:
        return self._get(self.animations, 'animation', handle)

    def has_node(self, handle: Optional[Handle]) -> bool:
        return handle is not None and handle in self.nodes

    def list_scenes(self) -> List[Handle]:
        return list(self.scenes)

    def list_skins(self) -> List[Handle]:
        return list(self.skins)

    def list_animations(self) -> List[Handle]:
        return list(self.animations)

    def find_nodes(self, name: str) -> List[Handle]:
        return [h for h, n in self.nodes.items() if n.name == name]

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_node(
        self,
        name: str = '',
        translation: Optional[Sequence[float]] = None,
        rotation: Optional[Sequence[float]] = None,
        scale: Optional[Sequence[float]] = None,
        mesh: Optional[Handle] = None,
    ) -> Handle:
        node = Node(handle=self.allocate_handle(), name=name, mesh=mesh)
        if translation is not None:
            node.translation = np.asarray(translation, dtype=np.float64).copy()
        if rotation is not None:
            node.rotation = np.asarray(rotation, dtype=np.float64).copy()
        if scale is not None:
            node.scale = np.asarray(scale, dtype=np.float64).copy()
        self.nodes[node.handle] = node
        return node.handle

    def create_scene(self, name: str = '') -> Handle:
        scene = Scene(handle=self.allocate_handle(), name=name)
        self.scenes[scene.handle] = scene
        if self.default_scene is None:
            self.default_scene = scene.handle
        return scene.handle

    def create_mesh(self, name: str = '', primitives: Optional[List[Primitive]] = None) -> Handle:
        mesh = Mesh(handle=self.allocate_handle(), name=name, primitives=list(primitives or []))
        self.meshes[mesh.handle] = mesh
        return mesh.handle

    def create_material(self, name: str = '', **fields) -> Handle:
        material = Material(handle=self.allocate_handle(), name=name, **fields)
        self.materials[material.handle] = material
        return material.handle

    def create_texture(self, name: str = '', image: bytes = b'', mime_type: str = 'image/png') -> Handle:
        texture = Texture(handle=self.allocate_handle(), name=name, image=image, mime_type=mime_type)
        self.textures[texture.handle] = texture
        return texture.handle

    def create_skin(
        self,
        name: str = '',
        joints: Optional[Sequence[Handle]] = None,
        inverse_bind_matrices: Optional[np.ndarray] = None,
    ) -> Handle:
        joints = list(joints or [])
        if inverse_bind_matrices is None:
            inverse_bind_matrices = np.tile(np.eye(4), (len(joints), 1, 1))
        skin = Skin(handle=self.allocate_handle(), name=name, joints=joints)
        self.skins[skin.handle] = skin
        self.set_inverse_bind_matrices(skin.handle, inverse_bind_matrices)
        return skin.handle

    def create_animation(self, name: str = '') -> Handle:
        animation = Animation(handle=self.allocate_handle(), name=name)
        self.animations[animation.handle] = animation
        return animation.handle

    # -------------------------------------------------------------------------
    # Scene graph
    # -------------------------------------------------------------------------

    def get_parent(self, handle: Handle) -> Optional[Handle]:
        return self.node(handle).parent

    def list_children(self, handle: Handle) -> List[Handle]:
        return list(self.node(handle).children)

    def list_ancestors(self, handle: Handle) -> List[Handle]:
        """Parent chain of a node, nearest first."""
        ancestors = []
        current = self.node(handle).parent
        while current is not None:
            ancestors.append(current)
            current = self.node(current).parent
        return ancestors

    def add_child(self, parent: Handle, child: Handle) -> None:
        """
        Attach ``child`` under ``parent``, detaching it from wherever it was.

        Raises:
            ValueError: If the move would create a cycle
        """
        if parent == child or child in self.list_ancestors(parent):
            raise ValueError(f"Cannot parent node {child} under its own descendant {parent}")
        self.detach(child)
        self.node(parent).children.append(child)
        self.node(child).parent = parent

    def remove_child(self, parent: Handle, child: Handle) -> None:
        parent_node = self.node(parent)
        if child in parent_node.children:
            parent_node.children.remove(child)
            self.node(child).parent = None

    def scene_add_child(self, scene: Handle, child: Handle) -> None:
        self.detach(child)
        self.scene(scene).children.append(child)

    def scene_remove_child(self, scene: Handle, child: Handle) -> None:
        scene_obj = self.scene(scene)
        if child in scene_obj.children:
            scene_obj.children.remove(child)

    def detach(self, handle: Handle) -> None:
        """Remove a node from its parent node or from any scene root list."""
        node = self.node(handle)
        if node.parent is not None:
            self.remove_child(node.parent, handle)
            return
        for scene in self.scenes.values():
            if handle in scene.children:
                scene.children.remove(handle)

    def find_scene(self, handle: Handle) -> Optional[Handle]:
        """Scene whose root list contains the node's tree root."""
        ancestors = self.list_ancestors(handle)
        root = ancestors[-1] if ancestors else handle
        for scene in self.scenes.values():
            if root in scene.children:
                return scene.handle
        return None

    def traverse(self, scene: Handle) -> List[Handle]:
        """Depth-first, pre-order node handles of a scene, children in listed order."""
        order = []
        stack = list(reversed(self.scene(scene).children))
        while stack:
            handle = stack.pop()
            order.append(handle)
            stack.extend(reversed(self.node(handle).children))
        return order

    def iter_subtree(self, handle: Handle) -> Iterator[Handle]:
        stack = [handle]
        while stack:
            current = stack.pop()
            yield current
            stack.extend(reversed(self.node(current).children))

    # -------------------------------------------------------------------------
    # Transforms
    # -------------------------------------------------------------------------

    def get_local_matrix(self, handle: Handle) -> Matrix4:
        node = self.node(handle)
        return compose_matrix(node.translation, node.rotation, node.scale)

    def set_matrix(self, handle: Handle, matrix: Matrix4) -> None:
        node = self.node(handle)
        node.translation, node.rotation, node.scale = decompose_matrix(matrix)

    def clear_transform(self, handle: Handle) -> None:
        node = self.node(handle)
        node.translation = _zeros3()
        node.rotation = _identity_rotation()
        node.scale = _ones3()

    def get_world_matrix(self, handle: Handle) -> Matrix4:
        chain = list(reversed(self.list_ancestors(handle))) + [handle]
        return chain_matrices([self.get_local_matrix(h) for h in chain])

    # -------------------------------------------------------------------------
    # Release
    # -------------------------------------------------------------------------

    def dispose_node(self, handle: Handle, recursive: bool = True) -> int:
        """
        Release a node and every reference to it.

        Args:
            handle: Node to release
            recursive: Also release the node's subtree; otherwise children
                are left orphaned (unreachable until re-attached or pruned)

        Returns:
            Number of nodes released
        """
        node = self.node(handle)
        released = 0
        if recursive:
            for child in list(node.children):
                released += self.dispose_node(child, recursive=True)
        else:
            for child in node.children:
                self.node(child).parent = None
            node.children = []

        self.detach(handle)
        for skin in self.skins.values():
            if handle in skin.joints:
                self.remove_joint(skin.handle, handle)
            if skin.skeleton == handle:
                skin.skeleton = None
        for animation in self.animations.values():
            for channel in animation.channels:
                if channel.target_node == handle:
                    channel.target_node = None

        del self.nodes[handle]
        return released + 1

    def dispose_scene(self, handle: Handle) -> None:
        self.scene(handle)
        del self.scenes[handle]
        if self.default_scene == handle:
            self.default_scene = next(iter(self.scenes), None)

    def dispose_mesh(self, handle: Handle) -> None:
        self.mesh(handle)
        for node in self.nodes.values():
            if node.mesh == handle:
                node.mesh = None
        del self.meshes[handle]

    def dispose_material(self, handle: Handle) -> None:
        self.material(handle)
        for mesh in self.meshes.values():
            for primitive in mesh.primitives:
                if primitive.material == handle:
                    primitive.material = None
        del self.materials[handle]

    def dispose_texture(self, handle: Handle) -> None:
        self.texture(handle)
        for material in self.materials.values():
            for slot in Material.TEXTURE_SLOTS:
                ref = getattr(material, slot)
                if ref is not None and ref.texture == handle:
                    setattr(material, slot, None)
        del self.textures[handle]

    def dispose_skin(self, handle: Handle) -> None:
        self.skin(handle)
        for node in self.nodes.values():
            if node.skin == handle:
                node.skin = None
        del self.skins[handle]

    # -------------------------------------------------------------------------
    # Meshes
    # -------------------------------------------------------------------------

    def list_primitives(self, mesh: Handle) -> List[Primitive]:
        return list(self.mesh(mesh).primitives)

    def vertex_count(self, mesh: Handle) -> int:
        return sum(p.vertex_count for p in self.mesh(mesh).primitives)

    def mesh_users(self, mesh: Handle) -> List[Handle]:
        return [h for h, n in self.nodes.items() if n.mesh == mesh]

    def clone_mesh(self, mesh: Handle) -> Handle:
        source = self.mesh(mesh)
        return self.create_mesh(source.name, [p.copy() for p in source.primitives])

    # -------------------------------------------------------------------------
    # Skins
    # -------------------------------------------------------------------------

    def get_skeleton(self, skin: Handle) -> Optional[Handle]:
        return self.skin(skin).skeleton

    def set_skeleton(self, skin: Handle, node: Optional[Handle]) -> None:
        if node is not None:
            self.node(node)
        self.skin(skin).skeleton = node

    def list_joints(self, skin: Handle) -> List[Handle]:
        return list(self.skin(skin).joints)

    def add_joint(self, skin: Handle, node: Handle, inverse_bind_matrix: Optional[Matrix4] = None) -> int:
        skin_obj = self.skin(skin)
        self.node(node)
        matrix = np.eye(4) if inverse_bind_matrix is None else np.asarray(inverse_bind_matrix, dtype=np.float64)
        skin_obj.joints.append(node)
        skin_obj.inverse_bind_matrices = np.concatenate(
            [skin_obj.inverse_bind_matrices, matrix[None]], axis=0
        )
        return len(skin_obj.joints) - 1

    def remove_joint(self, skin: Handle, node: Handle) -> None:
        """Remove a joint and its inverse bind matrix; later indices shift down."""
        skin_obj = self.skin(skin)
        index = skin_obj.joints.index(node)
        del skin_obj.joints[index]
        skin_obj.inverse_bind_matrices = np.delete(skin_obj.inverse_bind_matrices, index, axis=0)

    def get_inverse_bind_matrices(self, skin: Handle) -> np.ndarray:
        return self.skin(skin).inverse_bind_matrices.copy()

    def set_inverse_bind_matrices(self, skin: Handle, matrices: np.ndarray) -> None:
        skin_obj = self.skin(skin)
        matrices = np.asarray(matrices, dtype=np.float64).reshape(-1, 4, 4)
        if matrices.shape[0] != len(skin_obj.joints):
            raise ValueError(
                f"Skin '{skin_obj.name}' has {len(skin_obj.joints)} joints "
                f"but {matrices.shape[0]} inverse bind matrices"
            )
        skin_obj.inverse_bind_matrices = matrices

    # -------------------------------------------------------------------------
    # Animations
    # -------------------------------------------------------------------------

    def list_channels(self, animation: Handle) -> List[Channel]:
        return list(self.animation(animation).channels)

    def list_samplers(self, animation: Handle) -> List[Sampler]:
        return list(self.animation(animation).samplers)

    def add_channel(
        self,
        animation: Handle,
        target_node: Handle,
        target_path: TargetPath,
        times: np.ndarray,
        values: np.ndarray,
        interpolation: str = 'LINEAR',
    ) -> Channel:
        animation_obj = self.animation(animation)
        sampler = Sampler(
            input=np.asarray(times, dtype=np.float32).reshape(-1),
            output=np.asarray(values, dtype=np.float32).reshape(-1, target_path.components),
            interpolation=interpolation,
        )
        channel = Channel(target_node=target_node, target_path=target_path, sampler=sampler)
        animation_obj.samplers.append(sampler)
        animation_obj.channels.append(channel)
        return channel

    def remove_channel(self, animation: Handle, channel: Channel) -> None:
        self.animation(animation).channels.remove(channel)

    def remove_sampler(self, animation: Handle, sampler: Sampler) -> None:
        self.animation(animation).samplers.remove(sampler)

    def dispose_animation(self, handle: Handle) -> None:
        self.animation(handle)
        del self.animations[handle]

    # -------------------------------------------------------------------------
    # Misc
    # -------------------------------------------------------------------------

    def copy(self) -> 'Document':
        return copy.deepcopy(self)

    def __repr__(self) -> str:
        return (
            f"Document(name={self.name!r}, scenes={len(self.scenes)}, nodes={len(self.nodes)}, "
            f"meshes={len(self.meshes)}, materials={len(self.materials)}, "
            f"textures={len(self.textures)}, skins={len(self.skins)}, "
            f"animations={len(self.animations)})"
        )
