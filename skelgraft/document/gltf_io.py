"""
glTF 2.0 / GLB reading and writing.

Converts between pygltflib's index-based JSON model and the handle-based
``Document``. All column-major glTF matrices are flipped to row-major here
and nowhere else.

Reading supports GLB, ``.gltf`` with external ``.bin`` files and data-URI
buffers. Writing always produces a single, unpartitioned buffer: a GLB
binary chunk for ``.glb`` and an embedded data URI for ``.gltf``.
"""

import base64
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import unquote

import numpy as np
import pygltflib

from ..core.constants import ATTR_POSITION
from ..core.errors import GLTFReadError, GLTFWriteError
from ..core.types import Handle, TargetPath
from ..utils.transforms import decompose_matrix
from .scene import Document, Primitive, TextureRef

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


# =============================================================================
# Accessor Tables
# =============================================================================

COMPONENT_DTYPES = {
    pygltflib.BYTE: np.int8,
    pygltflib.UNSIGNED_BYTE: np.uint8,
    pygltflib.SHORT: np.int16,
    pygltflib.UNSIGNED_SHORT: np.uint16,
    pygltflib.UNSIGNED_INT: np.uint32,
    pygltflib.FLOAT: np.float32,
}

TYPE_WIDTHS = {
    pygltflib.SCALAR: 1,
    pygltflib.VEC2: 2,
    pygltflib.VEC3: 3,
    pygltflib.VEC4: 4,
    pygltflib.MAT2: 4,
    pygltflib.MAT3: 9,
    pygltflib.MAT4: 16,
}

WIDTH_TYPES = {1: pygltflib.SCALAR, 2: pygltflib.VEC2, 3: pygltflib.VEC3, 4: pygltflib.VEC4, 16: pygltflib.MAT4}

# glTF vertex semantics; the indexed ones take any set number
VERTEX_SEMANTIC = re.compile(r'^(POSITION|NORMAL|TANGENT|(TEXCOORD|COLOR|JOINTS|WEIGHTS)_\d+)$')


def is_vertex_semantic(name: str) -> bool:
    return VERTEX_SEMANTIC.match(name) is not None


def _attribute_indices(attributes) -> Dict[str, int]:
    """Semantic -> accessor index for a pygltflib ``Attributes`` object."""
    return {
        name: index for name, index in vars(attributes).items()
        if index is not None and is_vertex_semantic(name)
    }


# =============================================================================
# Reading
# =============================================================================

def _decode_data_uri(uri: str) -> bytes:
    header, _, payload = uri.partition(',')
    if not header.endswith(';base64'):
        raise GLTFReadError(f"Unsupported data URI encoding: {header}")
    return base64.b64decode(payload)


class _Reader:
    """Decodes accessors and images of one loaded GLTF2 object."""

    def __init__(self, gltf: pygltflib.GLTF2, base_dir: Path):
        self.gltf = gltf
        self.base_dir = base_dir
        self.buffers = [self._load_buffer(i, b) for i, b in enumerate(gltf.buffers)]

    def _load_buffer(self, index: int, buffer: pygltflib.Buffer) -> bytes:
        if buffer.uri is None:
            blob = self.gltf.binary_blob()
            if blob is None:
                raise GLTFReadError(f"Buffer {index} has no URI and the file has no binary chunk")
            return blob
        if buffer.uri.startswith('data:'):
            return _decode_data_uri(buffer.uri)
        path = self.base_dir / unquote(buffer.uri)
        try:
            return path.read_bytes()
        except OSError as e:
            raise GLTFReadError(f"Cannot read external buffer {path}: {e}") from e

    def view_bytes(self, view_index: int) -> Tuple[bytes, Optional[int]]:
        view = self.gltf.bufferViews[view_index]
        data = self.buffers[view.buffer]
        start = view.byteOffset or 0
        return data[start:start + view.byteLength], view.byteStride

    def _read_strided(self, view_index: int, byte_offset: int, dtype, width: int, count: int) -> np.ndarray:
        data, stride = self.view_bytes(view_index)
        element = np.dtype(dtype).itemsize * width
        if not stride or stride == element:
            array = np.frombuffer(data, dtype=dtype, count=count * width, offset=byte_offset)
            return array.reshape(count, width).copy()
        raw = np.frombuffer(data, dtype=np.uint8)
        rows = [raw[byte_offset + i * stride: byte_offset + i * stride + element] for i in range(count)]
        return np.stack(rows).view(dtype).reshape(count, width).copy()

    def accessor(self, index: int) -> np.ndarray:
        """Decode an accessor into a (count, width) array."""
        accessor = self.gltf.accessors[index]
        dtype = COMPONENT_DTYPES[accessor.componentType]
        width = TYPE_WIDTHS[accessor.type]

        if accessor.bufferView is None:
            array = np.zeros((accessor.count, width), dtype=dtype)
        else:
            array = self._read_strided(
                accessor.bufferView, accessor.byteOffset or 0, dtype, width, accessor.count
            )

        sparse = accessor.sparse
        if sparse is not None and sparse.count:
            indices = self._read_strided(
                sparse.indices.bufferView,
                sparse.indices.byteOffset or 0,
                COMPONENT_DTYPES[sparse.indices.componentType],
                1,
                sparse.count,
            ).reshape(-1)
            values = self._read_strided(
                sparse.values.bufferView, sparse.values.byteOffset or 0, dtype, width, sparse.count
            )
            array[indices] = values

        if accessor.normalized and dtype is not np.float32:
            info = np.iinfo(dtype)
            array = np.maximum(array.astype(np.float32) / info.max, -1.0).astype(np.float32)
        return array

    def image(self, index: int) -> Tuple[bytes, str]:
        image = self.gltf.images[index]
        mime_type = image.mimeType or 'image/png'
        if image.bufferView is not None:
            data, _ = self.view_bytes(image.bufferView)
            return bytes(data), mime_type
        if image.uri is None:
            raise GLTFReadError(f"Image {index} has neither a URI nor a buffer view")
        if image.uri.startswith('data:'):
            header = image.uri.split(',', 1)[0]
            if header.startswith('data:image/'):
                mime_type = header[5:].split(';')[0]
            return _decode_data_uri(image.uri), mime_type
        path = self.base_dir / unquote(image.uri)
        if path.suffix.lower() in ('.jpg', '.jpeg'):
            mime_type = 'image/jpeg'
        try:
            return path.read_bytes(), mime_type
        except OSError as e:
            raise GLTFReadError(f"Cannot read external image {path}: {e}") from e


def _texture_ref(info, textures: Dict[int, Handle], scale_attr: Optional[str] = None) -> Optional[TextureRef]:
    if info is None or info.index not in textures:
        return None
    ref = TextureRef(texture=textures[info.index], tex_coord=info.texCoord or 0)
    if scale_attr is not None and getattr(info, scale_attr, None) is not None:
        ref.scale = float(getattr(info, scale_attr))
    return ref


def _node_trs(node: pygltflib.Node) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    if node.matrix is not None:
        return decompose_matrix(np.asarray(node.matrix, dtype=np.float64).reshape(4, 4).T)
    translation = np.asarray(node.translation if node.translation is not None else [0, 0, 0], dtype=np.float64)
    rotation = np.asarray(node.rotation if node.rotation is not None else [0, 0, 0, 1], dtype=np.float64)
    scale = np.asarray(node.scale if node.scale is not None else [1, 1, 1], dtype=np.float64)
    return translation, rotation, scale


def gltf_to_document(gltf: pygltflib.GLTF2, base_dir: PathLike = '.', name: str = '') -> Document:
    """
    Convert a loaded pygltflib model into a Document.

    Args:
        gltf: Parsed glTF
        base_dir: Directory used to resolve relative buffer/image URIs
        name: Document name

    Returns:
        Document with fresh handles
    """
    reader = _Reader(gltf, Path(base_dir))
    doc = Document(name=name)

    # Textures (image + texture collapsed)
    textures: Dict[int, Handle] = {}
    for i, texture in enumerate(gltf.textures):
        if texture.source is None:
            logger.warning(f"Texture {i} has no image source, skipping")
            continue
        data, mime_type = reader.image(texture.source)
        image_name = gltf.images[texture.source].name
        handle = doc.create_texture(texture.name or image_name or f'texture_{i}', data, mime_type)
        if texture.sampler is not None:
            sampler = gltf.samplers[texture.sampler]
            doc.texture(handle).sampler = {
                k: getattr(sampler, k)
                for k in ('magFilter', 'minFilter', 'wrapS', 'wrapT')
                if getattr(sampler, k, None) is not None
            }
        textures[i] = handle

    # Materials
    materials: Dict[int, Handle] = {}
    for i, material in enumerate(gltf.materials):
        handle = doc.create_material(material.name or f'material_{i}')
        target = doc.material(handle)
        pbr = material.pbrMetallicRoughness
        if pbr is not None:
            if pbr.baseColorFactor is not None:
                target.base_color_factor = np.asarray(pbr.baseColorFactor, dtype=np.float64)
            if pbr.metallicFactor is not None:
                target.metallic_factor = float(pbr.metallicFactor)
            if pbr.roughnessFactor is not None:
                target.roughness_factor = float(pbr.roughnessFactor)
            target.base_color_texture = _texture_ref(pbr.baseColorTexture, textures)
            target.metallic_roughness_texture = _texture_ref(pbr.metallicRoughnessTexture, textures)
        target.normal_texture = _texture_ref(material.normalTexture, textures, 'scale')
        target.occlusion_texture = _texture_ref(material.occlusionTexture, textures, 'strength')
        target.emissive_texture = _texture_ref(material.emissiveTexture, textures)
        if material.emissiveFactor is not None:
            target.emissive_factor = np.asarray(material.emissiveFactor, dtype=np.float64)
        target.alpha_mode = material.alphaMode or 'OPAQUE'
        if target.alpha_mode == 'MASK':
            target.alpha_cutoff = material.alphaCutoff
        target.double_sided = bool(material.doubleSided)
        target.extensions = dict(material.extensions or {})
        materials[i] = handle

    # Meshes
    meshes: Dict[int, Handle] = {}
    for i, mesh in enumerate(gltf.meshes):
        primitives = []
        for primitive in mesh.primitives:
            attributes = {
                attr_name: reader.accessor(index)
                for attr_name, index in _attribute_indices(primitive.attributes).items()
            }
            if primitive.targets:
                logger.warning(f"Mesh '{mesh.name}': morph targets are not supported and were dropped")
            primitives.append(Primitive(
                attributes=attributes,
                indices=None if primitive.indices is None else reader.accessor(primitive.indices).reshape(-1),
                material=materials.get(primitive.material),
                mode=pygltflib.TRIANGLES if primitive.mode is None else primitive.mode,
            ))
        meshes[i] = doc.create_mesh(mesh.name or f'mesh_{i}', primitives)

    # Nodes
    nodes: Dict[int, Handle] = {}
    for i, node in enumerate(gltf.nodes):
        translation, rotation, scale = _node_trs(node)
        handle = doc.create_node(
            node.name or f'node_{i}',
            translation=translation,
            rotation=rotation,
            scale=scale,
            mesh=meshes.get(node.mesh),
        )
        doc.node(handle).extras = dict(node.extras or {})
        nodes[i] = handle
    for i, node in enumerate(gltf.nodes):
        for child in node.children or []:
            doc.add_child(nodes[i], nodes[child])

    # Skins
    for i, skin in enumerate(gltf.skins):
        joints = [nodes[j] for j in skin.joints]
        if skin.inverseBindMatrices is not None:
            # Column-major on disk
            ibm = reader.accessor(skin.inverseBindMatrices).reshape(-1, 4, 4).transpose(0, 2, 1)
        else:
            ibm = None
        handle = doc.create_skin(skin.name or f'skin_{i}', joints, ibm)
        if skin.skeleton is not None:
            doc.set_skeleton(handle, nodes[skin.skeleton])
        for node_index, node in enumerate(gltf.nodes):
            if node.skin == i:
                doc.node(nodes[node_index]).skin = handle

    # Scenes
    for i, scene in enumerate(gltf.scenes):
        handle = doc.create_scene(scene.name or f'scene_{i}')
        for root in scene.nodes or []:
            doc.scene_add_child(handle, nodes[root])
        if gltf.scene == i:
            doc.default_scene = handle

    # Animations
    for i, animation in enumerate(gltf.animations):
        handle = doc.create_animation(animation.name or f'animation_{i}')
        for channel in animation.channels:
            path = channel.target.path
            if path == 'weights':
                logger.warning(f"Animation '{animation.name}': dropping morph weights channel")
                continue
            sampler = animation.samplers[channel.sampler]
            target_path = TargetPath(path)
            doc.add_channel(
                handle,
                nodes.get(channel.target.node),
                target_path,
                reader.accessor(sampler.input),
                reader.accessor(sampler.output),
                sampler.interpolation or 'LINEAR',
            )

    logger.debug(f"Decoded {doc!r}")
    return doc


def read_document(path: PathLike) -> Document:
    """
    Read a ``.glb`` or ``.gltf`` file.

    Args:
        path: File to read

    Returns:
        Document named after the file stem

    Raises:
        GLTFReadError: If the file cannot be parsed
    """
    path = Path(path)
    if not path.exists():
        raise GLTFReadError(f"File not found: {path}")
    try:
        gltf = pygltflib.GLTF2().load(str(path))
    except Exception as e:
        raise GLTFReadError(f"Failed to parse {path}: {e}") from e
    if gltf is None:
        raise GLTFReadError(f"Failed to parse {path}")
    try:
        return gltf_to_document(gltf, path.parent, name=path.stem)
    except (IndexError, KeyError, ValueError) as e:
        raise GLTFReadError(f"Malformed glTF in {path}: {e}") from e


# =============================================================================
# Writing
# =============================================================================

class _BufferBuilder:
    """Accumulates one binary buffer plus its views and accessors."""

    def __init__(self, gltf: pygltflib.GLTF2):
        self.gltf = gltf
        self.blob = bytearray()

    def add_view(self, data: bytes, target: Optional[int] = None) -> int:
        # Every view starts 4-byte aligned
        self.blob.extend(b'\x00' * (-len(self.blob) % 4))
        self.gltf.bufferViews.append(pygltflib.BufferView(
            buffer=0,
            byteOffset=len(self.blob),
            byteLength=len(data),
            target=target,
        ))
        self.blob.extend(data)
        return len(self.gltf.bufferViews) - 1

    def add_accessor(
        self,
        array: np.ndarray,
        component_type: int,
        target: Optional[int] = None,
        bounds: bool = False,
    ) -> int:
        dtype = COMPONENT_DTYPES[component_type]
        array = np.ascontiguousarray(array, dtype=dtype)
        count = array.shape[0]
        width = 1 if array.ndim == 1 else int(np.prod(array.shape[1:]))
        view = self.add_view(array.tobytes(), target)

        accessor = pygltflib.Accessor(
            bufferView=view,
            componentType=component_type,
            count=count,
            type=WIDTH_TYPES[width],
        )
        if bounds and count:
            flat = array.reshape(count, width)
            accessor.min = flat.min(axis=0).tolist()
            accessor.max = flat.max(axis=0).tolist()
        self.gltf.accessors.append(accessor)
        return len(self.gltf.accessors) - 1


def _index_component(indices: np.ndarray) -> int:
    if indices.size and int(indices.max()) >= 0xFFFF:
        return pygltflib.UNSIGNED_INT
    return pygltflib.UNSIGNED_SHORT


def _joint_component(joints: np.ndarray) -> int:
    if joints.size and int(joints.max()) >= 256:
        return pygltflib.UNSIGNED_SHORT
    return pygltflib.UNSIGNED_BYTE


def _texture_info(ref: Optional[TextureRef], textures: Dict[Handle, int], cls=pygltflib.TextureInfo, **extra):
    if ref is None or ref.texture not in textures:
        return None
    return cls(index=textures[ref.texture], texCoord=ref.tex_coord or None, **extra)


def document_to_gltf(doc: Document) -> pygltflib.GLTF2:
    """
    Convert a Document into a pygltflib model with one binary blob.

    Only live entities are written; handles are compacted into glTF
    indices in table order.
    """
    gltf = pygltflib.GLTF2(asset=pygltflib.Asset(version='2.0', generator='skelgraft'))
    builder = _BufferBuilder(gltf)
    extensions_used = set()

    # Textures
    texture_index: Dict[Handle, int] = {}
    for handle, texture in doc.textures.items():
        view = builder.add_view(texture.image)
        gltf.images.append(pygltflib.Image(name=texture.name or None, bufferView=view, mimeType=texture.mime_type))
        sampler_index = None
        if texture.sampler:
            gltf.samplers.append(pygltflib.Sampler(**texture.sampler))
            sampler_index = len(gltf.samplers) - 1
        gltf.textures.append(pygltflib.Texture(
            name=texture.name or None, source=len(gltf.images) - 1, sampler=sampler_index
        ))
        texture_index[handle] = len(gltf.textures) - 1

    # Materials
    material_index: Dict[Handle, int] = {}
    for handle, material in doc.materials.items():
        pbr = pygltflib.PbrMetallicRoughness(
            baseColorFactor=[float(v) for v in material.base_color_factor],
            metallicFactor=float(material.metallic_factor),
            roughnessFactor=float(material.roughness_factor),
            baseColorTexture=_texture_info(material.base_color_texture, texture_index),
            metallicRoughnessTexture=_texture_info(material.metallic_roughness_texture, texture_index),
        )
        normal = material.normal_texture
        occlusion = material.occlusion_texture
        gltf.materials.append(pygltflib.Material(
            name=material.name or None,
            pbrMetallicRoughness=pbr,
            normalTexture=_texture_info(
                normal, texture_index, pygltflib.NormalMaterialTexture,
                scale=normal.scale if normal is not None else 1.0,
            ),
            occlusionTexture=_texture_info(
                occlusion, texture_index, pygltflib.OcclusionTextureInfo,
                strength=occlusion.scale if occlusion is not None else 1.0,
            ),
            emissiveTexture=_texture_info(material.emissive_texture, texture_index),
            emissiveFactor=[float(v) for v in material.emissive_factor],
            alphaMode=material.alpha_mode,
            alphaCutoff=material.alpha_cutoff if material.alpha_mode == 'MASK' else None,
            doubleSided=material.double_sided,
            extensions=dict(material.extensions),
        ))
        extensions_used.update(material.extensions)
        material_index[handle] = len(gltf.materials) - 1

    # Meshes
    mesh_index: Dict[Handle, int] = {}
    for handle, mesh in doc.meshes.items():
        primitives = []
        for primitive in mesh.primitives:
            attributes = pygltflib.Attributes()
            for attr_name, data in primitive.attributes.items():
                if not is_vertex_semantic(attr_name):
                    logger.warning(f"Mesh '{mesh.name}': attribute {attr_name} is not a vertex semantic, dropped")
                    continue
                if attr_name.startswith('JOINTS_'):
                    component = _joint_component(data)
                else:
                    component = pygltflib.FLOAT
                accessor = builder.add_accessor(
                    data, component, pygltflib.ARRAY_BUFFER, bounds=attr_name == ATTR_POSITION
                )
                setattr(attributes, attr_name, accessor)
            indices = None
            if primitive.indices is not None:
                flat = primitive.indices.reshape(-1)
                indices = builder.add_accessor(flat, _index_component(flat), pygltflib.ELEMENT_ARRAY_BUFFER)
            primitives.append(pygltflib.Primitive(
                attributes=attributes,
                indices=indices,
                material=material_index.get(primitive.material),
                mode=primitive.mode,
            ))
        gltf.meshes.append(pygltflib.Mesh(name=mesh.name or None, primitives=primitives))
        mesh_index[handle] = len(gltf.meshes) - 1

    # Nodes
    node_index = {handle: i for i, handle in enumerate(doc.nodes)}
    skin_index = {handle: i for i, handle in enumerate(doc.skins)}
    for handle, node in doc.nodes.items():
        gltf.nodes.append(pygltflib.Node(
            name=node.name or None,
            translation=[float(v) for v in node.translation],
            rotation=[float(v) for v in node.rotation],
            scale=[float(v) for v in node.scale],
            children=[node_index[c] for c in node.children],
            mesh=mesh_index.get(node.mesh),
            skin=skin_index.get(node.skin),
            extras=dict(node.extras),
        ))

    # Skins
    for handle, skin in doc.skins.items():
        ibm = None
        if skin.joints:
            # Row-major in memory, column-major on disk
            matrices = skin.inverse_bind_matrices.transpose(0, 2, 1).reshape(-1, 16)
            ibm = builder.add_accessor(matrices, pygltflib.FLOAT)
        gltf.skins.append(pygltflib.Skin(
            name=skin.name or None,
            joints=[node_index[j] for j in skin.joints],
            inverseBindMatrices=ibm,
            skeleton=node_index.get(skin.skeleton),
        ))

    # Scenes
    for handle, scene in doc.scenes.items():
        gltf.scenes.append(pygltflib.Scene(
            name=scene.name or None, nodes=[node_index[c] for c in scene.children]
        ))
    if doc.default_scene is not None:
        gltf.scene = list(doc.scenes).index(doc.default_scene)

    # Animations
    for handle, animation in doc.animations.items():
        channels = [c for c in animation.channels if c.target_node in node_index]
        if not channels:
            continue
        samplers: List[pygltflib.AnimationSampler] = []
        sampler_ids: Dict[int, int] = {}
        gltf_channels = []
        for channel in channels:
            key = id(channel.sampler)
            if key not in sampler_ids:
                sampler = channel.sampler
                samplers.append(pygltflib.AnimationSampler(
                    input=builder.add_accessor(sampler.input.reshape(-1), pygltflib.FLOAT, bounds=True),
                    output=builder.add_accessor(sampler.output, pygltflib.FLOAT),
                    interpolation=sampler.interpolation,
                ))
                sampler_ids[key] = len(samplers) - 1
            gltf_channels.append(pygltflib.AnimationChannel(
                sampler=sampler_ids[key],
                target=pygltflib.AnimationChannelTarget(
                    node=node_index[channel.target_node], path=channel.target_path.value
                ),
            ))
        gltf.animations.append(pygltflib.Animation(
            name=animation.name or None, channels=gltf_channels, samplers=samplers
        ))

    if extensions_used:
        gltf.extensionsUsed = sorted(extensions_used)
    gltf.buffers = [pygltflib.Buffer(byteLength=len(builder.blob))]
    gltf.set_binary_blob(bytes(builder.blob))
    return gltf


def to_glb_bytes(doc: Document) -> bytes:
    """Serialize a Document to GLB bytes."""
    try:
        return b''.join(document_to_gltf(doc).save_to_bytes())
    except (KeyError, ValueError, TypeError) as e:
        raise GLTFWriteError(f"Failed to serialize '{doc.name}': {e}") from e


def write_document(doc: Document, path: PathLike) -> int:
    """
    Write a Document to ``.glb`` (binary) or ``.gltf`` (embedded buffer).

    Args:
        doc: Document to write
        path: Output file; the extension picks the container

    Returns:
        Number of bytes written

    Raises:
        GLTFWriteError: If serialization or the write fails
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix.lower() == '.gltf':
            gltf = document_to_gltf(doc)
            gltf.convert_buffers(pygltflib.BufferFormat.DATAURI)
            gltf.save_json(str(path))
        else:
            path.write_bytes(to_glb_bytes(doc))
    except OSError as e:
        raise GLTFWriteError(f"Cannot write {path}: {e}") from e
    size = path.stat().st_size
    logger.info(f"Wrote {path} ({size} bytes)")
    return size


__all__ = [
    'read_document',
    'write_document',
    'to_glb_bytes',
    'gltf_to_document',
    'document_to_gltf',
]
