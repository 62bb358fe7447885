"""
Size and GPU memory statistics for a Document.
"""

import io
import logging
from typing import Any, Dict, List, Tuple

from PIL import Image

from .scene import Document

logger = logging.getLogger(__name__)


def human_file_size(num_bytes: float) -> str:
    """
    Format a byte count with 1024-based units and one decimal.

    Example:
        >>> human_file_size(1536)
        '1.5 KB'
    """
    units = ['B', 'KB', 'MB', 'GB', 'TB']
    value = float(num_bytes)
    for unit in units:
        if abs(value) < 1024 or unit == units[-1]:
            return f"{value:.1f} {unit}" if unit != 'B' else f"{int(value)} B"
        value /= 1024


def image_resolution(data: bytes) -> Tuple[int, int]:
    """Pixel (width, height) of an encoded image, (0, 0) if undecodable."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.size
    except (OSError, ValueError):
        return 0, 0


def _primitive_bytes(primitive) -> int:
    size = sum(a.nbytes for a in primitive.attributes.values())
    if primitive.indices is not None:
        size += primitive.indices.nbytes
    return size


def inspect_document(doc: Document) -> Dict[str, Any]:
    """
    Collect per-entity statistics.

    VRAM is estimated as RGBA8 with a full mip chain: ``w * h * 4 * 4 / 3``
    per texture.

    Returns:
        {'sizes': {'meshes', 'textures', 'vram'}, 'data': {'scenes',
        'meshes', 'materials', 'textures', 'skins', 'animations'}}
    """
    meshes: List[Dict[str, Any]] = []
    for mesh in doc.meshes.values():
        meshes.append({
            'name': mesh.name,
            'primitives': len(mesh.primitives),
            'vertices': sum(p.vertex_count for p in mesh.primitives),
            'attributes': sorted({a for p in mesh.primitives for a in p.attributes}),
            'instances': len(doc.mesh_users(mesh.handle)),
            'size': sum(_primitive_bytes(p) for p in mesh.primitives),
        })

    textures: List[Dict[str, Any]] = []
    for texture in doc.textures.values():
        width, height = image_resolution(texture.image)
        textures.append({
            'name': texture.name,
            'mimeType': texture.mime_type,
            'resolution': f"{width}x{height}",
            'size': len(texture.image),
            'gpuSize': int(width * height * 4 * 4 / 3),
        })

    animations = []
    for animation in doc.animations.values():
        duration = max((float(s.input.max()) for s in animation.samplers if s.input.size), default=0.0)
        animations.append({
            'name': animation.name,
            'channels': len(animation.channels),
            'samplers': len(animation.samplers),
            'duration': duration,
        })

    data = {
        'scenes': [
            {'name': s.name, 'rootNodes': len(s.children), 'nodes': len(doc.traverse(s.handle))}
            for s in doc.scenes.values()
        ],
        'meshes': meshes,
        'materials': [{'name': m.name, 'textures': len(m.texture_refs())} for m in doc.materials.values()],
        'textures': textures,
        'skins': [{'name': s.name, 'joints': len(s.joints)} for s in doc.skins.values()],
        'animations': animations,
    }
    sizes = {
        'meshes': sum(m['size'] for m in meshes),
        'textures': sum(t['size'] for t in textures),
        'vram': sum(t['gpuSize'] for t in textures),
    }
    return {'sizes': sizes, 'data': data}


__all__ = ['human_file_size', 'image_resolution', 'inspect_document']
