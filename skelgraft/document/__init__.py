"""
Scene document model and glTF I/O.

Includes:
- Document: arena of nodes, meshes, materials, textures, skins, animations
- glTF/GLB reading and writing via pygltflib
- Document-level transforms (merge, prune, bake, join)
- Size and VRAM inspection
"""

from .scene import (
    Document,
    Node,
    Scene,
    Mesh,
    Primitive,
    Material,
    TextureRef,
    Texture,
    Skin,
    Animation,
    Channel,
    Sampler,
)
from .gltf_io import (
    read_document,
    write_document,
    to_glb_bytes,
    gltf_to_document,
    document_to_gltf,
)
from .functions import (
    merge_documents,
    prune,
    transform_primitive,
    transform_mesh,
    join_primitives,
)
from .inspect import (
    human_file_size,
    inspect_document,
)

__all__ = [
    # Model
    "Document",
    "Node",
    "Scene",
    "Mesh",
    "Primitive",
    "Material",
    "TextureRef",
    "Texture",
    "Skin",
    "Animation",
    "Channel",
    "Sampler",
    # I/O
    "read_document",
    "write_document",
    "to_glb_bytes",
    "gltf_to_document",
    "document_to_gltf",
    # Functions
    "merge_documents",
    "prune",
    "transform_primitive",
    "transform_mesh",
    "join_primitives",
    # Inspection
    "human_file_size",
    "inspect_document",
]
