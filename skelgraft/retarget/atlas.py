"""
Grid texture atlas packing.

N primitives are laid out on a square grid of side ``ceil(sqrt(N))``.
Slot ``i`` sits at row ``i // side``, column ``i % side``; the same slot
index drives the UV remap and the texture composite of a primitive, for
every channel role, so all atlases stay in register.

Layout:
    (0,0) (0,1) (0,2)      UV (0,0) is the top-left of the image,
    (1,0) (1,1) (1,2)      so row r covers pixels [r*cell, (r+1)*cell)
    (2,0) (2,1) (2,2)      and v in [r/side, (r+1)/side).
"""

import io
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
from PIL import Image
from tqdm import tqdm

from ..core.constants import ATTR_TEXCOORD_0, ATTR_TEXCOORD_1, CELL_PIXEL_SIZE
from ..core.errors import MissingTextureChannel, warn
from ..core.types import ChannelRole, UVBuffer
from ..document.scene import Document, Material, Primitive

logger = logging.getLogger(__name__)


# =============================================================================
# Layout
# =============================================================================

@dataclass(frozen=True)
class AtlasSlot:
    """Grid cell assigned to one primitive."""
    index: int
    row: int
    col: int


def layout(primitive_count: int) -> int:
    """
    Side of the smallest square grid holding ``primitive_count`` cells.

    Example:
        >>> layout(5)
        3
    """
    if primitive_count < 0:
        raise ValueError(f"primitive_count must be non-negative, got {primitive_count}")
    return math.ceil(math.sqrt(primitive_count))


def slot(index: int, grid_side: int) -> AtlasSlot:
    """Row/column of a slot index, row-major."""
    if grid_side <= 0 or not 0 <= index < grid_side * grid_side:
        raise ValueError(f"Slot {index} does not fit a {grid_side}x{grid_side} grid")
    return AtlasSlot(index=index, row=index // grid_side, col=index % grid_side)


def remap_uv(uv: UVBuffer, slot_index: int, grid_side: int) -> UVBuffer:
    """
    Confine UVs to a slot's cell: ``((u + col) / side, (v + row) / side)``.

    Coordinates outside [0, 1] are clamped first so no primitive samples
    a neighbour's cell.

    Args:
        uv: (N, 2) texture coordinates
        slot_index: Packing slot of the primitive
        grid_side: Grid side

    Returns:
        (N, 2) float32 remapped coordinates
    """
    cell = slot(slot_index, grid_side)
    uv = np.clip(np.asarray(uv, dtype=np.float64).reshape(-1, 2), 0.0, 1.0)
    offset = np.array([cell.col, cell.row], dtype=np.float64)
    return ((uv + offset) / grid_side).astype(np.float32)


def slot_center(slot_index: int, grid_side: int) -> np.ndarray:
    cell = slot(slot_index, grid_side)
    return np.array([(cell.col + 0.5) / grid_side, (cell.row + 0.5) / grid_side], dtype=np.float32)


# =============================================================================
# Images
# =============================================================================

def decode_image(data: bytes) -> Image.Image:
    with Image.open(io.BytesIO(data)) as image:
        return image.convert('RGBA')


def encode_atlas(image: Image.Image) -> bytes:
    """PNG bytes of an atlas image."""
    buffer = io.BytesIO()
    image.save(buffer, format='PNG')
    return buffer.getvalue()


def composite(
    atlas: Image.Image,
    texture: Image.Image,
    slot_index: int,
    grid_side: int,
    target_size: int,
) -> None:
    """
    Resize a texture to one cell and paste it at the slot's position.

    Args:
        atlas: Atlas image modified in place
        texture: Source texture
        slot_index: Packing slot
        grid_side: Grid side
        target_size: Atlas pixel size
    """
    cell_size = target_size // grid_side
    cell = slot(slot_index, grid_side)
    if texture.size != (cell_size, cell_size):
        texture = texture.resize((cell_size, cell_size), Image.LANCZOS)
    atlas.paste(texture.convert('RGBA'), (cell.col * cell_size, cell.row * cell_size))


def _tint(image: Image.Image, factor: Sequence[float]) -> Image.Image:
    factor = np.asarray(factor, dtype=np.float64)
    if np.allclose(factor, 1.0):
        return image
    pixels = np.asarray(image, dtype=np.float64)
    pixels[..., :len(factor)] *= factor
    return Image.fromarray(np.clip(pixels, 0, 255).astype(np.uint8))


def _factor(material: Optional[Material], role: ChannelRole) -> Optional[np.ndarray]:
    if material is None:
        return None
    if role is ChannelRole.BASE:
        return np.asarray(material.base_color_factor, dtype=np.float64)
    if role is ChannelRole.EMISSIVE:
        return np.asarray(material.emissive_factor, dtype=np.float64)
    return None


def _fill_color(material: Optional[Material], role: ChannelRole):
    if role is ChannelRole.METALLIC_ROUGHNESS and material is not None:
        # glTF packs roughness in G and metalness in B
        return (
            255,
            int(round(255 * np.clip(material.roughness_factor, 0, 1))),
            int(round(255 * np.clip(material.metallic_factor, 0, 1))),
            255,
        )
    factor = _factor(material, role)
    if factor is None:
        return role.neutral_color
    rgba = np.asarray(role.neutral_color, dtype=np.float64)
    rgba[:len(factor)] = 255 * np.clip(factor, 0, 1)
    return tuple(int(round(v)) for v in rgba)


def prepare_cell(
    doc: Document,
    primitive: Primitive,
    role: ChannelRole,
    cell_size: int,
) -> Image.Image:
    """
    Cell image for one primitive and channel role.

    Textured slots are resized and tinted by the material factor; slots
    without a texture are filled with the factor colour, or the role's
    neutral colour, and reported with ``MissingTextureChannel``. Textures
    Pillow cannot decode are treated the same way.
    """
    material = doc.material(primitive.material) if primitive.material is not None else None
    ref = getattr(material, role.material_slot) if material is not None else None

    if ref is None:
        name = material.name if material is not None else '<none>'
        warn(
            logger,
            f"Material '{name}' has no {role.value} texture, filling atlas cell",
            MissingTextureChannel,
        )
        return Image.new('RGBA', (cell_size, cell_size), _fill_color(material, role))

    texture = doc.texture(ref.texture)
    try:
        image = decode_image(texture.image)
    except (OSError, ValueError) as e:
        warn(
            logger,
            f"Texture '{texture.name}' could not be decoded ({e}), filling atlas cell",
            MissingTextureChannel,
        )
        return Image.new('RGBA', (cell_size, cell_size), _fill_color(material, role))
    image = image.resize((cell_size, cell_size), Image.LANCZOS)
    factor = _factor(material, role)
    return image if factor is None else _tint(image, factor)


# =============================================================================
# Packing
# =============================================================================

@dataclass
class AtlasResult:
    """
    Output of ``pack_atlas``.

    Attributes:
        grid_side: Cells per atlas side
        atlas_size: Atlas pixel size
        images: One RGBA atlas per requested role
    """
    grid_side: int
    atlas_size: int
    images: Dict[ChannelRole, Image.Image] = field(default_factory=dict)


def remap_primitive_uvs(primitive: Primitive, slot_index: int, grid_side: int) -> None:
    """Remap TEXCOORD_0/1 into the slot; UV-less primitives get the slot centre."""
    remapped = False
    for name in (ATTR_TEXCOORD_0, ATTR_TEXCOORD_1):
        uv = primitive.get_attribute(name)
        if uv is not None:
            primitive.set_attribute(name, remap_uv(uv, slot_index, grid_side))
            remapped = True
    if not remapped:
        center = slot_center(slot_index, grid_side)
        primitive.set_attribute(ATTR_TEXCOORD_0, np.tile(center, (primitive.vertex_count, 1)))


def pack_atlas(
    doc: Document,
    primitives: Sequence[Primitive],
    channel_roles: Sequence[ChannelRole],
    cell_pixel_size: int = CELL_PIXEL_SIZE,
    workers: Optional[int] = None,
    progress: bool = False,
) -> AtlasResult:
    """
    Lay out primitives on a grid, remap their UVs and build the atlases.

    Slot order is the order of ``primitives``. Cell images are prepared
    concurrently; every cell is finished before any atlas is assembled.

    Args:
        doc: Document providing materials and textures
        primitives: Primitives in packing order (UVs modified in place)
        channel_roles: Roles to build an atlas for
        cell_pixel_size: Pixel size of one cell
        workers: Thread count for cell preparation
        progress: Show a progress bar

    Returns:
        AtlasResult

    Raises:
        ValueError: If ``primitives`` is empty
    """
    if not primitives:
        raise ValueError("pack_atlas needs at least one primitive")

    grid_side = layout(len(primitives))
    atlas_size = grid_side * cell_pixel_size
    roles = list(channel_roles)
    logger.info(f"Packing {len(primitives)} primitives into a {grid_side}x{grid_side} grid ({atlas_size}px)")

    # Cells are read from the original materials, before any UV changes
    def build(index: int) -> List[Image.Image]:
        return [prepare_cell(doc, primitives[index], role, cell_pixel_size) for role in roles]

    with ThreadPoolExecutor(max_workers=workers) as executor:
        cells = list(tqdm(
            executor.map(build, range(len(primitives))),
            total=len(primitives),
            desc='Atlas cells',
            disable=not progress,
        ))

    images = {}
    for r, role in enumerate(roles):
        atlas = Image.new('RGBA', (atlas_size, atlas_size), role.neutral_color)
        for index, cell_images in enumerate(cells):
            composite(atlas, cell_images[r], index, grid_side, atlas_size)
        images[role] = atlas

    for index, primitive in enumerate(primitives):
        remap_primitive_uvs(primitive, index, grid_side)

    return AtlasResult(grid_side=grid_side, atlas_size=atlas_size, images=images)


__all__ = [
    'AtlasSlot',
    'AtlasResult',
    'layout',
    'slot',
    'remap_uv',
    'slot_center',
    'composite',
    'encode_atlas',
    'prepare_cell',
    'remap_primitive_uvs',
    'pack_atlas',
]
