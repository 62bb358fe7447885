"""
Tests for grid layout, UV remapping and atlas compositing.
"""

import io

import numpy as np
import pytest
from PIL import Image

from skelgraft.core.errors import MissingTextureChannel
from skelgraft.core.types import ChannelRole
from skelgraft.retarget import AtlasSlot, composite, encode_atlas, layout, pack_atlas, remap_uv, slot
from skelgraft.retarget.atlas import prepare_cell


def _character_primitives(doc):
    return [
        doc.mesh(doc.node(doc.find_nodes(name)[0]).mesh).primitives[0]
        for name in ('Body-Mesh', 'Arm-Mesh', 'Prop-Mesh')
    ]


def _close(pixel, expected, tolerance=2):
    return all(abs(int(a) - int(b)) <= tolerance for a, b in zip(pixel, expected))


# =============================================================================
# Layout
# =============================================================================

class TestLayout:
    """Tests for grid sizing and slot addressing."""

    @pytest.mark.parametrize("count,side", [(0, 0), (1, 1), (2, 2), (4, 2), (5, 3), (9, 3), (10, 4)])
    def test_grid_side(self, count, side):
        assert layout(count) == side

    def test_negative_count(self):
        with pytest.raises(ValueError):
            layout(-1)

    def test_slot_row_major(self):
        assert slot(3, 3) == AtlasSlot(index=3, row=1, col=0)
        assert slot(5, 3) == AtlasSlot(index=5, row=1, col=2)

    def test_slot_out_of_range(self):
        with pytest.raises(ValueError):
            slot(9, 3)


class TestRemapUV:
    """Tests for confining UVs to a slot."""

    def test_center_of_slot(self):
        uv = remap_uv(np.array([[0.5, 0.5]]), 3, 3)
        assert uv[0] == pytest.approx([1 / 6, 0.5], abs=1e-6)
        assert uv.dtype == np.float32

    def test_corners(self):
        uv = remap_uv(np.array([[0.0, 0.0], [1.0, 1.0]]), 1, 2)
        assert np.allclose(uv, [[0.5, 0.0], [1.0, 0.5]])

    def test_out_of_range_clamped(self):
        uv = remap_uv(np.array([[-0.5, 1.5], [2.0, 0.25]]), 0, 2)
        assert np.allclose(uv, [[0.0, 0.5], [0.5, 0.125]])


# =============================================================================
# Compositing
# =============================================================================

class TestComposite:
    """Tests for pasting cells into an atlas."""

    def test_cell_pasted_at_slot(self):
        atlas = Image.new('RGBA', (128, 128), (255, 255, 255, 255))
        texture = Image.new('RGBA', (64, 64), (0, 0, 255, 255))
        composite(atlas, texture, 2, 2, 128)

        assert atlas.getpixel((10, 70)) == (0, 0, 255, 255)
        assert atlas.getpixel((63, 127)) == (0, 0, 255, 255)
        assert atlas.getpixel((64, 70)) == (255, 255, 255, 255)
        assert atlas.getpixel((10, 10)) == (255, 255, 255, 255)

    def test_encode_png(self):
        data = encode_atlas(Image.new('RGBA', (4, 4)))
        assert data[:8] == b'\x89PNG\r\n\x1a\n'
        assert Image.open(io.BytesIO(data)).size == (4, 4)


class TestPrepareCell:
    """Tests for per-primitive cell images."""

    def test_missing_texture_filled_with_factor(self, character_doc):
        prop = _character_primitives(character_doc)[2]
        with pytest.warns(MissingTextureChannel):
            cell = prepare_cell(character_doc, prop, ChannelRole.BASE, 16)
        assert cell.size == (16, 16)
        assert cell.getpixel((8, 8)) == (0, 0, 255, 255)

    def test_missing_emissive_is_black(self, character_doc):
        body = _character_primitives(character_doc)[0]
        with pytest.warns(MissingTextureChannel):
            cell = prepare_cell(character_doc, body, ChannelRole.EMISSIVE, 16)
        assert cell.getpixel((0, 0)) == (0, 0, 0, 255)

    def test_texture_tinted_by_factor(self, character_doc):
        body = _character_primitives(character_doc)[0]
        material = character_doc.material(body.material)
        material.base_color_factor = np.array([0.5, 1.0, 1.0, 1.0])
        cell = prepare_cell(character_doc, body, ChannelRole.BASE, 16)
        assert _close(cell.getpixel((8, 8)), (128, 0, 0, 255))

    def test_undecodable_texture_filled(self, character_doc):
        body = _character_primitives(character_doc)[0]
        material = character_doc.material(body.material)
        character_doc.texture(material.base_color_texture.texture).image = b'not an image'
        with pytest.warns(MissingTextureChannel, match='red'):
            cell = prepare_cell(character_doc, body, ChannelRole.BASE, 8)
        assert cell.getpixel((4, 4)) == (255, 255, 255, 255)

    def test_metallic_roughness_fill(self, character_doc):
        body = _character_primitives(character_doc)[0]
        material = character_doc.material(body.material)
        material.metallic_factor = 0.0
        material.roughness_factor = 1.0
        with pytest.warns(MissingTextureChannel):
            cell = prepare_cell(character_doc, body, ChannelRole.METALLIC_ROUGHNESS, 4)
        assert cell.getpixel((0, 0)) == (255, 255, 0, 255)


# =============================================================================
# Packing
# =============================================================================

class TestPackAtlas:
    """Tests for pack_atlas on the character's three parts."""

    @pytest.fixture
    def packed(self, character_doc):
        primitives = _character_primitives(character_doc)
        result = pack_atlas(character_doc, primitives, [ChannelRole.BASE, ChannelRole.EMISSIVE], 64, workers=2)
        return result, primitives

    def test_grid(self, packed):
        result, _ = packed
        assert result.grid_side == 2
        assert result.atlas_size == 128
        assert result.images[ChannelRole.BASE].size == (128, 128)

    def test_base_atlas_cells(self, packed):
        result, _ = packed
        base = result.images[ChannelRole.BASE]
        assert _close(base.getpixel((32, 32)), (255, 0, 0, 255))
        assert _close(base.getpixel((96, 32)), (255, 0, 0, 255))
        assert base.getpixel((32, 96)) == (0, 0, 255, 255)
        # Unused slot keeps the neutral colour
        assert base.getpixel((96, 96)) == (255, 255, 255, 255)

    def test_emissive_atlas_in_register(self, packed):
        result, _ = packed
        emissive = result.images[ChannelRole.EMISSIVE]
        assert emissive.getpixel((32, 32)) == (0, 0, 0, 255)
        assert _close(emissive.getpixel((96, 32)), (0, 255, 0, 255))
        assert emissive.getpixel((32, 96)) == (0, 0, 0, 255)

    def test_uvs_remapped(self, packed):
        _, primitives = packed
        body, arm, prop = primitives
        assert np.allclose(body.get_attribute('TEXCOORD_0')[2], [0.5, 0.5])
        assert np.allclose(arm.get_attribute('TEXCOORD_0')[0], [0.5, 0.0])
        assert np.allclose(prop.get_attribute('TEXCOORD_0'), [[0.25, 0.75]] * 4)

    def test_empty_input(self, character_doc):
        with pytest.raises(ValueError):
            pack_atlas(character_doc, [], [ChannelRole.BASE])

    def test_undecodable_texture_does_not_abort(self, character_doc):
        primitives = _character_primitives(character_doc)
        red = character_doc.material(primitives[0].material).base_color_texture.texture
        character_doc.texture(red).image = b'not an image'

        with pytest.warns(MissingTextureChannel):
            result = pack_atlas(character_doc, primitives, [ChannelRole.BASE], 64, workers=2)

        base = result.images[ChannelRole.BASE]
        assert base.getpixel((32, 32)) == (255, 255, 255, 255)
        assert base.getpixel((32, 96)) == (0, 0, 255, 255)
