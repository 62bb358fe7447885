"""
Tests for glTF / GLB reading and writing.
"""

import numpy as np
import pygltflib
import pytest

from skelgraft.core.errors import GLTFReadError
from skelgraft.document.gltf_io import is_vertex_semantic
from skelgraft.document import (
    document_to_gltf,
    read_document,
    to_glb_bytes,
    write_document,
)
from skelgraft.utils.transforms import compose_matrix


def _skinned_quad(make_quad, joint=1):
    primitive = make_quad()
    primitive.set_attribute('JOINTS_0', np.tile([joint, 0, 0, 0], (4, 1)).astype(np.uint16))
    primitive.set_attribute('WEIGHTS_0', np.tile([1.0, 0.0, 0.0, 0.0], (4, 1)).astype(np.float32))
    return primitive


def _primitive_accessor(gltf, attribute):
    index = getattr(gltf.meshes[0].primitives[0].attributes, attribute)
    return gltf.accessors[index]


# =============================================================================
# Round Trip
# =============================================================================

@pytest.mark.io
class TestRoundTrip:
    """Tests writing a document and reading it back."""

    def test_scene_graph_preserved(self, tmp_path, character_doc):
        path = tmp_path / 'hero.glb'
        write_document(character_doc, path)
        doc = read_document(path)

        assert doc.name == 'hero'
        assert doc.scene(doc.default_scene).name == 'main'
        names = [doc.node(h).name for h in doc.traverse(doc.default_scene)]
        assert names[:3] == ['World-Global', 'Controller-Global', 'Body']
        world = doc.find_nodes('World-Global')[0]
        assert np.allclose(doc.node(world).scale, [2, 2, 2])
        assert np.allclose(doc.node(world).rotation, [0, np.sqrt(0.5), 0, np.sqrt(0.5)])

    def test_extra_uv_and_color_sets(self, tmp_path, character_doc):
        body = next(m for m in character_doc.meshes.values() if m.name == 'body')
        uv2 = np.full((4, 2), 0.25, dtype=np.float32)
        color1 = np.tile([0.5, 0.5, 0.5, 1.0], (4, 1)).astype(np.float32)
        body.primitives[0].set_attribute('TEXCOORD_2', uv2)
        body.primitives[0].set_attribute('COLOR_1', color1)

        path = tmp_path / 'hero.glb'
        write_document(character_doc, path)
        doc = read_document(path)

        primitive = next(m for m in doc.meshes.values() if m.name == 'body').primitives[0]
        assert np.allclose(primitive.get_attribute('TEXCOORD_2'), uv2)
        assert np.allclose(primitive.get_attribute('COLOR_1'), color1)

    def test_texture_bytes_and_materials(self, tmp_path, character_doc):
        path = tmp_path / 'hero.glb'
        write_document(character_doc, path)
        doc = read_document(path)

        original = {t.name: t.image for t in character_doc.textures.values()}
        loaded = {t.name: t.image for t in doc.textures.values()}
        assert loaded == original

        arm = next(m for m in doc.materials.values() if m.name == 'arm')
        assert doc.texture(arm.emissive_texture.texture).name == 'glow'
        assert np.allclose(arm.emissive_factor, [1, 1, 1])
        prop = next(m for m in doc.materials.values() if m.name == 'prop')
        assert np.allclose(prop.base_color_factor, [0, 0, 1, 1])

    def test_vertex_data(self, tmp_path, character_doc):
        path = tmp_path / 'hero.glb'
        write_document(character_doc, path)
        doc = read_document(path)

        body = next(m for m in doc.meshes.values() if m.name == 'body')
        primitive = body.primitives[0]
        assert np.allclose(primitive.get_attribute('POSITION')[2], [1, 1, 0])
        assert primitive.indices.tolist() == [0, 1, 2, 0, 2, 3]
        prop = next(m for m in doc.meshes.values() if m.name == 'prop')
        assert 'TEXCOORD_0' not in prop.primitives[0].attributes

    def test_skin_matrices_preserved(self, tmp_path, donor_doc):
        skin = donor_doc.list_skins()[0]
        ibm = np.stack([
            compose_matrix([-i, -1.0, 0.5 * i], [0, 0, 0, 1], [1, 1, 1]) for i in range(5)
        ])
        donor_doc.set_inverse_bind_matrices(skin, ibm)
        path = tmp_path / 'skeleton.glb'
        write_document(donor_doc, path)

        doc = read_document(path)
        loaded_skin = doc.list_skins()[0]
        names = [doc.node(j).name for j in doc.list_joints(loaded_skin)]
        assert names == ['Hips', 'Spine', 'Head', 'LeftHand', 'LeftHandEnd']
        loaded = doc.get_inverse_bind_matrices(loaded_skin)
        assert np.allclose(loaded, ibm, atol=1e-6)
        # Translation stays in the last column of the row-major matrix
        assert np.allclose(loaded[3, :3, 3], [-3.0, -1.0, 1.5])

    def test_joints_stored_compactly(self, tmp_path, donor_doc, make_quad):
        skin = donor_doc.list_skins()[0]
        mesh = donor_doc.create_mesh('m', [_skinned_quad(make_quad)])
        node = donor_doc.create_node('model', mesh=mesh)
        donor_doc.node(node).skin = skin
        donor_doc.scene_add_child(donor_doc.default_scene, node)
        path = tmp_path / 'skinned.glb'
        write_document(donor_doc, path)

        doc = read_document(path)
        model = doc.find_nodes('model')[0]
        primitive = doc.mesh(doc.node(model).mesh).primitives[0]
        joints = primitive.get_attribute('JOINTS_0')
        assert joints.dtype == np.uint8
        assert joints[:, 0].tolist() == [1, 1, 1, 1]
        assert doc.node(model).skin == doc.list_skins()[0]

    def test_animation_preserved(self, tmp_path, character_doc):
        path = tmp_path / 'hero.glb'
        write_document(character_doc, path)
        doc = read_document(path)

        animation = doc.list_animations()[0]
        assert doc.animation(animation).name == 'walk'
        channels = doc.list_channels(animation)
        assert len(channels) == 5
        first = channels[0]
        assert doc.node(first.target_node).name == 'Controller-Global'
        assert first.target_path.value == 'translation'
        assert np.allclose(first.sampler.output, [[10, 0, 0], [0, 0, 0]])
        assert np.allclose(first.sampler.input, [0, 1])

    def test_embedded_gltf(self, tmp_path, character_doc):
        path = tmp_path / 'hero.gltf'
        size = write_document(character_doc, path)
        assert size == path.stat().st_size
        assert not list(tmp_path.glob('*.bin'))

        doc = read_document(path)
        assert len(doc.meshes) == 3
        assert len(doc.textures) == 2

    def test_node_extras_preserved(self, tmp_path, character_doc):
        body = character_doc.find_nodes('Body')[0]
        character_doc.node(body).extras = {'tag': 'torso'}
        path = tmp_path / 'hero.glb'
        write_document(character_doc, path)
        doc = read_document(path)
        assert doc.node(doc.find_nodes('Body')[0]).extras == {'tag': 'torso'}


# =============================================================================
# Encoding
# =============================================================================

class TestEncoding:
    """Tests for component type selection and buffer layout."""

    @pytest.mark.parametrize("name,expected", [
        ("POSITION", True),
        ("TEXCOORD_2", True),
        ("COLOR_1", True),
        ("JOINTS_1", True),
        ("TEXCOORD", False),
        ("_CUSTOM", False),
    ])
    def test_vertex_semantic_names(self, name, expected):
        assert is_vertex_semantic(name) is expected

    def test_small_joint_indices_use_bytes(self, donor_doc, make_quad):
        donor_doc.create_mesh('m', [_skinned_quad(make_quad, joint=3)])
        gltf = document_to_gltf(donor_doc)
        assert _primitive_accessor(gltf, 'JOINTS_0').componentType == pygltflib.UNSIGNED_BYTE

    def test_large_joint_indices_use_shorts(self, donor_doc, make_quad):
        donor_doc.create_mesh('m', [_skinned_quad(make_quad, joint=300)])
        gltf = document_to_gltf(donor_doc)
        assert _primitive_accessor(gltf, 'JOINTS_0').componentType == pygltflib.UNSIGNED_SHORT

    def test_position_bounds(self, character_doc):
        gltf = document_to_gltf(character_doc)
        accessor = _primitive_accessor(gltf, 'POSITION')
        assert accessor.min == [0.0, 0.0, 0.0]
        assert accessor.max == [1.0, 1.0, 0.0]

    def test_views_aligned(self, character_doc):
        gltf = document_to_gltf(character_doc)
        assert all(view.byteOffset % 4 == 0 for view in gltf.bufferViews)
        assert len(gltf.buffers) == 1

    def test_extensions_declared(self, character_doc):
        arm = next(m for m in character_doc.materials.values() if m.name == 'arm')
        arm.set_extension('KHR_materials_emissive_strength', {'emissiveStrength': 5.0})
        gltf = document_to_gltf(character_doc)
        assert gltf.extensionsUsed == ['KHR_materials_emissive_strength']

    def test_unknown_attribute_dropped(self, character_doc, caplog):
        body = next(m for m in character_doc.meshes.values() if m.name == 'body')
        body.primitives[0].set_attribute('_CUSTOM', np.zeros((4, 1), dtype=np.float32))
        with caplog.at_level('WARNING'):
            document_to_gltf(character_doc)
        assert '_CUSTOM' in caplog.text

    def test_glb_magic(self, character_doc):
        assert to_glb_bytes(character_doc)[:4] == b'glTF'


# =============================================================================
# Errors
# =============================================================================

class TestReadErrors:
    """Tests for unreadable input."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(GLTFReadError):
            read_document(tmp_path / 'nope.glb')

    def test_malformed_json(self, tmp_path):
        path = tmp_path / 'broken.gltf'
        path.write_text('not json at all')
        with pytest.raises(GLTFReadError):
            read_document(path)
