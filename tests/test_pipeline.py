"""
End-to-end tests for convert() and the command line entry point.
"""

import json
from pathlib import Path

import numpy as np
import pytest

from skelgraft.cli import main
from skelgraft.core.errors import RetargetError
from skelgraft.document import Document, read_document, write_document
from skelgraft.pipeline import ConversionReport, convert, default_output_path, format_report


@pytest.mark.io
class TestConvert:
    """Tests for the full conversion pipeline."""

    def test_report(self, asset_path, tmp_path, config):
        output = tmp_path / 'out.glb'
        report = convert(asset_path, output, config)

        assert output.exists()
        assert report.size_before == asset_path.stat().st_size
        assert report.size_after == output.stat().st_size
        assert report.pruned_joints == ['LeftHandEnd']
        assert report.skinned == 2
        assert report.deleted == 1
        assert report.grid_side is None
        assert report.elapsed_ms >= 0

    def test_output_skeleton(self, asset_path, tmp_path, config):
        output = tmp_path / 'out.glb'
        convert(asset_path, output, config)
        doc = read_document(output)

        skin = doc.list_skins()[0]
        names = [doc.node(j).name for j in doc.list_joints(skin)]
        assert names == ['Hips', 'Spine', 'Head', 'LeftHand']
        assert len(doc.get_inverse_bind_matrices(skin)) == 4
        for joint, inverse in zip(doc.list_joints(skin), doc.get_inverse_bind_matrices(skin)):
            assert np.allclose(inverse @ doc.get_world_matrix(joint), np.eye(4), atol=1e-5)

        for name in ('World-Global', 'Controller-Global', 'Body', 'Head-Local'):
            assert not doc.find_nodes(name)

    def test_output_meshes(self, asset_path, tmp_path, config):
        output = tmp_path / 'out.glb'
        convert(asset_path, output, config)
        doc = read_document(output)

        scene = doc.default_scene
        roots = {doc.node(h).name for h in doc.scene(scene).children}
        assert {'Hips', 'Body-Mesh', 'Arm-Mesh', 'Prop-Mesh'} <= roots

        body = doc.node(doc.find_nodes('Body-Mesh')[0])
        assert body.skin is not None
        primitive = doc.mesh(body.mesh).primitives[0]
        assert primitive.get_attribute('JOINTS_0')[:, 0].tolist() == [1] * 4
        # Canonical pose plus unit scale baked into the geometry
        assert primitive.get_attribute('POSITION')[0] == pytest.approx([0.0, 1.0, 0.3872], abs=1e-5)
        assert doc.node(doc.find_nodes('Prop-Mesh')[0]).skin is None

    def test_skinned_part_under_old_rig_survives(self, tmp_path, character_doc, config, make_quad):
        old_skin = character_doc.create_skin(
            'old', [character_doc.find_nodes('Body')[0], character_doc.find_nodes('Arm')[0]]
        )
        primitive = make_quad()
        joints = np.zeros((4, 4), dtype=np.uint16)
        joints[2:, 0] = 1
        primitive.set_attribute('JOINTS_0', joints)
        primitive.set_attribute('WEIGHTS_0', np.tile([1.0, 0.0, 0.0, 0.0], (4, 1)).astype(np.float32))
        node = character_doc.create_node('Skinned-Mesh', mesh=character_doc.create_mesh('skinned', [primitive]))
        character_doc.node(node).skin = old_skin
        character_doc.add_child(character_doc.find_nodes('World-Global')[0], node)
        source = tmp_path / 'hero.glb'
        write_document(character_doc, source)

        output = tmp_path / 'out.glb'
        report = convert(source, output, config)
        doc = read_document(output)

        assert report.skinned == 3
        assert 'skinned' in [m.name for m in doc.meshes.values()]
        assert len(doc.list_skins()) == 1
        skinned = doc.node(doc.find_nodes('Skinned-Mesh')[0])
        assert skinned.skin == doc.list_skins()[0]
        rows = doc.mesh(skinned.mesh).primitives[0].get_attribute('JOINTS_0')
        assert rows[:, 0].tolist() == [1, 1, 3, 3]

    def test_merge(self, asset_path, tmp_path, config):
        output = tmp_path / 'merged.glb'
        report = convert(asset_path, output, config, merge=True)
        assert report.grid_side == 2

        doc = read_document(output)
        meshes = list(doc.meshes.values())
        assert [m.name for m in meshes] == ['mesh']
        assert sorted(t.name for t in doc.textures.values()) == ['atlas_base', 'atlas_emissive']
        model = doc.node(doc.find_nodes('model')[0])
        assert model.skin == doc.list_skins()[0]
        assert report.data['materials'] == [{'name': 'material', 'textures': 2}]

    def test_default_output(self, asset_path, config):
        report = convert(asset_path, config=config)
        assert Path(report.output_path) == asset_path.parent / 'hero.retarget.glb'
        assert Path(report.output_path).exists()

    def test_missing_input(self, tmp_path, config):
        with pytest.raises(FileNotFoundError):
            convert(tmp_path / 'missing.glb', config=config)

    def test_donor_without_skin(self, asset_path, data_dir, config):
        bare = Document(name='skeleton')
        scene = bare.create_scene('donor')
        bare.scene_add_child(scene, bare.create_node('Hips'))
        write_document(bare, data_dir / 'skeleton.glb')

        with pytest.raises(RetargetError):
            convert(asset_path, config=config)


class TestReport:
    """Tests for report formatting."""

    def test_default_output_path(self):
        assert default_output_path('assets/hero.glb') == Path('assets/hero.retarget.glb')
        assert default_output_path('hero.gltf') == Path('hero.retarget.glb')

    def test_difference(self):
        report = ConversionReport('a', 'b', size_before=1000, size_after=250, elapsed_ms=1.0)
        assert report.difference == -75
        assert ConversionReport('a', 'b', 0, 10, 1.0).difference == 0

    def test_format(self):
        report = ConversionReport(
            'a', 'b', size_before=2048, size_after=1024, elapsed_ms=1234.4,
            sizes={'meshes': 500, 'textures': 1536, 'vram': 0},
            data={'skins': []},
        )
        text = format_report(report)
        assert 'Before\t2.0 KB' in text
        assert 'After\t1.0 KB' in text
        assert 'Difference\t-50%' in text
        assert 'Meshes\t500 B' in text
        assert text.endswith('Elapsed: 1,234ms')
        assert '"skins"' not in text
        assert '"skins": []' in format_report(report, include_data=True)


@pytest.mark.io
class TestCLI:
    """Tests for the skelgraft command."""

    def test_success(self, asset_path, data_dir, tmp_path, capsys):
        output = tmp_path / 'cli.glb'
        code = main([str(asset_path), '-o', str(output), '--data-dir', str(data_dir)])
        assert code == 0
        assert output.exists()
        assert 'Sizes:' in capsys.readouterr().out

    def test_silent(self, asset_path, data_dir, capsys):
        code = main([str(asset_path), '--data-dir', str(data_dir), '--silent'])
        assert code == 0
        assert capsys.readouterr().out == ''
        assert (asset_path.parent / 'hero.retarget.glb').exists()

    def test_inspect(self, asset_path, data_dir, capsys):
        main([str(asset_path), '--data-dir', str(data_dir), '--inspect'])
        out = capsys.readouterr().out
        assert '"skins"' in out

    def test_config_file(self, asset_path, data_dir, tmp_path):
        config_path = tmp_path / 'config.json'
        config_path.write_text(json.dumps({'data_dir': str(data_dir), 'cell_pixel_size': 32}))
        assert main([str(asset_path), '--config', str(config_path), '--merge', '--silent']) == 0

    def test_missing_file(self, tmp_path, data_dir, capsys):
        code = main([str(tmp_path / 'nope.glb'), '--data-dir', str(data_dir)])
        assert code == 1
        assert 'Error' in capsys.readouterr().err
