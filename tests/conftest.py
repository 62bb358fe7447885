"""
Pytest configuration and fixtures for skelgraft tests.

The fixtures build small synthetic assets in memory: a donor skeleton with
a five-joint skin and a character whose rig hangs under a ``World-Global``
node, with textured mesh parts and one animation.
"""

import io
import json

import numpy as np
import pytest
from PIL import Image

from skelgraft.core.types import TargetPath
from skelgraft.document import Document, Primitive, TextureRef, write_document
from skelgraft.utils.config import JointNameMap, RetargetConfig, parse_t_pose


# 90 degrees about +Y, glTF [x, y, z, w]
QUARTER_TURN_Y = [0.0, np.sqrt(0.5), 0.0, np.sqrt(0.5)]

JOINT_MAP = {
    'Controller-Global': 'Hips',
    'Body': 'Spine',
    'Arm': 'LeftHand',
}
REMOVED_JOINTS = ['LeftHandEnd']
T_POSE = {
    'Body': {'position': [0.0, 1.0, 0.0], 'rotation': [0.0, 0.0, 0.0, 1.0]},
}


def png_bytes(color=(255, 0, 0, 255), size=(8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new('RGBA', size, color).save(buffer, format='PNG')
    return buffer.getvalue()


def quad_primitive(material=None, uv=True) -> Primitive:
    """Unit quad in the XY plane, two triangles."""
    attributes = {
        'POSITION': np.array([[0, 0, 0], [1, 0, 0], [1, 1, 0], [0, 1, 0]], dtype=np.float32),
        'NORMAL': np.tile(np.array([0, 0, 1], dtype=np.float32), (4, 1)),
    }
    if uv:
        attributes['TEXCOORD_0'] = np.array([[0, 0], [1, 0], [1, 1], [0, 1]], dtype=np.float32)
    return Primitive(
        attributes=attributes,
        indices=np.array([0, 1, 2, 0, 2, 3], dtype=np.uint32),
        material=material,
    )


@pytest.fixture
def make_png():
    """Factory for solid-colour PNG payloads."""
    return png_bytes


@pytest.fixture
def make_quad():
    """Factory for quad primitives."""
    return quad_primitive


@pytest.fixture
def donor_doc():
    """Donor skeleton: Hips -> Spine -> Head, Hips -> LeftHand -> LeftHandEnd."""
    doc = Document(name='skeleton')
    scene = doc.create_scene('donor')
    hips = doc.create_node('Hips', translation=[0.0, 1.0, 0.0])
    spine = doc.create_node('Spine', translation=[0.0, 0.2, 0.0])
    head = doc.create_node('Head', translation=[0.0, 0.3, 0.0])
    hand = doc.create_node('LeftHand', translation=[0.5, 0.0, 0.0])
    hand_end = doc.create_node('LeftHandEnd', translation=[0.1, 0.0, 0.0])
    doc.scene_add_child(scene, hips)
    doc.add_child(hips, spine)
    doc.add_child(spine, head)
    doc.add_child(hips, hand)
    doc.add_child(hand, hand_end)
    doc.create_skin('skin', [hips, spine, head, hand, hand_end])
    return doc


@pytest.fixture
def character_doc():
    """
    Character rig:

        World-Global (scale 2, quarter turn about Y)
        ├── Controller-Global (t = [0, 0, 10])
        │   ├── Body (t = [0, 1, 0])
        │   │   ├── Body-Mesh (mesh 'body', t = [0, 0, 1])
        │   │   └── Head-Local (no mesh)
        │   └── Arm
        │       └── Arm-Mesh (mesh 'arm')
        └── Prop-Mesh (mesh 'prop', no mapped ancestor)
    """
    doc = Document(name='hero')
    scene = doc.create_scene('main')

    red = doc.create_texture('red', png_bytes((255, 0, 0, 255)))
    glow = doc.create_texture('glow', png_bytes((0, 255, 0, 255)))
    body_mat = doc.create_material('body', base_color_texture=TextureRef(red))
    arm_mat = doc.create_material(
        'arm',
        base_color_texture=TextureRef(red),
        emissive_texture=TextureRef(glow),
        emissive_factor=np.ones(3),
    )
    prop_mat = doc.create_material('prop', base_color_factor=np.array([0.0, 0.0, 1.0, 1.0]))

    body_mesh = doc.create_mesh('body', [quad_primitive(body_mat)])
    arm_mesh = doc.create_mesh('arm', [quad_primitive(arm_mat)])
    prop_mesh = doc.create_mesh('prop', [quad_primitive(prop_mat, uv=False)])

    world = doc.create_node('World-Global', rotation=QUARTER_TURN_Y, scale=[2.0, 2.0, 2.0])
    controller = doc.create_node('Controller-Global', translation=[0.0, 0.0, 10.0])
    body = doc.create_node('Body', translation=[0.0, 1.0, 0.0])
    body_node = doc.create_node('Body-Mesh', translation=[0.0, 0.0, 1.0], mesh=body_mesh)
    head_local = doc.create_node('Head-Local')
    arm = doc.create_node('Arm')
    arm_node = doc.create_node('Arm-Mesh', mesh=arm_mesh)
    prop_node = doc.create_node('Prop-Mesh', mesh=prop_mesh)

    doc.scene_add_child(scene, world)
    doc.add_child(world, controller)
    doc.add_child(controller, body)
    doc.add_child(body, body_node)
    doc.add_child(body, head_local)
    doc.add_child(controller, arm)
    doc.add_child(arm, arm_node)
    doc.add_child(world, prop_node)

    walk = doc.create_animation('walk')
    times = [0.0, 1.0]
    doc.add_channel(walk, controller, TargetPath.TRANSLATION, times, [[10, 0, 0], [0, 0, 0]])
    doc.add_channel(walk, controller, TargetPath.SCALE, times, [[1, 1, 1], [2, 2, 2]])
    doc.add_channel(walk, controller, TargetPath.ROTATION, times, [[0, 0, 0, 1], QUARTER_TURN_Y])
    doc.add_channel(walk, body, TargetPath.TRANSLATION, times, [[0, 1, 0], [0, 2, 0]])
    doc.add_channel(walk, body, TargetPath.ROTATION, times, [[0, 0, 0, 1], QUARTER_TURN_Y])
    return doc


@pytest.fixture
def joint_name_map():
    return JointNameMap(
        joint_map=dict(JOINT_MAP),
        removed=list(REMOVED_JOINTS),
        t_pose=parse_t_pose(T_POSE),
    )


@pytest.fixture
def data_dir(tmp_path, donor_doc):
    """Data directory holding the donor skeleton and joint tables."""
    directory = tmp_path / 'data'
    directory.mkdir()
    write_document(donor_doc, directory / 'skeleton.glb')
    (directory / 'joints-map.json').write_text(json.dumps(JOINT_MAP))
    (directory / 'joints-remove.json').write_text(json.dumps(REMOVED_JOINTS))
    (directory / 't-pose.json').write_text(json.dumps(T_POSE))
    return directory


@pytest.fixture
def config(data_dir):
    return RetargetConfig(data_dir=str(data_dir))


@pytest.fixture
def asset_path(tmp_path, character_doc):
    path = tmp_path / 'hero.glb'
    write_document(character_doc, path)
    return path


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "io: marks tests that write files"
    )
