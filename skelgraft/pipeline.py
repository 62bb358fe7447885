"""
End-to-end conversion: asset in, retargeted (optionally merged) asset out.

Stage order is strict; each stage relies on what the previous one left
behind:

    1. read the asset and the donor skeleton, merge the documents
    2. splice the skeleton (graft, prune deny list, inverse binds)
    3. filter animations
    4. neutralize the world node and apply the canonical pose
    5. rigidly skin mesh parts (geometry scaled into skeleton units)
    6. move animation tracks onto the skeleton, remove the old rig
    7. optionally merge all parts into one mesh with atlases
    8. prune, write, inspect
"""

import json
import logging
import math
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .core.errors import RetargetError
from .document import (
    human_file_size,
    inspect_document,
    merge_documents,
    prune,
    read_document,
    write_document,
)
from .retarget import (
    apply_canonical_pose,
    assign_rigid_skins,
    filter_animations,
    merge_meshes,
    rebind_channels,
    remove_world_node,
    reset_world_node,
    splice_skeleton,
)
from .utils.config import RetargetConfig, load_joint_name_map, resolve_data_path

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class ConversionReport:
    """Statistics of one ``convert`` run."""
    input_path: str
    output_path: str
    size_before: int
    size_after: int
    elapsed_ms: float
    sizes: Dict[str, int] = field(default_factory=dict)
    data: Dict[str, Any] = field(default_factory=dict)
    pruned_joints: List[str] = field(default_factory=list)
    skinned: int = 0
    deleted: int = 0
    grid_side: Optional[int] = None

    @property
    def difference(self) -> int:
        """Size change in percent (negative when the output is smaller)."""
        if self.size_before == 0:
            return 0
        return -math.floor((self.size_before - self.size_after) / self.size_before * 100)


def default_output_path(input_path: PathLike) -> Path:
    """``hero.glb`` -> ``hero.retarget.glb``"""
    input_path = Path(input_path)
    return input_path.parent / f"{input_path.stem}.retarget.glb"


def convert(
    input_path: PathLike,
    output_path: Optional[PathLike] = None,
    config: Optional[RetargetConfig] = None,
    merge: bool = False,
    progress: bool = False,
) -> ConversionReport:
    """
    Retarget an asset onto the donor skeleton and write the result.

    Args:
        input_path: Source ``.glb`` / ``.gltf``
        output_path: Destination (default ``<stem>.retarget.glb``)
        config: Retarget configuration
        merge: Join every mesh part into one draw call with atlases
        progress: Show progress bars

    Returns:
        ConversionReport

    Raises:
        FileNotFoundError: If the input or a data file is missing
        SkelgraftError: On unreadable input or a fatal retargeting error
    """
    start = time.perf_counter()
    config = config or RetargetConfig()
    input_path = Path(input_path)
    output_path = Path(output_path) if output_path is not None else default_output_path(input_path)
    if not input_path.exists():
        raise FileNotFoundError(f"Input file not found: {input_path}")

    size_before = input_path.stat().st_size
    tables = load_joint_name_map(config)

    # 1. load
    doc = read_document(input_path)
    donor = read_document(resolve_data_path(config.skeleton_file, config))
    if doc.default_scene is None:
        doc.create_scene('scene')
    scene = doc.default_scene
    if donor.default_scene is None:
        raise RetargetError(f"Donor skeleton '{donor.name}' has no scene")
    if not donor.skins:
        raise RetargetError(f"Donor skeleton '{donor.name}' has no skin")

    handle_map = merge_documents(doc, donor)
    donor_scene = handle_map['scenes'][donor.default_scene]
    skin = handle_map['skins'][next(iter(donor.skins))]
    nodes = doc.traverse(scene)

    # 2. skeleton
    removed = splice_skeleton(doc, scene, donor_scene, skin, tables.removed)

    # 3. animation
    filter_animations(doc, config.root_node_name, config.unit_scale)

    # 4. pose
    world = reset_world_node(doc, nodes, config.world_node_names)
    apply_canonical_pose(doc, nodes, tables.t_pose, config.unit_scale, skip=world)

    # 5. rigid skins
    counts = assign_rigid_skins(
        doc,
        scene,
        nodes,
        tables,
        skin,
        geometry_scale=config.unit_scale,
        local_only_suffix=config.local_only_suffix,
    )

    # 6. old rig
    rebind_channels(doc, skin, world)
    remove_world_node(doc, world)

    # 7. merge
    grid_side = None
    if merge:
        result = merge_meshes(doc, scene, nodes, skin, config, progress=progress)
        grid_side = result.grid_side if result is not None else None

    # 8. cleanup and save
    prune(doc)
    size_after = write_document(doc, output_path)
    stats = inspect_document(doc)

    report = ConversionReport(
        input_path=str(input_path),
        output_path=str(output_path),
        size_before=size_before,
        size_after=size_after,
        elapsed_ms=(time.perf_counter() - start) * 1000,
        sizes=stats['sizes'],
        data=stats['data'],
        pruned_joints=removed,
        skinned=counts['skinned'],
        deleted=counts['deleted'],
        grid_side=grid_side,
    )
    logger.info(f"Converted {input_path} -> {output_path} in {report.elapsed_ms:.0f}ms")
    return report


def format_report(report: ConversionReport, include_data: bool = False) -> str:
    """Render the size summary printed after a conversion."""
    lines = [
        "Sizes:",
        f"    Before\t{human_file_size(report.size_before)}",
        f"    After\t{human_file_size(report.size_after)}",
        f"    Difference\t{report.difference}%",
        f"    Meshes\t{human_file_size(report.sizes.get('meshes', 0))}",
        f"    Textures\t{human_file_size(report.sizes.get('textures', 0))}",
        f"    VRAM\t{human_file_size(report.sizes.get('vram', 0))}",
    ]
    if include_data:
        lines.append(json.dumps(report.data, indent=4))
    lines.append(f"Elapsed: {round(report.elapsed_ms):,}ms")
    return "\n".join(lines)


__all__ = ['ConversionReport', 'default_output_path', 'convert', 'format_report']
