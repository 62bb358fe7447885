"""
Configuration management for skelgraft.

Provides the retargeting configuration dataclass, JSON load/save helpers,
data-file resolution and loading of the static joint-name map and
canonical T-pose.
"""

import json
import logging
import os
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List, Tuple
from pathlib import Path

import numpy as np

from ..core.constants import (
    DEFAULT_UNIT_SCALE,
    ROOT_CONTROLLER_NAME,
    WORLD_NODE_NAMES,
    LOCAL_ONLY_SUFFIX,
    CELL_PIXEL_SIZE,
    DEFAULT_ATLAS_CHANNELS,
    MERGED_EMISSIVE_FACTOR,
    MERGED_EMISSIVE_STRENGTH,
    DATA_DIR_ENV,
    SKELETON_FILE,
    JOINT_MAP_FILE,
    JOINT_REMOVE_FILE,
    T_POSE_FILE,
)
from ..core.types import ChannelRole

logger = logging.getLogger(__name__)


@dataclass
class RetargetConfig:
    """
    Configuration for a retargeting run.

    Attributes:
        # Data files
        data_dir: Directory holding the donor skeleton and joint tables
        skeleton_file: Donor skeleton asset (GLB)
        joint_map_file: JSON object, ancestor node name -> joint name
        joint_remove_file: JSON list of joint names to prune
        t_pose_file: JSON object, node name -> {position, rotation}

        # Retargeting
        unit_scale: Uniform scale from source units to skeleton units
        root_node_name: Node whose translation animation is kept
        world_node_names: Candidate names of the source rig's world node
        local_only_suffix: Suffix of decorative nodes deleted when mesh-less

        # Atlas / merge
        cell_pixel_size: Pixel size of one atlas cell
        atlas_channels: Channel roles packed into atlases
        emissive_factor: Emissive factor of the merged material
        emissive_strength: KHR_materials_emissive_strength of the merged material
        atlas_workers: Thread count for slot preparation (None = default)
    """

    # Data files
    data_dir: Optional[str] = None
    skeleton_file: str = SKELETON_FILE
    joint_map_file: str = JOINT_MAP_FILE
    joint_remove_file: str = JOINT_REMOVE_FILE
    t_pose_file: str = T_POSE_FILE

    # Retargeting
    unit_scale: float = DEFAULT_UNIT_SCALE
    root_node_name: str = ROOT_CONTROLLER_NAME
    world_node_names: Tuple[str, ...] = WORLD_NODE_NAMES
    local_only_suffix: str = LOCAL_ONLY_SUFFIX

    # Atlas / merge
    cell_pixel_size: int = CELL_PIXEL_SIZE
    atlas_channels: Tuple[str, ...] = DEFAULT_ATLAS_CHANNELS
    emissive_factor: Tuple[float, float, float] = MERGED_EMISSIVE_FACTOR
    emissive_strength: float = MERGED_EMISSIVE_STRENGTH
    atlas_workers: Optional[int] = None

    # Additional fields
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.world_node_names = tuple(self.world_node_names)
        self.atlas_channels = tuple(self.atlas_channels)
        self.emissive_factor = tuple(float(v) for v in self.emissive_factor)
        if self.cell_pixel_size <= 0:
            raise ValueError(f"cell_pixel_size must be positive, got {self.cell_pixel_size}")
        for name in self.atlas_channels:
            ChannelRole(name)

    @property
    def channel_roles(self) -> List[ChannelRole]:
        return [ChannelRole(name) for name in self.atlas_channels]

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'RetargetConfig':
        """Create config from dictionary."""
        known_fields = {f.name for f in cls.__dataclass_fields__.values()}
        known_kwargs = {k: v for k, v in config_dict.items() if k in known_fields and k != 'extra'}
        extra_kwargs = {k: v for k, v in config_dict.items() if k not in known_fields}
        extra_kwargs.update(config_dict.get('extra') or {})

        config = cls(**known_kwargs)
        config.extra = extra_kwargs
        return config

    def update(self, **kwargs) -> 'RetargetConfig':
        """Return a new config with updated values."""
        config_dict = self.to_dict()
        config_dict.update(kwargs)
        return RetargetConfig.from_dict(config_dict)


def load_config(filepath: str) -> RetargetConfig:
    """
    Load configuration from JSON file.

    Args:
        filepath: Path to JSON config file

    Returns:
        RetargetConfig object
    """
    filepath = Path(filepath)
    with open(filepath, 'r') as f:
        config_dict = json.load(f)
    return RetargetConfig.from_dict(config_dict)


def save_config(config: RetargetConfig, filepath: str) -> None:
    """
    Save configuration to JSON file.

    Args:
        config: Config object to save
        filepath: Output file path
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    with open(filepath, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)


# =============================================================================
# Data Files
# =============================================================================

def _candidate_dirs(config: RetargetConfig) -> List[Path]:
    dirs = []
    if config.data_dir:
        dirs.append(Path(config.data_dir))
    env_dir = os.environ.get(DATA_DIR_ENV)
    if env_dir:
        dirs.append(Path(env_dir))
    dirs.append(Path(__file__).resolve().parent.parent / 'data')
    dirs.append(Path.cwd() / 'data')
    return dirs


def resolve_data_path(name: str, config: Optional[RetargetConfig] = None) -> Path:
    """
    Locate a data file.

    Tries, in order: ``config.data_dir``, ``$SKELGRAFT_DATA_DIR``, the
    package's ``data/`` directory and ``./data``.

    Args:
        name: File name relative to a data directory
        config: Config carrying an explicit data directory

    Returns:
        Path of the first existing candidate

    Raises:
        FileNotFoundError: If no candidate exists
    """
    config = config or RetargetConfig()
    tried = []
    for directory in _candidate_dirs(config):
        path = directory / name
        if path.exists():
            return path
        tried.append(str(path))
    raise FileNotFoundError(f"Could not find data file: {name}. Tried paths: {', '.join(tried)}")


@dataclass
class JointNameMap:
    """
    Static retargeting tables.

    Attributes:
        joint_map: Mesh-ancestor node name -> target joint name
        removed: Joint names pruned from the donor skeleton
        t_pose: Node name -> (translation (3,), rotation [x, y, z, w] (4,))
    """
    joint_map: Dict[str, str] = field(default_factory=dict)
    removed: List[str] = field(default_factory=list)
    t_pose: Dict[str, Tuple[np.ndarray, np.ndarray]] = field(default_factory=dict)

    def joint_for(self, node_name: str) -> Optional[str]:
        return self.joint_map.get(node_name)

    def is_removed(self, joint_name: str) -> bool:
        return joint_name in self.removed

    def canonical_pose(self, node_name: str) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        return self.t_pose.get(node_name)


def _read_json(path: Path) -> Any:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def parse_t_pose(raw: Dict[str, Dict[str, Any]]) -> Dict[str, Tuple[np.ndarray, np.ndarray]]:
    """
    Convert the T-pose JSON table into numpy pairs.

    Args:
        raw: {node_name: {"position": [x, y, z], "rotation": [x, y, z, w]}}

    Returns:
        {node_name: (translation, rotation)}
    """
    t_pose = {}
    for name, entry in raw.items():
        position = np.asarray(entry.get('position', [0.0, 0.0, 0.0]), dtype=np.float64)
        rotation = np.asarray(entry.get('rotation', [0.0, 0.0, 0.0, 1.0]), dtype=np.float64)
        if position.shape != (3,) or rotation.shape != (4,):
            raise ValueError(f"Malformed T-pose entry for '{name}': {entry}")
        t_pose[name] = (position, rotation)
    return t_pose


def load_joint_name_map(config: Optional[RetargetConfig] = None) -> JointNameMap:
    """
    Load the joint map, deny list and T-pose tables named by a config.

    Args:
        config: Retarget configuration (defaults used if None)

    Returns:
        JointNameMap
    """
    config = config or RetargetConfig()

    joint_map = _read_json(resolve_data_path(config.joint_map_file, config))
    removed = _read_json(resolve_data_path(config.joint_remove_file, config))
    t_pose = parse_t_pose(_read_json(resolve_data_path(config.t_pose_file, config)))

    if not isinstance(joint_map, dict):
        raise ValueError(f"{config.joint_map_file} must hold a JSON object")
    if not isinstance(removed, list):
        raise ValueError(f"{config.joint_remove_file} must hold a JSON list")

    logger.info(
        f"Loaded joint tables: {len(joint_map)} mappings, "
        f"{len(removed)} removed joints, {len(t_pose)} T-pose entries"
    )
    return JointNameMap(joint_map=dict(joint_map), removed=list(removed), t_pose=t_pose)
