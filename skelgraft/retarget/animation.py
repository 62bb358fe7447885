"""
Animation channel filtering.

Only rotation animation transfers between rigs. The one exception is the
root controller, whose translation is kept and rescaled into skeleton
units; its scale animation is dropped.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Set

import numpy as np

from ..core.errors import MissingRootNode, warn
from ..core.types import Handle, TargetPath
from ..document.scene import Channel, Document
from .joint_index import build_joint_index

logger = logging.getLogger(__name__)


@dataclass
class FilterStats:
    """Counts of what the animation filter changed."""
    channels_removed: int = 0
    channels_scaled: int = 0
    samplers_removed: int = 0
    animations_removed: int = 0


def _keep_channel(channel: Channel, root_nodes: Set[Handle]) -> bool:
    if channel.target_node is None:
        return False
    if channel.target_node in root_nodes:
        return channel.target_path is not TargetPath.SCALE
    return channel.target_path is TargetPath.ROTATION


def filter_animations(
    doc: Document,
    root_node_name: str,
    scale_factor: float,
) -> FilterStats:
    """
    Strip every animation down to transferable channels.

    For nodes named ``root_node_name``: SCALE channels are removed,
    TRANSLATION keyframes are multiplied by ``scale_factor`` and ROTATION
    channels are kept as they are. For every other node only ROTATION
    channels are kept. Samplers no channel uses and animations with no
    channel left are released.

    A missing root node is reported with ``MissingRootNode`` and all
    channels then follow the rotation-only rule.

    Args:
        doc: Document whose animations are filtered in place
        root_node_name: Name of the root controller node
        scale_factor: Multiplier for root translation keyframes

    Returns:
        FilterStats
    """
    stats = FilterStats()
    root_nodes = set(doc.find_nodes(root_node_name))
    if not root_nodes and doc.animations:
        warn(
            logger,
            f"Root node '{root_node_name}' not found, keeping rotation channels only",
            MissingRootNode,
        )

    for handle in doc.list_animations():
        for channel in doc.list_channels(handle):
            if not _keep_channel(channel, root_nodes):
                doc.remove_channel(handle, channel)
                stats.channels_removed += 1
            elif channel.target_node in root_nodes and channel.target_path is TargetPath.TRANSLATION:
                sampler = channel.sampler
                sampler.output = (sampler.output.astype(np.float64) * scale_factor).astype(np.float32)
                stats.channels_scaled += 1

        used = {id(c.sampler) for c in doc.list_channels(handle)}
        for sampler in doc.list_samplers(handle):
            if id(sampler) not in used:
                doc.remove_sampler(handle, sampler)
                stats.samplers_removed += 1

        if not doc.list_channels(handle):
            doc.dispose_animation(handle)
            stats.animations_removed += 1

    logger.info(
        f"Animation filter: removed {stats.channels_removed} channels, "
        f"scaled {stats.channels_scaled}, released {stats.animations_removed} animations"
    )
    return stats


def rebind_channels(doc: Document, skin: Handle, subtree: Optional[Handle]) -> int:
    """
    Point channels that target nodes under ``subtree`` at same-named joints.

    Used before the source rig is released so rotation tracks follow the
    donor skeleton. Channels with no same-named joint are left alone and
    disappear with their target.

    Args:
        doc: Document holding the animations
        skin: Skin providing the joint names
        subtree: Root of the nodes about to be released

    Returns:
        Number of channels moved
    """
    if subtree is None or not doc.has_node(subtree):
        return 0
    doomed = set(doc.iter_subtree(subtree))
    index = build_joint_index(doc, skin)

    moved = 0
    for handle in doc.list_animations():
        for channel in doc.list_channels(handle):
            if channel.target_node not in doomed:
                continue
            joint = index.joint(doc.node(channel.target_node).name)
            if joint is not None and joint not in doomed:
                channel.target_node = joint
                moved += 1

    logger.debug(f"Rebound {moved} animation channels to skeleton joints")
    return moved


__all__ = ['FilterStats', 'filter_animations', 'rebind_channels']
