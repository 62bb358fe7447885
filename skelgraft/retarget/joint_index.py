"""
Name lookups over a skin's joint list.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..core.errors import DuplicateJointName, warn
from ..core.types import Handle
from ..document.scene import Document

logger = logging.getLogger(__name__)


@dataclass
class JointIndex:
    """
    Joint name -> node handle and joint name -> position in the skin.

    Attributes:
        by_name: Joint name to joint node handle
        index_of: Joint name to index into the skin's joint list
    """
    by_name: Dict[str, Handle] = field(default_factory=dict)
    index_of: Dict[str, int] = field(default_factory=dict)

    def __contains__(self, name: str) -> bool:
        return name in self.by_name

    def __len__(self) -> int:
        return len(self.by_name)

    def joint(self, name: str) -> Optional[Handle]:
        return self.by_name.get(name)

    def index(self, name: Optional[str]) -> Optional[int]:
        if name is None:
            return None
        return self.index_of.get(name)


def build_joint_index(doc: Document, skin: Handle) -> JointIndex:
    """
    Index a skin's joints by name.

    When two joints share a name the later one wins; a
    ``DuplicateJointName`` warning is emitted for each collision.

    Args:
        doc: Document holding the skin
        skin: Skin handle

    Returns:
        JointIndex over the skin's current joint order
    """
    index = JointIndex()
    for i, joint in enumerate(doc.list_joints(skin)):
        name = doc.node(joint).name
        if name in index.by_name:
            warn(
                logger,
                f"Joint name '{name}' appears more than once in skin "
                f"'{doc.skin(skin).name}'; index {index.index_of[name]} replaced by {i}",
                DuplicateJointName,
            )
        index.by_name[name] = joint
        index.index_of[name] = i
    return index


__all__ = ['JointIndex', 'build_joint_index']
