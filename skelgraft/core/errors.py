"""
Error and warning taxonomy for skelgraft.

Fatal conditions are exceptions and abort the pipeline. Non-fatal
conditions are ``RetargetWarning`` subclasses: they are logged and emitted
through ``warnings.warn`` so callers (and tests) can observe them, and
processing continues.
"""

import logging
import warnings
from typing import Optional, Type


# =============================================================================
# Exceptions
# =============================================================================

class SkelgraftError(Exception):
    """Base exception for skelgraft errors."""
    pass


class DocumentError(SkelgraftError, KeyError):
    """Unknown or released handle used against a Document."""

    def __init__(self, kind: str, handle: int):
        self.kind = kind
        self.handle = handle
        super().__init__(f"No live {kind} with handle {handle}")

    def __str__(self) -> str:
        return self.args[0]


class GLTFReadError(SkelgraftError):
    """Error parsing a glTF/GLB file into a Document."""
    pass


class GLTFWriteError(SkelgraftError):
    """Error serializing a Document to glTF/GLB."""
    pass


class RetargetError(SkelgraftError):
    """Base exception for fatal retargeting errors."""
    pass


class MissingDonorRoot(RetargetError):
    """Donor scene has no root node to graft."""
    pass


class DegenerateTransform(RetargetError):
    """A joint's world matrix cannot be inverted."""

    def __init__(self, joint_name: str, determinant: Optional[float] = None):
        self.joint_name = joint_name
        self.determinant = determinant
        detail = "" if determinant is None else f" (det={determinant:.3g})"
        super().__init__(f"World matrix of joint '{joint_name}' is not invertible{detail}")


# =============================================================================
# Warnings
# =============================================================================

class RetargetWarning(UserWarning):
    """Base category for non-fatal retargeting conditions."""
    pass


class UnresolvedJointReference(RetargetWarning):
    """A deny-listed or mapped joint name does not exist in the skin."""
    pass


class MissingAncestorJoint(RetargetWarning):
    """No ancestor of a mesh node maps to a known joint."""
    pass


class MissingTextureChannel(RetargetWarning):
    """A primitive has no source texture for a requested atlas channel."""
    pass


class DuplicateJointName(RetargetWarning):
    """Two joints of one skin share a name; the later one wins."""
    pass


class MissingRootNode(RetargetWarning):
    """A designated root/world node is absent from the asset."""
    pass


def warn(
    logger: logging.Logger,
    message: str,
    category: Type[RetargetWarning] = RetargetWarning,
) -> None:
    """
    Report a non-fatal condition on both the logger and the warnings channel.

    Args:
        logger: Module logger to write the WARNING record to
        message: Human readable description
        category: RetargetWarning subclass identifying the condition
    """
    logger.warning(message)
    warnings.warn(message, category, stacklevel=3)
