"""
Rigid/affine transform helpers shared by the document model and the
retargeting stages.

Matrices are row-major (4, 4) float64 numpy arrays acting on column
vectors; the heavy lifting is done on batched torch tensors so joint
stacks are composed and inverted in one call.
"""

from typing import Sequence, Tuple
import numpy as np
import torch

from ..core.constants import DEFAULT_DEGENERATE_EPS
from .quaternion import (
    as_tensor,
    from_gltf,
    to_gltf,
    quaternion_to_matrix,
    matrix_to_quaternion,
)


def compose_matrix(
    translation: Sequence[float],
    rotation: Sequence[float],
    scale: Sequence[float]
) -> np.ndarray:
    """
    Build T * R * S from glTF TRS components.

    Args:
        translation: (..., 3) translation
        rotation: (..., 4) quaternion in glTF order [x, y, z, w]
        scale: (..., 3) per-axis scale

    Returns:
        (..., 4, 4) float64 matrix
    """
    t = as_tensor(translation)
    s = as_tensor(scale)
    R = quaternion_to_matrix(from_gltf(rotation))

    batch_shape = t.shape[:-1]
    M = torch.zeros(*batch_shape, 4, 4, dtype=torch.float64)
    M[..., :3, :3] = R * s.unsqueeze(-2)
    M[..., :3, 3] = t
    M[..., 3, 3] = 1.0
    return M.numpy()


def decompose_matrix(matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Decompose an affine 4x4 matrix into glTF TRS components.

    Shear is discarded. A negative determinant is folded into the X scale.

    Args:
        matrix: (4, 4) transform

    Returns:
        translation: (3,) translation
        rotation: (4,) quaternion [x, y, z, w]
        scale: (3,) per-axis scale
    """
    M = as_tensor(matrix)
    translation = M[:3, 3].clone()
    linear = M[:3, :3]

    scale = torch.linalg.norm(linear, dim=0)
    if torch.linalg.det(linear) < 0:
        scale[0] = -scale[0]

    safe = torch.where(scale.abs() > DEFAULT_DEGENERATE_EPS, scale, torch.ones_like(scale))
    rotation_matrix = linear / safe.unsqueeze(0)
    rotation = to_gltf(matrix_to_quaternion(rotation_matrix))

    return translation.numpy(), rotation.numpy(), scale.numpy()


def scale_matrix(factor: float) -> np.ndarray:
    """Uniform scaling matrix."""
    M = np.eye(4, dtype=np.float64)
    M[0, 0] = M[1, 1] = M[2, 2] = factor
    return M


def chain_matrices(matrices: Sequence[np.ndarray]) -> np.ndarray:
    """
    Multiply matrices left to right (outermost first).

    Args:
        matrices: Sequence of (4, 4) transforms, root first

    Returns:
        (4, 4) product, identity for an empty sequence
    """
    result = torch.eye(4, dtype=torch.float64)
    for m in matrices:
        result = result @ as_tensor(m)
    return result.numpy()


def invert_matrices(
    matrices: np.ndarray,
    eps: float = DEFAULT_DEGENERATE_EPS
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Batched inverse of a stack of transforms.

    Singular entries (|det| < eps or non-finite) are reported through the
    mask and left as identity in the output instead of propagating NaNs.

    Args:
        matrices: (J, 4, 4) transforms
        eps: Determinant magnitude treated as singular

    Returns:
        inverses: (J, 4, 4) inverses
        determinants: (J,) determinants of the inputs
        singular: (J,) boolean mask of non-invertible inputs
    """
    M = as_tensor(matrices).reshape(-1, 4, 4)
    if M.shape[0] == 0:
        empty = np.zeros((0, 4, 4), dtype=np.float64)
        return empty, np.zeros(0), np.zeros(0, dtype=bool)

    finite = torch.isfinite(M).all(dim=-1).all(dim=-1)
    safe = torch.where(finite[:, None, None], M, torch.eye(4, dtype=torch.float64))
    det = torch.linalg.det(safe)
    singular = (~finite) | (det.abs() < eps)

    invertible = torch.where(singular[:, None, None], torch.eye(4, dtype=torch.float64), safe)
    inverses = torch.linalg.inv(invertible)

    return inverses.numpy(), det.numpy(), singular.numpy()
