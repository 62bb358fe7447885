"""
Quaternion operations for node rotations in skelgraft.

Quaternions are represented as (w, x, y, z) where w is the scalar part
and (x, y, z) is the vector part. glTF stores rotations as (x, y, z, w);
use ``from_gltf`` / ``to_gltf`` at the document boundary.

All operations support batched inputs with shape (..., 4).
"""

from typing import Sequence, Union
import numpy as np
import torch
import torch.nn.functional as F

from ..core.constants import DEFAULT_EPS_NORM


QuaternionLike = Union[torch.Tensor, np.ndarray, Sequence[float]]


def as_tensor(q: QuaternionLike, dtype: torch.dtype = torch.float64) -> torch.Tensor:
    """Convert array-like input to a tensor of the given dtype."""
    if isinstance(q, torch.Tensor):
        return q.to(dtype)
    return torch.as_tensor(np.asarray(q, dtype=np.float64), dtype=dtype)


def from_gltf(q: QuaternionLike) -> torch.Tensor:
    """
    Reorder a glTF quaternion [x, y, z, w] to [w, x, y, z].

    Args:
        q: Quaternion(s) of shape (..., 4) in glTF order

    Returns:
        Quaternion(s) of shape (..., 4) as [w, x, y, z]
    """
    q = as_tensor(q)
    return torch.cat([q[..., 3:], q[..., :3]], dim=-1)


def to_gltf(q: torch.Tensor) -> torch.Tensor:
    """Reorder [w, x, y, z] to the glTF order [x, y, z, w]."""
    return torch.cat([q[..., 1:], q[..., :1]], dim=-1)


def normalize_quaternion(q: torch.Tensor, eps: float = DEFAULT_EPS_NORM) -> torch.Tensor:
    """
    Normalize quaternion to unit length.

    Args:
        q: Quaternion tensor of shape (..., 4) as [w, x, y, z]
        eps: Small constant for numerical stability

    Returns:
        Normalized quaternion of shape (..., 4)
    """
    return F.normalize(q, p=2, dim=-1, eps=eps)


def quaternion_to_matrix(q: torch.Tensor) -> torch.Tensor:
    """
    Convert unit quaternion to 3x3 rotation matrix.

    Args:
        q: Unit quaternion of shape (..., 4) as [w, x, y, z]

    Returns:
        Rotation matrix of shape (..., 3, 3)
    """
    q = normalize_quaternion(q)
    w, x, y, z = q.unbind(dim=-1)

    r00 = 1 - 2 * (y * y + z * z)
    r01 = 2 * (x * y - z * w)
    r02 = 2 * (x * z + y * w)

    r10 = 2 * (x * y + z * w)
    r11 = 1 - 2 * (x * x + z * z)
    r12 = 2 * (y * z - x * w)

    r20 = 2 * (x * z - y * w)
    r21 = 2 * (y * z + x * w)
    r22 = 1 - 2 * (x * x + y * y)

    return torch.stack([
        torch.stack([r00, r01, r02], dim=-1),
        torch.stack([r10, r11, r12], dim=-1),
        torch.stack([r20, r21, r22], dim=-1),
    ], dim=-2)


def matrix_to_quaternion(R: torch.Tensor) -> torch.Tensor:
    """
    Convert 3x3 rotation matrix to unit quaternion.

    Uses the Shepperd method for numerical stability.

    Args:
        R: Rotation matrix of shape (..., 3, 3)

    Returns:
        Unit quaternion of shape (..., 4) as [w, x, y, z]
    """
    batch_shape = R.shape[:-2]
    R = R.reshape(-1, 3, 3)
    B = R.shape[0]

    trace = R[:, 0, 0] + R[:, 1, 1] + R[:, 2, 2]

    q = torch.zeros(B, 4, device=R.device, dtype=R.dtype)

    # Case 1: trace > 0
    mask1 = trace > 0
    s1 = torch.sqrt(trace[mask1] + 1.0) * 2  # s = 4 * w
    q[mask1, 0] = 0.25 * s1
    q[mask1, 1] = (R[mask1, 2, 1] - R[mask1, 1, 2]) / s1
    q[mask1, 2] = (R[mask1, 0, 2] - R[mask1, 2, 0]) / s1
    q[mask1, 3] = (R[mask1, 1, 0] - R[mask1, 0, 1]) / s1

    # Case 2: R[0,0] is largest diagonal
    mask2 = (~mask1) & (R[:, 0, 0] > R[:, 1, 1]) & (R[:, 0, 0] > R[:, 2, 2])
    s2 = torch.sqrt(1.0 + R[mask2, 0, 0] - R[mask2, 1, 1] - R[mask2, 2, 2]) * 2
    q[mask2, 0] = (R[mask2, 2, 1] - R[mask2, 1, 2]) / s2
    q[mask2, 1] = 0.25 * s2
    q[mask2, 2] = (R[mask2, 0, 1] + R[mask2, 1, 0]) / s2
    q[mask2, 3] = (R[mask2, 0, 2] + R[mask2, 2, 0]) / s2

    # Case 3: R[1,1] is largest diagonal
    mask3 = (~mask1) & (~mask2) & (R[:, 1, 1] > R[:, 2, 2])
    s3 = torch.sqrt(1.0 + R[mask3, 1, 1] - R[mask3, 0, 0] - R[mask3, 2, 2]) * 2
    q[mask3, 0] = (R[mask3, 0, 2] - R[mask3, 2, 0]) / s3
    q[mask3, 1] = (R[mask3, 0, 1] + R[mask3, 1, 0]) / s3
    q[mask3, 2] = 0.25 * s3
    q[mask3, 3] = (R[mask3, 1, 2] + R[mask3, 2, 1]) / s3

    # Case 4: R[2,2] is largest diagonal
    mask4 = (~mask1) & (~mask2) & (~mask3)
    s4 = torch.sqrt(1.0 + R[mask4, 2, 2] - R[mask4, 0, 0] - R[mask4, 1, 1]) * 2
    q[mask4, 0] = (R[mask4, 1, 0] - R[mask4, 0, 1]) / s4
    q[mask4, 1] = (R[mask4, 0, 2] + R[mask4, 2, 0]) / s4
    q[mask4, 2] = (R[mask4, 1, 2] + R[mask4, 2, 1]) / s4
    q[mask4, 3] = 0.25 * s4

    q = q.reshape(*batch_shape, 4)
    return normalize_quaternion(q)
