"""
Tests for quaternion operations.

Quaternions are (w, x, y, z) = w + xi + yj + zk, Hamilton convention,
right-handed rotations.
"""

import math

import pytest
import torch

from skelgraft.utils.quaternion import (
    as_tensor,
    normalize_quaternion,
    quaternion_to_matrix,
    matrix_to_quaternion,
)


def _q(*values):
    return torch.tensor(values, dtype=torch.float64)


ONE = _q(1.0, 0.0, 0.0, 0.0)


# =============================================================================
# Normalization
# =============================================================================

class TestNormalizeQuaternion:
    """Tests for quaternion normalization."""

    def test_unit_norm(self):
        q = normalize_quaternion(_q(2.0, 4.0, 0.0, 0.0))
        assert torch.allclose(q, _q(1.0, 2.0, 0.0, 0.0) / math.sqrt(5))

    def test_tiny_input_stays_finite(self):
        assert torch.isfinite(normalize_quaternion(_q(1e-20, 0.0, 0.0, 0.0))).all()

    def test_as_tensor_from_list(self):
        q = as_tensor([0.0, 0.0, 0.0, 1.0])
        assert q.dtype == torch.float64
        assert q.shape == (4,)


# =============================================================================
# Matrix Conversion
# =============================================================================

class TestMatrixConversion:
    """Tests for quaternion <-> rotation matrix."""

    def test_identity(self):
        assert torch.allclose(quaternion_to_matrix(ONE), torch.eye(3, dtype=torch.float64))

    def test_quarter_turn_about_x(self):
        half = math.sqrt(0.5)
        R = quaternion_to_matrix(_q(half, half, 0.0, 0.0))
        # y -> z
        assert torch.allclose(R @ _q(0.0, 1.0, 0.0), _q(0.0, 0.0, 1.0), atol=1e-12)

    def test_orthonormal(self):
        R = quaternion_to_matrix(normalize_quaternion(_q(0.4, 0.1, -0.7, 0.2)))
        assert torch.allclose(R @ R.T, torch.eye(3, dtype=torch.float64), atol=1e-12)
        assert torch.isclose(torch.linalg.det(R), torch.tensor(1.0, dtype=torch.float64))

    @pytest.mark.parametrize("q", [
        (1.0, 0.0, 0.0, 0.0),
        (0.0, 1.0, 0.0, 0.0),
        (0.0, 0.0, 0.0, 1.0),
        (0.4, 0.1, -0.7, 0.2),
    ])
    def test_round_trip_up_to_sign(self, q):
        q = normalize_quaternion(_q(*q))
        back = matrix_to_quaternion(quaternion_to_matrix(q))
        assert torch.allclose(back, q, atol=1e-9) or torch.allclose(back, -q, atol=1e-9)
