"""4x4 affine transform helpers."""

import numpy as np
from trimesh import transformations as tf


def identity() -> np.ndarray:
    return np.eye(4)


def translation(x: float, y: float, z: float) -> np.ndarray:
    return tf.translation_matrix([x, y, z])


def as_matrix(value) -> np.ndarray:
    """Coerce a nested sequence (4x4 or flat 16, row-major) into a matrix."""
    if value is None:
        return identity()
    matrix = np.asarray(value, dtype=np.float64)
    if matrix.shape == (16,):
        matrix = matrix.reshape(4, 4)
    if matrix.shape != (4, 4):
        raise ValueError(f"Expected a 4x4 transform, got shape {matrix.shape}")
    return matrix


def compose(accumulated: np.ndarray, local: np.ndarray) -> np.ndarray:
    """Compose a child placement onto an accumulated transform.

    Child transforms go on the right: ``accumulated @ local``.
    """
    return tf.concatenate_matrices(accumulated, local)


def apply_to_points(matrix: np.ndarray, points) -> np.ndarray:
    """Transform an (N, 3) array of points."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
    if len(pts) == 0:
        return pts.copy()
    homogeneous = np.column_stack([pts, np.ones(len(pts))])
    out = homogeneous @ matrix.T
    w = out[:, 3:4]
    if not np.allclose(w, 1.0):
        out = out / w
    return out[:, :3]


def flips_handedness(matrix: np.ndarray) -> bool:
    """True when the transform mirrors geometry (negative determinant)."""
    return np.linalg.det(matrix[:3, :3]) < 0


def is_identity(matrix: np.ndarray) -> bool:
    return np.allclose(matrix, np.eye(4))
