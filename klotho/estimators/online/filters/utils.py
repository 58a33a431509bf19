""" Utility definitions for the covariance matrices used by the filters """
import numpy as np


def is_positive_semi_definite(Sig: np.ndarray, atol: float = 1e-12) -> bool:
    """
    Check whether a matrix is symmetric and has no eigenvalues below ``-atol``

    Args:
        Sig: matrix to check for positive semi-definiteness
        atol: tolerance for symmetry and for negative eigenvalues

    Returns:
        Whether the matrix is symmetric positive semi-definite
    """
    if not np.allclose(Sig, Sig.T, rtol=0, atol=atol):
        return False
    return bool(np.all(np.linalg.eigvalsh(Sig) >= -atol))


def enforce_positive_semi_definiteness(Sig: np.ndarray) -> np.ndarray:
    """
    Finds nearest symmetric positive semi-definite matrix to the one provided.

    Matrices which are already symmetric and positive semi-definite are returned unchanged,
    up to round-off error, so the operation may be applied at every filter step.

    Ref.: Nicholas J. Higham, “Computing a Nearest Symmetric Positive
    Semidefinite Matrix,” Linear Algebra and its Applications, 103,
    103–118, 1988

    Args:
        Sig: matrix that should be positive semi-definite
    """
    # Perform singular value decomposition
    _, S_diagonal, V_conjugate_transpose = np.linalg.svd(Sig)
    H_matrix = np.matmul(V_conjugate_transpose.T, np.matmul(np.diag(S_diagonal), V_conjugate_transpose))
    return (Sig + Sig.T + H_matrix + H_matrix.T) / 4
