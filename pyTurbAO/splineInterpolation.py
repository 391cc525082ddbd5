# splineInterpolation.py
"""
Gridded cubic spline interpolation via tensor products.

The phase screens are resampled with not-a-knot cubic splines applied one
axis at a time. Query points outside the tabulated grid are extrapolated with
the end polynomials: the frozen-flow translation relies on this at the grid
seams, callers mask whatever falls outside the physical aperture.
"""

import logging
import numpy as np
from scipy.interpolate import CubicSpline

logger = logging.getLogger(__name__)


def _check_abscissa(x, n, axis):
    """Return the abscissa of one axis as a float vector matching n samples."""
    x = np.asarray(x, dtype=np.float64).ravel()
    if x.size != n:
        raise ValueError(f"Axis {axis}: {x.size} abscissae for {n} tabulated values")
    if x.size < 2:
        raise ValueError(f"Axis {axis}: at least 2 abscissae are required")
    if np.any(np.diff(x) <= 0):
        raise ValueError(f"Axis {axis}: abscissae must be strictly increasing")
    return x


def spline2(x, v, xi):
    """
    Tensor-product not-a-knot cubic spline interpolation.

    Parameters
    ----------
    x : sequence of 1D arrays
        Strictly increasing abscissae of each of the d axes of ``v``.
    v : ndarray
        Values tabulated on the full tensor grid, shape
        ``(len(x[0]), ..., len(x[d-1]))``.
    xi : sequence of 1D arrays
        Query coordinates along each axis. They do not need to be sorted nor
        to lie inside the grid.

    Returns
    -------
    ndarray
        Interpolated values on the Cartesian product of ``xi``, shape
        ``(len(xi[0]), ..., len(xi[d-1]))``.
    """
    values = np.asarray(v, dtype=np.float64)
    d = len(x)
    if values.ndim != d:
        raise ValueError(f"Expected a {d}D array of values, got {values.ndim}D")
    if len(xi) != d:
        raise ValueError(f"Expected {d} query vectors, got {len(xi)}")

    # interpolate along the last axis first, then the next one, etc.
    for axis in range(d - 1, -1, -1):
        xAxis = _check_abscissa(x[axis], values.shape[axis], axis)
        query = np.asarray(xi[axis], dtype=np.float64).ravel()
        pp = CubicSpline(xAxis, values, axis=axis, bc_type='not-a-knot', extrapolate=True)
        values = pp(query)
    return values


def spline_matrix(x, xi):
    """
    Linear operator of the 1D not-a-knot spline.

    Parameters
    ----------
    x : 1D array
        Strictly increasing abscissae.
    xi : 1D array
        Query coordinates.

    Returns
    -------
    W : ndarray, shape (len(xi), len(x))
        Matrix such that ``W @ y`` interpolates samples ``y`` at ``xi``.
        For a 2D field, ``spline2((y, x), v, (yi, xi)) == Wy @ v @ Wx.T``.
    """
    x = _check_abscissa(x, np.size(x), 0)
    query = np.asarray(xi, dtype=np.float64).ravel()
    pp = CubicSpline(x, np.eye(x.size), axis=0, bc_type='not-a-knot', extrapolate=True)
    return pp(query)
