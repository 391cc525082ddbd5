# frozenFlowUtils.py
"""
Frozen-flow evolution of turbulence layers.

A layer is translated by the wind with sub-pixel cubic spline resampling. Its
1-pixel border is generated beforehand from the statistics of the von Karman
model: the border X is predicted from the band of pixels Z next to it,

    X = A Z + B w,   A = <X Z^T> <Z Z^T>^-1,   B B^T = <X X^T> - A <Z X^T>,

with w a white Gaussian vector, so the enlarged field keeps the right
covariance and the screen can be translated forever.
"""

import logging
import numpy as np
import scipy.linalg
from pyTurbAO.exceptions import ConfigurationError, NumericalError
from pyTurbAO.phaseStatsUtils import covariance_matrix, fourier_phase_screen
from pyTurbAO.splineInterpolation import spline2
from pyTurbAO.turbulenceLayerClass import borderPredictor

logger = logging.getLogger(__name__)


def _layer_geometry(D, pixelLength, fieldOfView, altitude):
    """
    Extent and sampling of a layer seen by every direction of the field.

    Returns
    -------
    D_layer : float
        Layer extent [m], an exact multiple of ``pixelLength``.
    nPixel : int
    """
    if D <= 0 or pixelLength <= 0:
        raise ConfigurationError("Layer geometry needs a positive diameter and pixel length")
    D_layer = D + 2 * altitude * np.tan(fieldOfView / 2)
    nPixel = 1 + int(round(D_layer / pixelLength))
    if nPixel < 3:
        raise ConfigurationError(f"A layer must be at least 3 pixels wide (got {nPixel})")
    return pixelLength * (nPixel - 1), nPixel


def _synthesize_layer(layer, rng):
    """Draw an independent phase screen with the statistics of ``layer``."""
    return fourier_phase_screen(rng, layer.layerR0, layer.L0, layer.D, layer.nPixel)


def _inner_outer_masks(nPixel, nInner=2):
    """
    Masks over the (nPixel+2)^2 enlarged grid.

    outerMask is the 1-pixel ring around the field, innerMask the band of
    ``nInner`` pixels of the field adjacent to it (the whole field when it is
    too small to have a core).
    """
    n = nPixel + 2
    outerMask = np.ones((n, n), dtype=bool)
    outerMask[1:-1, 1:-1] = False
    innerMask = ~outerMask
    if nPixel - 2 * nInner > 0:
        innerMask[1 + nInner:-1 - nInner, 1 + nInner:-1 - nInner] = False
    return innerMask, outerMask


def _predictor_points(nPixel, pixelLength, innerMask, outerMask):
    """Complex coordinates (x + iy) of the inner and outer pixels."""
    u = np.arange(nPixel + 2) * pixelLength
    x, y = np.meshgrid(u, u)
    z = x + 1j * y
    return z[innerMask], z[outerMask]


def _lower_cholesky(BBt, ZZt, layer_index, tol):
    """
    Lower Cholesky factor of the residual covariance.

    A matrix that is only indefinite at the rounding level is regularised with
    a diagonal jitter; a clearly indefinite one raises NumericalError.
    """
    try:
        return scipy.linalg.cholesky(BBt, lower=True)
    except np.linalg.LinAlgError:
        eigenvalues = np.linalg.eigvalsh(BBt)
        scale = max(np.max(np.abs(eigenvalues)), np.finfo(float).tiny)
        condition = np.linalg.cond(ZZt)
        if eigenvalues[0] < -tol * scale:
            raise NumericalError(
                f"Layer {layer_index}: residual border covariance is not positive definite "
                f"(min eigenvalue {eigenvalues[0]:.3e}, cond(ZZt) {condition:.3e})",
                layer_index=layer_index, min_eigenvalue=eigenvalues[0], condition=condition)
        jitter = abs(eigenvalues[0]) + tol * scale
        logger.warning("Layer %d: residual border covariance regularised with a %.3e jitter "
                       "(min eigenvalue %.3e)", layer_index, jitter, eigenvalues[0])
        return scipy.linalg.cholesky(BBt + jitter * np.eye(BBt.shape[0]), lower=True)


def _build_predictor(layer, covariance=covariance_matrix, nInner=2, tol=1e-8):
    """
    Compute the border predictor (A, B) of a layer.

    Parameters
    ----------
    layer : turbulenceLayer
    covariance : callable
        ``covariance(rho1, [rho2], r0, L0, fractionalR0)`` returning the
        phase covariance between complex coordinate sets.
    nInner : int
        Width of the band of known pixels the border is predicted from.
    tol : float
        Relative tolerance on negative eigenvalues of B B^T.

    Returns
    -------
    borderPredictor
    """
    logger.info("-->> Computing border predictor of layer %d <<--", layer.index)
    innerMask, outerMask = _inner_outer_masks(layer.nPixel, nInner)
    innerZ, outerZ = _predictor_points(layer.nPixel, layer.pixelLength, innerMask, outerMask)

    if layer.fractionnalR0 == 0:
        logger.debug("Layer %d carries no turbulence: empty predictor", layer.index)
        return borderPredictor(np.zeros((outerZ.size, innerZ.size)), np.zeros((outerZ.size, outerZ.size)),
                               innerMask, outerMask, layer.signature)

    ZZt = covariance(innerZ, layer.r0, layer.L0, layer.fractionnalR0)
    ZXt = covariance(innerZ, outerZ, layer.r0, layer.L0, layer.fractionnalR0)
    XXt = covariance(outerZ, layer.r0, layer.L0, layer.fractionnalR0)

    try:
        # A = ZXt^T ZZt^-1 with ZZt symmetric
        A = scipy.linalg.solve(ZZt, ZXt, assume_a='sym').T
    except np.linalg.LinAlgError as e:
        condition = np.linalg.cond(ZZt)
        raise NumericalError(f"Layer {layer.index}: inner covariance is singular ({e})",
                             layer_index=layer.index, condition=condition) from e

    BBt = XXt - A @ ZXt
    BBt = 0.5 * (BBt + BBt.T)
    B = _lower_cholesky(BBt, ZZt, layer.index, tol)
    logger.debug("Layer %d predictor: A %s, B %s", layer.index, A.shape, B.shape)
    return borderPredictor(A, B, innerMask, outerMask, layer.signature)


def _extend_border(layer, predictor, state):
    """
    Generate a fresh border around the current phase of ``layer``.

    The enlarged (nPixel+2)^2 field is stored in ``state.mapShift`` and
    returned. This is the only place random numbers are drawn once the layer
    has been synthesized.
    """
    Z = layer.phase[predictor.innerMask[1:-1, 1:-1]]
    w = state.rng.standard_normal(predictor.B.shape[1])
    X = predictor.A @ Z + predictor.B @ w

    n = layer.nPixel + 2
    mapShift = np.empty((n, n))
    mapShift[predictor.outerMask] = X
    mapShift[1:-1, 1:-1] = layer.phase
    state.mapShift = mapShift
    return mapShift


def _shift_period(windVelocity, pixelLength, dt):
    """
    Number of ticks the layer can move before a new border is needed: the
    time to cross one pixel along the fastest axis, at least one tick.
    """
    if not np.isfinite(dt):
        return 1
    pixelStep = np.abs(np.asarray(windVelocity, dtype=float)) * dt / pixelLength
    moving = pixelStep > 0
    if not np.any(moving):
        return 1
    # rounding guard so that exact fractions of a pixel give the exact period
    return max(int(np.floor(np.min(1.0 / pixelStep[moving]) + 1e-9)), 1)


def _resample(mapShift, u0, u, shift):
    """Resample the enlarged field at ``u - shift`` (shift = (x, y) in meters)."""
    return spline2((u0, u0), mapShift, (u - shift[1], u - shift[0]))


def _advance_layer(layer, predictor, state, dt):
    """
    Move ``layer`` by one tick of duration ``dt`` under its wind.

    Returns the new phase (also stored in ``layer.phase``).
    """
    # uncorrelated screens from one tick to the next
    if np.isinf(dt):
        layer.phase = _synthesize_layer(layer, state.rng)
        return layer.phase

    if layer.isFrozen:
        logger.debug("Layer %d has no wind: translation skipped", layer.index)
        return layer.phase

    pixelLength = layer.pixelLength
    u0 = np.arange(-1, layer.nPixel + 1) * pixelLength
    u = np.arange(layer.nPixel) * pixelLength

    if state.count == 0 or state.mapShift is None:
        _extend_border(layer, predictor, state)
        state.leap = np.zeros(2)
        state.count = 0

    state.leap = state.leap + layer.windVelocity * dt / pixelLength

    # never read further than the one pixel border: move and extend again
    while np.any(np.abs(state.leap) > 1):
        step = np.minimum(np.abs(state.leap), 1.0) * np.sign(state.leap)
        layer.phase = _resample(state.mapShift, u0, u, step * pixelLength)
        state.leap = state.leap - step
        _extend_border(layer, predictor, state)

    layer.phase = _resample(state.mapShift, u0, u, state.leap * pixelLength)
    state.count = (state.count + 1) % state.nShift
    return layer.phase


def _composite(layers, sampler, radius, directionVector, height=np.inf, wavelengthRatio=1.0):
    """
    Sum the layers along one line of sight.

    Parameters
    ----------
    layers : sequence of turbulenceLayer
    sampler : ndarray
        Normalised pupil coordinates in [-1, 1].
    radius : float
        Telescope radius [m].
    directionVector : (dx, dy)
        Offset per meter of altitude of the line of sight.
    height : float
        Source height [m]; the footprint shrinks by (1 - h/height) at
        altitude h.
    wavelengthRatio : float
        Atmosphere wavelength over source wavelength.

    Returns
    -------
    ndarray, shape (sampler.size, sampler.size)
        New array; the layers are left untouched.
    """
    out = np.zeros((sampler.size, sampler.size))
    for layer in layers:
        h = layer.altitude
        if h == 0:
            if layer.nPixel != sampler.size:
                raise ConfigurationError(
                    f"Ground layer {layer.index} is {layer.nPixel} pixels wide, "
                    f"the pupil is sampled with {sampler.size}")
            out += layer.phase
            continue
        layerR = radius * (1 - h / height)
        uq = sampler * layerR
        xc = h * directionVector[0]
        yc = h * directionVector[1]
        s = layer.layerSampling
        out += spline2((s, s), layer.phase, (uq - yc, uq - xc))
    return out * wavelengthRatio
