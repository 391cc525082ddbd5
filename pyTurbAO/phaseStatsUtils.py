# phaseStatsUtils.py
"""
Von Karman phase statistics: covariance, structure function, power spectrum,
optical transfer function and FFT-based phase screen synthesis.

All phases are in radians at the wavelength r0 is given at.
"""

import math
import logging
import numpy as np
import numba as nb
from scipy.special import kv, gamma  # kv is the Bessel function of the second kind

logger = logging.getLogger(__name__)

# Gamma function values used by the von Karman model
GAMMA_6_5 = gamma(6/5)
GAMMA_11_6 = gamma(11/6)
GAMMA_5_6 = gamma(5/6)

# (24/5 Gamma(6/5))^(5/6)
BASE_CONST = (24 * GAMMA_6_5 / 5) ** (5/6)


@nb.njit(parallel=True, cache=True)
def _pairwise_distance(rho1, rho2):
    """Distances between two sets of complex coordinates (x + iy)."""
    n = rho1.shape[0]
    m = rho2.shape[0]
    out = np.empty((n, m), dtype=np.float64)
    for i in nb.prange(n):
        for j in range(m):
            out[i, j] = np.abs(rho1[i] - rho2[j])
    return out


def _as_complex_points(rho):
    return np.ascontiguousarray(np.asarray(rho).ravel(), dtype=np.complex128)


def variance(r0, L0):
    """
    Phase variance of the von Karman model.

    Parameters
    ----------
    r0 : float
        Fried parameter [m].
    L0 : float
        Outer scale [m].

    Returns
    -------
    float
        Phase variance [rad^2].
    """
    L0_r0_ratio = (L0 / r0) ** (5/3)
    return BASE_CONST * GAMMA_11_6 * GAMMA_5_6 / (2 * np.pi**(8/3)) * L0_r0_ratio


def _covariance_constants(r0, L0):
    """Prefactor of the non-zero distance covariance and the variance term."""
    cst = BASE_CONST * GAMMA_11_6 / (2**(5/6) * np.pi**(8/3)) * (L0 / r0) ** (5/3)
    return cst, variance(r0, L0)


def _compute_block(rho_block, L0, cst, var_term):
    """
    Vectorized computation of covariance values for a matrix block
    """
    out = np.full(rho_block.shape, var_term, dtype=np.float64)
    mask = rho_block != 0
    u = (2 * np.pi * rho_block[mask]) / L0
    out[mask] = cst * u**(5/6) * kv(5/6, u)
    return out


def covariance_matrix(*args):
    """
    Phase covariance matrix of the von Karman turbulence model.

    Parameters
    ----------
    *args : (rho1, [rho2], r0, L0, fractionalR0)
        rho1, rho2 : complex coordinate arrays (x + iy) [m]
        r0 : Fried parameter [m]
        L0 : outer scale [m]
        fractionalR0 : turbulence layer weighting factor

    Returns
    -------
    ndarray, shape (rho1.size, rho2.size)
        Covariance matrix [rad^2]. With a single coordinate set the
        auto-covariance is returned.
    """
    if len(args) not in {4, 5}:
        raise ValueError("Expected 4 or 5 arguments: (rho1, [rho2], r0, L0, fractionalR0)")

    rho1 = _as_complex_points(args[0])
    if len(args) == 4:
        r0, L0, fractionalR0 = args[1:]
        rho2 = rho1
    else:
        rho2, r0, L0, fractionalR0 = args[1:]
        rho2 = _as_complex_points(rho2)

    if not np.isfinite(L0):
        raise ValueError("The von Karman covariance requires a finite outer scale L0")

    cst, var_term = _covariance_constants(r0, L0)

    rho = _pairwise_distance(rho1, rho2)
    n, m = rho.shape

    # Block processing for large matrices
    block_size = 5000
    if max(n, m) > block_size:
        out = np.empty((n, m), dtype=np.float64)
        for i in range(0, n, block_size):
            i_end = min(i + block_size, n)
            for j in range(0, m, block_size):
                j_end = min(j + block_size, m)
                out[i:i_end, j:j_end] = _compute_block(rho[i:i_end, j:j_end], L0, cst, var_term)
        out *= fractionalR0
        return out

    return _compute_block(rho, L0, cst, var_term) * fractionalR0


def structure_function(rho, r0, L0):
    """
    Phase structure function D(rho) = 2 (C(0) - C(rho)) [rad^2].

    Falls back to the Kolmogorov law 6.88 (rho/r0)^(5/3) for an infinite
    outer scale.
    """
    rho = np.asarray(rho, dtype=np.float64)
    if np.isinf(L0):
        return 2 * (24 * GAMMA_6_5 / 5) ** (5/6) * (rho / r0) ** (5/3)
    out = np.zeros(rho.shape)
    mask = rho != 0
    if np.any(mask):
        cst, var_term = _covariance_constants(r0, L0)
        out[mask] = 2 * (var_term - _compute_block(rho[mask], L0, cst, var_term))
    return out


def spectrum(f, r0, L0):
    """
    Von Karman phase power spectral density.

    Parameters
    ----------
    f : array_like
        Spatial frequency modulus [1/m].

    Returns
    -------
    ndarray
        PSD [rad^2 m^2]. Kolmogorov when L0 is infinite (the DC term is then
        set to zero).
    """
    f = np.asarray(f, dtype=np.float64)
    cst = BASE_CONST * GAMMA_11_6**2 / (2 * np.pi**(11/3)) * r0**(-5/3)
    kappa0_sq = 0.0 if np.isinf(L0) else 1.0 / L0**2
    with np.errstate(divide='ignore'):
        out = cst * (f**2 + kappa0_sq) ** (-11/6)
    out[~np.isfinite(out)] = 0.0
    return out


def otf(rho, r0, L0):
    """
    Long-exposure atmospheric optical transfer function exp(-D(rho)/2).
    """
    return np.exp(-0.5 * structure_function(rho, r0, L0))


def fourier_phase_screen(rng, r0, L0, D, nPixel, fractionalR0=1.0, nSubHarmonics=3, oversize=2):
    """
    Generate a von Karman phase screen using the Fourier method with
    sub-harmonic compensation.

    Parameters
    ----------
    rng : numpy.random.Generator
        Random stream the white noise is drawn from.
    r0 : float
        Fried parameter [m].
    L0 : float
        Outer scale [m].
    D : float
        Physical size of the screen [m]; the pixel pitch is D/(nPixel-1).
    nPixel : int
        Screen size in pixels.
    fractionalR0 : float
        Fraction of the turbulence in this screen.
    nSubHarmonics : int
        Number of sub-harmonic levels (0 = none).
    oversize : int
        The FFT grid is ``oversize`` times larger than the screen to limit
        its periodicity; the screen is cropped out of it.

    Returns
    -------
    screen : ndarray, shape (nPixel, nPixel)
        Zero-mean phase screen [rad].
    """
    if nPixel < 2:
        raise ValueError("nPixel must be at least 2")
    layer_r0 = r0 * fractionalR0 ** (-3/5) if fractionalR0 > 0 else np.inf
    if not np.isfinite(layer_r0):
        return np.zeros((nPixel, nPixel))

    dx = D / (nPixel - 1)
    N = max(int(oversize), 1) * nPixel
    df = 1.0 / (N * dx)

    fx = np.fft.fftfreq(N, d=dx)
    fx, fy = np.meshgrid(fx, fx)
    psd = spectrum(np.hypot(fx, fy), layer_r0, L0)
    psd[0, 0] = 0.0

    cn = rng.standard_normal((N, N)) + 1j * rng.standard_normal((N, N))
    cn *= np.sqrt(psd) * df
    screen = np.real(np.fft.ifft2(cn)) * N * N
    screen = screen[:nPixel, :nPixel]

    if nSubHarmonics > 0:
        x = np.arange(nPixel) * dx
        X, Y = np.meshgrid(x, x)
        screen_sh = np.zeros((nPixel, nPixel))
        for p in range(1, nSubHarmonics + 1):
            dfp = df / 3**p
            fs = np.array([-1, 0, 1]) * dfp
            fxs, fys = np.meshgrid(fs, fs)
            psd_s = spectrum(np.hypot(fxs, fys), layer_r0, L0)
            psd_s[1, 1] = 0.0
            cn_s = rng.standard_normal((3, 3)) + 1j * rng.standard_normal((3, 3))
            cn_s *= np.sqrt(psd_s) * dfp
            for i in range(3):
                for j in range(3):
                    screen_sh += np.real(cn_s[i, j] * np.exp(2j * np.pi * (fxs[i, j] * X + fys[i, j] * Y)))
        screen = screen + screen_sh - screen_sh.mean()

    return screen - screen.mean()


def fried_parameter_scaling(r0, wavelength, newWavelength):
    """r0 scales as the wavelength to the power 6/5."""
    return r0 * (newWavelength / wavelength) ** (6/5)


def seeing(r0, wavelength):
    """Seeing FWHM [arcsec] from r0 [m] at the given wavelength [m]."""
    return 0.98 * wavelength / r0 * 180 * 3600 / math.pi
