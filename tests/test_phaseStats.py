"""
To run the tests in this file using pytest, navigate to the repository:

    cd /path/to/pyTurbAO

Execute the following command in your terminal:

    pytest tests/test_phaseStats.py

Ensure that you have pytest installed in your environment. You can install it via pip if necessary:

    pip install pytest
"""

import pytest
import numpy as np
import logging
from pyTurbAO.phaseStatsUtils import covariance_matrix, variance, structure_function, \
    spectrum, otf, fourier_phase_screen, fried_parameter_scaling, seeing

# Configure logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

R0 = 0.15
L0 = 30.0


@pytest.fixture
def points():
    """
    Fixture providing a small set of complex coordinates (x + iy) in meters.
    """
    x, y = np.meshgrid(np.arange(4) * 0.2, np.arange(3) * 0.3)
    return (x + 1j*y).ravel()


def test_covariance_at_zero_distance_is_the_variance(points):
    logger.info("Testing the covariance diagonal.")
    C = covariance_matrix(points, R0, L0, 1.0)
    np.testing.assert_allclose(np.diag(C), variance(R0, L0), rtol=1e-12)
    # continuous at the origin
    C_small = covariance_matrix(np.array([0j]), np.array([1e-6 + 0j]), R0, L0, 1.0)
    np.testing.assert_allclose(C_small[0, 0], variance(R0, L0), rtol=1e-4)
    logger.info("Covariance diagonal test passed.")


def test_covariance_is_symmetric(points):
    C = covariance_matrix(points, R0, L0, 1.0)
    np.testing.assert_allclose(C, C.T, rtol=1e-12)
    other = points[:5] + 0.05 + 0.1j
    C12 = covariance_matrix(points, other, R0, L0, 1.0)
    C21 = covariance_matrix(other, points, R0, L0, 1.0)
    assert C12.shape == (points.size, other.size)
    np.testing.assert_allclose(C12, C21.T, rtol=1e-12)


def test_covariance_is_positive_definite(points):
    C = covariance_matrix(points, R0, L0, 1.0)
    assert np.min(np.linalg.eigvalsh(C)) > 0


def test_covariance_scales_with_fractional_r0(points):
    C = covariance_matrix(points, R0, L0, 1.0)
    np.testing.assert_allclose(covariance_matrix(points, R0, L0, 0.25), 0.25 * C, rtol=1e-12)


def test_covariance_rejects_bad_arguments(points):
    with pytest.raises(ValueError):
        covariance_matrix(points, R0, np.inf, 1.0)
    with pytest.raises(ValueError):
        covariance_matrix(points, R0)


def test_structure_function_follows_kolmogorov_at_small_scales():
    """
    Far below the outer scale the von Karman structure function is 6.88 (rho/r0)^(5/3).
    """
    logger.info("Testing the structure function.")
    rho = np.array([1e-3, 2e-3, 5e-3])
    kolmogorov = 6.88 * (rho / R0) ** (5/3)
    np.testing.assert_allclose(structure_function(rho, R0, 1e5), kolmogorov, rtol=0.02)
    np.testing.assert_allclose(structure_function(rho, R0, np.inf), kolmogorov, rtol=1e-3)
    assert structure_function(np.array([0.0]), R0, L0)[0] == 0
    # saturates at twice the variance
    np.testing.assert_allclose(structure_function(np.array([50 * L0]), R0, L0), 2 * variance(R0, L0), rtol=1e-3)
    logger.info("Structure function test passed.")


def test_spectrum_integrates_to_the_variance():
    """
    For the von Karman PSD, the integral over the plane is (6 pi / 5) PSD(0) / L0^2.
    """
    psd0 = spectrum(np.array([0.0]), R0, L0)[0]
    np.testing.assert_allclose(6 * np.pi / 5 * psd0 / L0**2, variance(R0, L0), rtol=1e-10)
    np.testing.assert_allclose(spectrum(np.array([1.0]), R0, np.inf),
                               0.023 * R0**(-5/3), rtol=1e-2)
    assert spectrum(np.array([0.0]), R0, np.inf)[0] == 0


def test_otf_is_one_at_the_origin():
    values = otf(np.array([0.0, 0.1, 1.0]), R0, L0)
    assert values[0] == 1
    assert np.all(np.diff(values) < 0)


def test_phase_screen_shape_and_piston():
    rng = np.random.default_rng(1)
    screen = fourier_phase_screen(rng, R0, L0, 2.0, 33)
    assert screen.shape == (33, 33)
    assert abs(screen.mean()) < 1e-10


def test_phase_screen_is_repeatable():
    a = fourier_phase_screen(np.random.default_rng(11), R0, L0, 1.0, 16)
    b = fourier_phase_screen(np.random.default_rng(11), R0, L0, 1.0, 16)
    c = fourier_phase_screen(np.random.default_rng(12), R0, L0, 1.0, 16)
    np.testing.assert_array_equal(a, b)
    assert not np.allclose(a, c)


def test_phase_screen_without_turbulence_is_flat():
    screen = fourier_phase_screen(np.random.default_rng(0), R0, L0, 1.0, 8, fractionalR0=0.0)
    np.testing.assert_array_equal(screen, np.zeros((8, 8)))


def test_phase_screen_preserves_the_structure_function():
    """
    The empirical structure function of many independent screens matches the
    analytic one at a lag of a few pixels.
    """
    logger.info("Testing covariance preservation of the synthesized screens.")
    rng = np.random.default_rng(2024)
    nPixel = 64
    D = 6.3
    dx = D / (nPixel - 1)
    lag = 4
    samples = []
    for _ in range(200):
        screen = fourier_phase_screen(rng, 0.1, 20.0, D, nPixel)
        samples.append(np.mean((screen[:, lag:] - screen[:, :-lag])**2))
        samples.append(np.mean((screen[lag:, :] - screen[:-lag, :])**2))
    empirical = np.mean(samples)
    expected = structure_function(np.array([lag * dx]), 0.1, 20.0)[0]
    logger.info("Structure function at %.2fm: empirical %.3f, analytic %.3f", lag * dx, empirical, expected)
    assert empirical == pytest.approx(expected, rel=0.25)


def test_phase_screen_covariance_matches_the_piston_removed_model():
    """
    The empirical covariance of many small screens matches P C P, the model
    covariance with the piston of the screen removed.
    """
    logger.info("Testing the pixel covariance of the synthesized screens.")
    rng = np.random.default_rng(7)
    nPixel = 5
    D = 1.0
    nTrial = 4000
    screens = np.array([fourier_phase_screen(rng, R0, L0, D, nPixel).ravel() for _ in range(nTrial)])
    empirical = np.cov(screens, rowvar=False)

    u = np.linspace(0, D, nPixel)
    x, y = np.meshgrid(u, u)
    C = covariance_matrix((x + 1j*y).ravel(), R0, L0, 1.0)
    P = np.eye(nPixel**2) - 1.0 / nPixel**2
    model = P @ C @ P
    error = np.max(np.abs(empirical - model)) / np.max(np.abs(model))
    logger.info("Max relative covariance error: %.3f", error)
    assert error < 0.35


def test_r0_wavelength_scaling_and_seeing():
    np.testing.assert_allclose(fried_parameter_scaling(0.1, 500e-9, 1000e-9), 0.1 * 2**(6/5))
    # 0.98 lambda / r0 with r0 = 10cm at 500nm is about 1 arcsec
    assert seeing(0.1, 500e-9) == pytest.approx(1.01, rel=0.01)
