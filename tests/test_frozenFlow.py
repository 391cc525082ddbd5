"""
To run the tests in this file using pytest, navigate to the repository:

    cd /path/to/pyTurbAO

Execute the following command in your terminal:

    pytest tests/test_frozenFlow.py

Ensure that you have pytest installed in your environment. You can install it via pip if necessary:

    pip install pytest
"""

import copy
import pytest
import numpy as np
import logging
from pyTurbAO import frozenFlowAtmosphere
from pyTurbAO.exceptions import NumericalError, ConfigurationError
from pyTurbAO.phaseStatsUtils import covariance_matrix, variance
from pyTurbAO.turbulenceLayerClass import turbulenceLayer, stepState
from pyTurbAO.frozenFlowUtils import _inner_outer_masks, _predictor_points, _build_predictor, \
    _extend_border, _advance_layer, _shift_period, _layer_geometry, _composite

# Configure logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

R0 = 0.15
L0 = 30.0


@pytest.fixture
def layer():
    """
    Fixture creating a 1m, 5 pixel layer (0.25m pixels) with a random phase.
    """
    logger.debug("Setting up the turbulenceLayer fixture.")
    layer = turbulenceLayer(index=0, altitude=0.0, D=1.0, nPixel=5, r0=R0, L0=L0,
                            fractionnalR0=1.0, windSpeed=1.0, windDirection=0.0)
    layer.phase = np.random.default_rng(3).standard_normal((5, 5))
    return layer


@pytest.fixture
def predictor(layer):
    return _build_predictor(layer)


def end_to_end_config():
    return {
        "atmosphere_parameters": {
            "r0": R0,
            "L0": L0,
            "altitude": [0.0],
            "fractionnalR0": [1.0],
            "windSpeed": [0.0],
            "windDirection": [0.0],
        },
        "telescope_parameters": {
            "D": 1.0,
            "resolution": 5,
            "fieldOfViewInArcsec": 0.0,
            "samplingTime": 0.01,
        },
    }


def test_masks():
    logger.info("Testing inner and outer masks.")
    inner, outer = _inner_outer_masks(5)
    assert inner.shape == outer.shape == (7, 7)
    assert outer.sum() == 24
    assert inner.sum() == 24
    assert not np.any(inner & outer)
    assert not inner[3, 3]

    inner, outer = _inner_outer_masks(10)
    assert outer.sum() == 44
    assert inner.sum() == 100 - 36

    # too small to have a core: the whole field is used
    inner, outer = _inner_outer_masks(4)
    assert inner.sum() == 16
    logger.info("Mask test passed.")


def test_predictor_shapes_and_factorization(layer, predictor):
    logger.info("Testing border predictor construction.")
    assert predictor.A.shape == (24, 24)
    assert predictor.B.shape == (24, 24)
    np.testing.assert_array_equal(np.triu(predictor.B, 1), 0)

    innerZ, outerZ = _predictor_points(layer.nPixel, layer.pixelLength, predictor.innerMask, predictor.outerMask)
    ZZt = covariance_matrix(innerZ, R0, L0, 1.0)
    ZXt = covariance_matrix(innerZ, outerZ, R0, L0, 1.0)
    XXt = covariance_matrix(outerZ, R0, L0, 1.0)
    np.testing.assert_allclose(predictor.A @ ZZt, ZXt.T, atol=1e-6 * variance(R0, L0))
    BBt = XXt - predictor.A @ ZXt
    np.testing.assert_allclose(predictor.B @ predictor.B.T, BBt, atol=1e-6 * variance(R0, L0))
    assert predictor.signature == layer.signature
    logger.info("Border predictor test passed.")


def test_predictor_is_read_only(predictor):
    with pytest.raises(ValueError):
        predictor.A[0, 0] = 1.0
    with pytest.raises(ValueError):
        predictor.B[0, 0] = 1.0


def test_extension_keeps_the_covariance(layer, predictor):
    """
    Over many extensions of phases drawn from the exact model, the structure
    function between new border pixels and the pixels they were predicted
    from matches the analytic one.
    """
    logger.info("Testing extension consistency.")
    rng = np.random.default_rng(42)
    nPixel = layer.nPixel
    u = np.arange(nPixel + 2) * layer.pixelLength
    x, y = np.meshgrid(u, u)
    z = (x + 1j*y).ravel()
    interior = np.zeros((nPixel + 2, nPixel + 2), dtype=bool)
    interior[1:-1, 1:-1] = True
    L = np.linalg.cholesky(covariance_matrix(z[interior.ravel()], R0, L0, 1.0))

    nTrial = 4000
    state = stepState(rng)
    maps = np.empty((nTrial, z.size))
    for t in range(nTrial):
        layer.phase = (L @ rng.standard_normal(nPixel**2)).reshape(nPixel, nPixel)
        maps[t] = _extend_border(layer, predictor, state).ravel()

    outer = predictor.outerMask.ravel()
    known = outer | predictor.innerMask.ravel()
    C = covariance_matrix(z, R0, L0, 1.0)
    D_model = 2 * (variance(R0, L0) - C)
    for i in np.flatnonzero(outer):
        j = np.flatnonzero(known)
        j = j[j != i]
        D_emp = np.mean((maps[:, [i]] - maps[:, j])**2, axis=0)
        np.testing.assert_allclose(D_emp, D_model[i, j], rtol=0.15)
    logger.info("Extension consistency test passed.")


def test_extension_keeps_the_interior(layer, predictor):
    state = stepState(np.random.default_rng(0))
    mapShift = _extend_border(layer, predictor, state)
    assert mapShift.shape == (7, 7)
    np.testing.assert_array_equal(mapShift[1:-1, 1:-1], layer.phase)
    assert state.mapShift is mapShift


def test_indefinite_residual_raises_numerical_error(layer):
    """
    A covariance model that predicts more border variance than it has makes
    the residual covariance indefinite.
    """
    def bad_covariance(*args):
        rho1 = np.asarray(args[0]).ravel()
        if len(args) == 4:
            return np.eye(rho1.size)
        rho2 = np.asarray(args[1]).ravel()
        return np.full((rho1.size, rho2.size), 10.0)

    with pytest.raises(NumericalError) as excinfo:
        _build_predictor(layer, covariance=bad_covariance)
    assert excinfo.value.layer_index == 0
    assert excinfo.value.min_eigenvalue < 0
    assert excinfo.value.condition == pytest.approx(1.0)
    assert isinstance(excinfo.value, np.linalg.LinAlgError)


def test_rounding_level_residual_is_regularised(layer, caplog):
    def marginal_covariance(*args):
        rho1 = np.asarray(args[0]).ravel()
        if len(args) == 4:
            out = np.eye(rho1.size)
            if rho1.size == 24 and np.allclose(rho1, _predictor_points(5, 0.25, *_inner_outer_masks(5))[1]):
                out[0, 0] = -1e-14
            return out
        rho2 = np.asarray(args[1]).ravel()
        return np.zeros((rho1.size, rho2.size))

    with caplog.at_level(logging.WARNING):
        predictor = _build_predictor(layer, covariance=marginal_covariance)
    assert np.all(np.isfinite(predictor.B))
    assert "regularised" in caplog.text


def test_layer_without_turbulence_has_an_empty_predictor(layer):
    layer.fractionnalR0 = 0.0
    predictor = _build_predictor(layer)
    np.testing.assert_array_equal(predictor.A, 0)
    np.testing.assert_array_equal(predictor.B, 0)


def test_zero_wind_is_a_no_op(layer, predictor):
    logger.info("Testing zero-wind identity.")
    layer.windSpeed = 0.0
    rng = np.random.default_rng(5)
    state = stepState(rng)
    before = layer.phase.copy()
    rng_state = copy.deepcopy(rng.bit_generator.state)
    for _ in range(10):
        _advance_layer(layer, predictor, state, 0.01)
    np.testing.assert_array_equal(layer.phase, before)
    assert state.mapShift is None
    assert rng.bit_generator.state == rng_state
    logger.info("Zero-wind identity test passed.")


def test_shift_period():
    assert _shift_period([1.0, 0.0], 0.25, 1.0) == 1
    assert _shift_period([1.0, 0.0], 0.25, 0.05) == 5
    assert _shift_period([0.0, 0.0], 0.25, 0.05) == 1
    # the fastest axis sets the period
    assert _shift_period([0.5, -2.0], 0.25, 0.025) == 5
    assert _shift_period([1.0, 1.0], 0.25, np.inf) == 1


def test_sub_pixel_steps_stay_within_one_pixel(layer, predictor):
    """
    An anisotropic wind with a slow axis never reads beyond the border.
    """
    layer.windSpeed = np.hypot(2.0, 0.3)
    layer.windDirection = np.arctan2(0.3, 2.0)
    state = stepState(np.random.default_rng(8), _shift_period(layer.windVelocity, layer.pixelLength, 0.05))
    assert state.nShift == 2
    for _ in range(25):
        _advance_layer(layer, predictor, state, 0.05)
        assert np.all(np.abs(state.leap) <= 1 + 1e-12)
        assert np.all(np.isfinite(layer.phase))
        assert layer.phase.shape == (5, 5)


def test_infinite_sampling_time_draws_fresh_screens(layer):
    state = stepState(np.random.default_rng(1))
    first = _advance_layer(layer, None, state, np.inf).copy()
    second = _advance_layer(layer, None, state, np.inf).copy()
    assert first.shape == (5, 5)
    assert not np.allclose(first, second)


def test_layer_geometry():
    D, nPixel = _layer_geometry(1.0, 0.125, 0.0, 10000.0)
    assert (D, nPixel) == (1.0, 9)
    fov = 10 / 206264.8
    D, nPixel = _layer_geometry(1.0, 0.125, fov, 5000.0)
    assert nPixel == 1 + round((1.0 + 2 * 5000.0 * np.tan(fov / 2)) / 0.125)
    assert D == pytest.approx(0.125 * (nPixel - 1))
    with pytest.raises(ConfigurationError):
        _layer_geometry(0.1, 0.1, 0.0, 0.0)


def test_end_to_end_translation():
    """
    Single ground layer, D = 1m on 5 pixels. Ten static ticks leave the phase
    untouched; with a 1m/s wind along x and a 1s sampling time the screen
    moves by 4 pixels in one tick.
    """
    logger.info("Testing end-to-end frozen-flow translation.")
    atm = frozenFlowAtmosphere(end_to_end_config(), seed=123)
    initial = atm.phase_screens()[0]
    received = []
    atm.add_phase_listener(lambda tick, screens: received.append((tick, screens)))

    for _ in range(10):
        screens = atm.update()
        np.testing.assert_array_equal(screens[0], initial)
    assert [tick for tick, _ in received] == list(range(1, 11))

    atm.samplingTime = 1.0
    atm.set_wind(0, 1.0, 0.0)
    assert atm._states[0].nShift == 1

    checkpoint = atm.randomState
    predictor = atm._predictor(0)
    phase = atm.update()[0]

    # the last move is a whole pixel read out of the last extended map
    mapShift = atm._states[0].mapShift
    np.testing.assert_allclose(phase, mapShift[1:-1, 0:-2], atol=1e-12)

    # same moves with an independent copy of the random stream
    rng = np.random.default_rng()
    rng.bit_generator.state = checkpoint[0]
    inner = predictor.innerMask[1:-1, 1:-1]
    reference = initial.copy()
    for _ in range(4):
        border = predictor.A @ reference[inner] + predictor.B @ rng.standard_normal(predictor.B.shape[1])
        enlarged = np.zeros((7, 7))
        enlarged[predictor.outerMask] = border
        enlarged[1:-1, 1:-1] = reference
        reference = enlarged[1:-1, 0:-2]
    np.testing.assert_allclose(phase, reference, atol=1e-10)
    # the screen moved by 4 pixels: its last column is the initial first one
    np.testing.assert_allclose(phase[:, 4], initial[:, 0], atol=1e-12)
    logger.info("End-to-end translation test passed.")


def test_composite_ground_layer_is_its_own_phase(layer):
    sampler = np.linspace(-1, 1, 5)
    out = _composite([layer], sampler, 0.5, np.array([1e-4, -2e-4]), height=90000.0)
    np.testing.assert_array_equal(out, layer.phase)
    assert out is not layer.phase


def test_composite_does_not_modify_layers(layer):
    high = turbulenceLayer(index=1, altitude=1000.0, D=1.5, nPixel=7, r0=R0, L0=L0)
    high.phase = np.random.default_rng(4).standard_normal((7, 7))
    phases = [layer.phase.copy(), high.phase.copy()]
    out = _composite([layer, high], np.linspace(-1, 1, 5), 0.5, np.array([1e-5, 0.0]), wavelengthRatio=0.5)
    assert out.shape == (5, 5)
    np.testing.assert_array_equal(layer.phase, phases[0])
    np.testing.assert_array_equal(high.phase, phases[1])


@pytest.mark.parametrize("height", [90000.0, np.inf])
def test_composite_follows_the_line_of_sight(height):
    """
    A plane a*x + b*y on a 5km layer is read at the footprint of the source:
    shifted by h * direction and shrunk by 1 - h/height.
    """
    a, b = 0.7, -1.3
    h = 5000.0
    high = turbulenceLayer(index=1, altitude=h, D=1.5, nPixel=7, r0=R0, L0=L0)
    s = high.layerSampling
    high.phase = a * s[None, :] + b * s[:, None]

    sampler = np.linspace(-1, 1, 5)
    radius = 0.5
    direction = np.array([2e-5, -1e-5])
    ratio = 2.0
    out = _composite([high], sampler, radius, direction, height=height, wavelengthRatio=ratio)

    r = sampler * radius * (1 - h / height)
    expected = ratio * (a * (r[None, :] - h * direction[0]) + b * (r[:, None] - h * direction[1]))
    np.testing.assert_allclose(out, expected, atol=1e-12)


def test_shift_period_of_a_frozen_layer_with_infinite_sampling_time():
    with np.errstate(all='raise'):
        assert _shift_period([0.0, 0.0], 0.25, np.inf) == 1
