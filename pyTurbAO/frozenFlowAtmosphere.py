# frozenFlowAtmosphere.py
"""
    This class simulates the time-evolving phase of a multi-layer atmosphere
    above a telescope. Each layer is synthesized once with von Karman
    statistics and then translated by its wind under the frozen-flow
    hypothesis, generating new turbulence at its border as it moves. The
    layers are summed along the line of sight of any source, with parallax
    and cone effect.
"""

import os
import copy
import yaml
import numpy as np
import logging
from joblib import Parallel, delayed
from pyTurbAO.atmosphereParametersClass import atmosphereParameters
from pyTurbAO.telescopeParametersClass import telescopeParameters
from pyTurbAO.sourceParametersClass import sourceParameters
from pyTurbAO.turbulenceLayerClass import turbulenceLayer, stepState
from pyTurbAO.exceptions import ConfigurationError
from pyTurbAO.phaseStatsUtils import covariance_matrix
from pyTurbAO.frozenFlowUtils import _layer_geometry, _synthesize_layer, _build_predictor, \
    _advance_layer, _shift_period, _composite

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class frozenFlowAtmosphere:
    """
    A multi-layer frozen-flow atmosphere seen by a telescope.
    """
    # Constructor
    def __init__(self, config, sources=None, seed=None, covariance=covariance_matrix, nInner=2):
        """
        Initialize the atmosphere from a configuration.

        Parameters:
        -----------
        config : str or dict
            Path to a YAML configuration file, or the already loaded
            configuration with the ``atmosphere_parameters``,
            ``telescope_parameters`` and optional ``source_parameters``
            sections.
        sources : list of source, optional
            Sources to relay to; read from the configuration when omitted.
        seed : int or numpy.random.SeedSequence, optional
            Seed of the random streams. Each layer owns a stream spawned
            from it; the global numpy random state is never used.
        covariance : callable
            Phase covariance model ``covariance(rho1, [rho2], r0, L0, fractionalR0)``.
        nInner : int
            Width in pixels of the band the new border is predicted from.
        """
        # Load configuration
        if isinstance(config, (str, os.PathLike)):
            with open(config, "r") as f:
                config = yaml.safe_load(f)
        if not isinstance(config, dict):
            raise TypeError("config must be a path to a YAML file or a dict")
        self.config = config

        # Initialize parameters
        self._initialize_parameters(sources)
        self._resolve_resolution()

        self._covariance = covariance
        self._nInner = nInner
        self._seedSequence = seed if isinstance(seed, np.random.SeedSequence) \
            else np.random.SeedSequence(seed)
        self._listeners = []
        self.tick = 0

        self._build_layers()

    def _initialize_parameters(self, sources):
        """Initialize all parameter classes from the configuration."""
        try:
            self.atmParams = atmosphereParameters(self.config)
            logger.info("Successfully initialized Atmosphere parameters.\n%s", self.atmParams)
        except (ValueError, TypeError, KeyError) as e:
            logger.error("Configuration Error in Atmosphere parameters: %s", e)
            raise

        try:
            self.telParams = telescopeParameters(self.config)
            logger.info("Successfully initialized Telescope parameters.\n%s", self.telParams)
        except (ValueError, TypeError, KeyError) as e:
            logger.error("Configuration Error in Telescope parameters: %s", e)
            raise

        if sources is None:
            try:
                sources = sourceParameters(self.config).sources
            except (ValueError, TypeError) as e:
                logger.error("Configuration Error in Source parameters: %s", e)
                raise
        self.sources = list(sources)

    def _resolve_resolution(self):
        """The pupil sampling comes from the telescope, or else from the sources."""
        if self.telParams.resolution is not None:
            return
        resolutions = {src.resolution for src in self.sources if src.resolution is not None}
        if not resolutions:
            raise ConfigurationError("The resolution is set neither on the telescope nor on a source")
        if len(resolutions) > 1:
            raise ConfigurationError(f"The sources disagree on the resolution: {sorted(resolutions)}")
        self.telParams.resolution = resolutions.pop()

    def _build_layers(self):
        """Synthesize every layer and its border predictor."""
        atm = self.atmParams
        tel = self.telParams

        # Geometry first: a bad configuration fails before any state exists
        geometry = [_layer_geometry(tel.D, tel.pixelLength, tel.fieldOfView, h) for h in atm.altitude]

        logger.info("-->> Initializing phase screens <<--")
        rngs = [np.random.default_rng(s) for s in self._seedSequence.spawn(atm.nLayer)]
        self._layers = []
        self._predictors = []
        self._states = []
        for k, ((D, nPixel), rng) in enumerate(zip(geometry, rngs)):
            layer = turbulenceLayer(
                index=k,
                altitude=atm.altitude[k],
                D=D,
                nPixel=nPixel,
                r0=atm.r0,
                L0=atm.L0,
                fractionnalR0=atm.fractionnalR0[k],
                windSpeed=atm.windSpeed[k],
                windDirection=atm.windDirection[k],
            )
            layer.phase = _synthesize_layer(layer, rng)
            layer.initialPhase = layer.phase.copy()
            self._layers.append(layer)
            self._predictors.append(None)
            self._states.append(stepState(rng, _shift_period(layer.windVelocity, layer.pixelLength, tel.samplingTime)))
            logger.debug("%s", layer)

        if np.isfinite(tel.samplingTime):
            for k in range(self.nLayer):
                self._predictor(k)
        self._initialRandomState = self.randomState
        print("-->> Phase screens initialized <<--\n")

    # ======================================================================
    # Properties
    @property
    def nLayer(self) -> int:
        return len(self._layers)

    @property
    def layers(self) -> tuple:
        """Copies of the layers; mutating them does not affect the atmosphere."""
        logger.debug("Accessing the layers property.")
        return tuple(copy.deepcopy(layer) for layer in self._layers)

    @property
    def randomState(self) -> list:
        """
        Checkpoint of the random streams, one bit generator state per layer.
        Assigning a checkpoint makes the following updates repeatable.
        """
        logger.debug("Accessing the randomState property.")
        return [copy.deepcopy(state.rng.bit_generator.state) for state in self._states]

    @randomState.setter
    def randomState(self, value):
        logger.debug("Setting the randomState property.")
        if not isinstance(value, (list, tuple)) or len(value) != self.nLayer:
            logger.error("Invalid random state: expected one state per layer.")
            raise ValueError(f"randomState must be a list of {self.nLayer} bit generator states")
        for state, s in zip(self._states, value):
            state.rng.bit_generator.state = copy.deepcopy(s)

    @property
    def samplingTime(self) -> float:
        return self.telParams.samplingTime

    @samplingTime.setter
    def samplingTime(self, value):
        logger.debug("Setting the samplingTime property.")
        self.telParams.samplingTime = value
        self._update_shift_periods()

    @property
    def r0(self) -> float:
        return self.atmParams.r0

    @r0.setter
    def r0(self, value):
        """Changing r0 rescales the current screens; predictors are rebuilt on next use."""
        logger.debug("Setting the r0 property.")
        previous = self.atmParams.r0
        self.atmParams.r0 = value
        scale = (previous / self.atmParams.r0) ** (5/6)
        for layer, state in zip(self._layers, self._states):
            layer.r0 = self.atmParams.r0
            layer.phase = layer.phase * scale
            layer.initialPhase = layer.initialPhase * scale
            if state.mapShift is not None:
                state.mapShift = state.mapShift * scale

    # ======================================================================
    # Magic Methods
    def __getattr__(self, name):
        """
        Forwards attribute access to parameter classes if they contain the requested attribute.
        """
        logger.debug("Getting attribute '%s' from parameter classes.", name)
        for param_name in ['atmParams', 'telParams']:
            param = self.__dict__.get(param_name)
            if param is not None and hasattr(param, name):
                return getattr(param, name)
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")

    def __str__(self):
        lines = [
            "Frozen-flow atmosphere:",
            f"r0 @ {self.atmParams.wavelength*1e9:.0f}nm: {self.atmParams.r0*1e2:.2f}cm, "
            f"L0: {self.atmParams.L0:.2f}m",
            f"Tick: {self.tick}, sampling time: {self.telParams.samplingTime:.3g}s",
        ]
        lines.extend("  " + str(layer) for layer in self._layers)
        return "\n".join(lines)

    # ======================================================================
    # Class Methods
    def _predictor(self, k):
        """Border predictor of layer k, rebuilt when the layer parameters changed."""
        layer = self._layers[k]
        predictor = self._predictors[k]
        if predictor is None or predictor.signature != layer.signature:
            predictor = _build_predictor(layer, self._covariance, self._nInner)
            self._predictors[k] = predictor
        return predictor

    def _update_shift_periods(self):
        for layer, state in zip(self._layers, self._states):
            state.nShift = _shift_period(layer.windVelocity, layer.pixelLength, self.telParams.samplingTime)
            state.count %= state.nShift

    def _advance(self, k):
        dt = self.telParams.samplingTime
        layer = self._layers[k]
        predictor = None if np.isinf(dt) or layer.isFrozen else self._predictor(k)
        return _advance_layer(layer, predictor, self._states[k], dt)

    def set_wind(self, layerIndex, windSpeed, windDirection=None):
        """
        Change the wind of one layer [m/s, rad]. The translation continues
        from the current screen.
        """
        layer = self._layers[layerIndex]
        layer.windSpeed = windSpeed
        if windDirection is not None:
            layer.windDirection = windDirection
        self.atmParams.windSpeed[layerIndex] = 0.0 if layer.windSpeed is None else layer.windSpeed
        self.atmParams.windDirection[layerIndex] = layer.windDirection
        self._update_shift_periods()

    def update(self, parallel=False):
        """
        Advance every layer by one sampling time.

        Parameters:
        -----------
        parallel : bool
            Advance the layers on joblib threads. Layers share no mutable
            state, so the result is the same as the sequential update.

        Returns:
        --------
        list of numpy.ndarray
            Copies of the new layer phases.
        """
        if parallel and self.nLayer > 1:
            # threads: layers are updated in place
            Parallel(n_jobs=self.nLayer, prefer="threads")(
                delayed(self._advance)(k) for k in range(self.nLayer))
        else:
            for k in range(self.nLayer):
                self._advance(k)
        self.tick += 1

        screens = self.phase_screens()
        for callback in list(self._listeners):
            callback(self.tick, [screen.copy() for screen in screens])
        return screens

    def phase_screens(self):
        """Copies of the current layer phases [rad at the atmosphere wavelength]."""
        return [layer.phase.copy() for layer in self._layers]

    def add_phase_listener(self, callback):
        """
        Register ``callback(tick, screens)``, called with copies of the layer
        phases after every update.
        """
        if not callable(callback):
            raise TypeError("The phase listener must be callable")
        self._listeners.append(callback)

    def remove_phase_listener(self, callback):
        self._listeners.remove(callback)

    def composite(self, src):
        """
        Phase [rad at the source wavelength] seen by ``src`` across the pupil.

        Returns a new resolution x resolution array.
        """
        tel = self.telParams
        wavelengthRatio = self.atmParams.wavelength / src.wavelength
        if tel.fieldOfView == 0 and src.isNgs and all(
                layer.nPixel == tel.resolution for layer in self._layers):
            out = np.zeros((tel.resolution, tel.resolution))
            for layer in self._layers:
                out += layer.phase
            return out * wavelengthRatio
        return _composite(self._layers, tel.sampler, tel.D / 2, src.directionVector,
                          src.height, wavelengthRatio)

    def relay(self, srcs=None, parallel=False):
        """
        Propagate the current atmosphere to each source: sets its phase,
        pupil mask and amplitude, and moves its time stamp forward by the
        sampling time.
        """
        srcs = self.sources if srcs is None else srcs
        if not isinstance(srcs, (list, tuple)):
            srcs = [srcs]
        tel = self.telParams
        for src in srcs:
            if src.resolution is not None and src.resolution != tel.resolution:
                raise ConfigurationError(
                    f"Source resolution {src.resolution} differs from the telescope resolution {tel.resolution}")

        if parallel and len(srcs) > 1:
            phases = Parallel(n_jobs=len(srcs), prefer="threads")(
                delayed(self.composite)(src) for src in srcs)
        else:
            phases = [self.composite(src) for src in srcs]

        pupil = tel.pupil
        for src, phase in zip(srcs, phases):
            src.mask = tel.pupilLogical
            if src.nPhoton is None or not np.isfinite(tel.samplingTime):
                src.amplitude = pupil.copy()
            else:
                # photons per pupil pixel over one sampling time
                src.amplitude = pupil * np.sqrt(src.nPhoton * tel.area * tel.samplingTime / pupil.sum())
            src.phase = phase
            # uncorrelated screens carry no time: the time stamp stays finite
            if np.isfinite(tel.samplingTime):
                src.timeStamp += tel.samplingTime
        return srcs

    def reset(self, randomState=None):
        """
        Restore the initial screens and restart the random streams from their
        initial checkpoint, or from ``randomState`` when given.
        """
        logger.info("-->> Resetting phase screens <<--")
        for layer, state in zip(self._layers, self._states):
            layer.phase = layer.initialPhase.copy()
            state.reset()
        self.randomState = self._initialRandomState if randomState is None else randomState
        self.tick = 0


# Example usage
if __name__ == "__main__":
    script_dir = os.path.dirname(os.path.abspath(__file__))
    config_path = os.path.join(script_dir, "..", "examples", "atmosphere_config.yaml")
    atm = frozenFlowAtmosphere(config_path, seed=1)
    print(atm)
    for _ in range(10):
        atm.update()
    srcs = atm.relay()
    print(f"Phase rms seen by the first source: {np.std(srcs[0].phase[srcs[0].mask]):.3f} rad")
