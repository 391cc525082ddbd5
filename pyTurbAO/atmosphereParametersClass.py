# atmosphereParametersClass.py
import numpy as np
from numbers import Number
from pyTurbAO.exceptions import ConfigurationError
from pyTurbAO.phaseStatsUtils import fried_parameter_scaling, seeing


class atmosphereParameters:
    """
    Atmosphere parameters with validation: turbulence strength at a reference
    wavelength and the per-layer altitude, weight and wind profiles.
    """

    def __init__(self, config: dict):
        self._config = config["atmosphere_parameters"]
        self._initialize_properties()

    def _initialize_properties(self):
        params = self._config
        self.r0 = params["r0"]
        self.L0 = params["L0"]
        self.wavelength = params.get("wavelength", 500e-9)
        # altitude fixes the number of layers the other profiles are checked against
        self.altitude = params["altitude"]
        self.fractionnalR0 = params.get("fractionnalR0", [1.0 / self.nLayer] * self.nLayer)
        self.windSpeed = params.get("windSpeed", [0.0] * self.nLayer)
        if "windDirectionInDeg" in params:
            self.windDirection = np.radians(np.asarray(params["windDirectionInDeg"], dtype=float)).tolist()
        else:
            self.windDirection = params.get("windDirection", [0.0] * self.nLayer)

    def _check_profile(self, name, value):
        if isinstance(value, Number):
            value = [value]
        if not isinstance(value, (list, tuple, np.ndarray)):
            raise TypeError(f"{name} must be a number or a list of numbers")
        arr = np.asarray(value, dtype=float).ravel()
        if arr.size != self.nLayer:
            raise ConfigurationError(
                f"{name} has {arr.size} entries but the atmosphere has {self.nLayer} layers")
        return arr

    # === Turbulence strength ===
    @property
    def r0(self) -> float:
        """Fried parameter [m] at the reference wavelength"""
        return self._r0

    @r0.setter
    def r0(self, value):
        if not isinstance(value, Number):
            raise TypeError("r0 must be numeric")
        if value <= 0:
            raise ConfigurationError("r0 must be positive")
        self._r0 = float(value)

    @property
    def L0(self) -> float:
        """Outer scale [m]"""
        return self._L0

    @L0.setter
    def L0(self, value):
        if not isinstance(value, Number):
            raise TypeError("L0 must be numeric")
        if value <= 0 or not np.isfinite(value):
            raise ConfigurationError("L0 must be positive and finite")
        self._L0 = float(value)

    @property
    def wavelength(self) -> float:
        """Reference wavelength [m] of r0 and of the layer phases"""
        return self._wavelength

    @wavelength.setter
    def wavelength(self, value):
        if not isinstance(value, Number):
            raise TypeError("wavelength must be numeric")
        if value <= 0:
            raise ConfigurationError("wavelength must be positive")
        self._wavelength = float(value)

    # === Layer profiles ===
    @property
    def nLayer(self) -> int:
        return len(self._altitude)

    @property
    def altitude(self) -> np.ndarray:
        """Layer altitudes [m]"""
        return self._altitude

    @altitude.setter
    def altitude(self, value):
        if isinstance(value, Number):
            value = [value]
        if not isinstance(value, (list, tuple, np.ndarray)):
            raise TypeError("altitude must be a number or a list of numbers")
        arr = np.asarray(value, dtype=float).ravel()
        if arr.size == 0:
            raise ConfigurationError("The atmosphere needs at least one layer")
        if np.any(arr < 0) or not np.all(np.isfinite(arr)):
            raise ConfigurationError("Layer altitudes must be finite and non-negative")
        self._altitude = arr

    @property
    def fractionnalR0(self) -> np.ndarray:
        """Fraction of the turbulence in each layer"""
        return self._fractionnalR0

    @fractionnalR0.setter
    def fractionnalR0(self, value):
        arr = self._check_profile("fractionnalR0", value)
        if np.any(arr < 0):
            raise ConfigurationError("fractionnalR0 cannot be negative")
        if arr.sum() <= 0:
            raise ConfigurationError("fractionnalR0 must not be all zero")
        self._fractionnalR0 = arr

    @property
    def windSpeed(self) -> np.ndarray:
        """Wind speed of each layer [m/s]"""
        return self._windSpeed

    @windSpeed.setter
    def windSpeed(self, value):
        arr = self._check_profile("windSpeed", value)
        if np.any(arr < 0) or not np.all(np.isfinite(arr)):
            raise ConfigurationError("Wind speeds must be finite and non-negative")
        self._windSpeed = arr

    @property
    def windDirection(self) -> np.ndarray:
        """Wind direction of each layer [rad]"""
        return self._windDirection

    @windDirection.setter
    def windDirection(self, value):
        arr = self._check_profile("windDirection", value)
        if not np.all(np.isfinite(arr)):
            raise ConfigurationError("Wind directions must be finite")
        self._windDirection = arr

    # === Derived quantities ===
    @property
    def layerR0(self) -> np.ndarray:
        """Fried parameter of each layer alone [m]"""
        with np.errstate(divide='ignore'):
            return self.r0 * self.fractionnalR0 ** (-3/5)

    @property
    def seeingArcsec(self) -> float:
        return seeing(self.r0, self.wavelength)

    def r0_at(self, wavelength) -> float:
        """Fried parameter [m] at another wavelength [m]."""
        return fried_parameter_scaling(self.r0, self.wavelength, wavelength)

    def __str__(self):
        """Human-readable string representation of the atmosphere parameters"""
        lines = [
            "Atmosphere Parameters:",
            f"r0 @ {self.wavelength*1e9:.0f}nm: {self.r0*1e2:.2f}cm",
            f"L0: {self.L0:.2f}m",
            f"Seeing: {self.seeingArcsec:.2f}arcsec",
            f"Number of layers: {self.nLayer}",
        ]
        for k in range(self.nLayer):
            lines.append(
                f"  Layer {k+1}: {self.altitude[k]*1e-3:6.2f}km, "
                f"fractionnalR0={self.fractionnalR0[k]:4.2f}, r0={self.layerR0[k]*1e2:.2f}cm, "
                f"wind {self.windSpeed[k]:5.2f}m/s @ {np.degrees(self.windDirection[k]):6.1f}deg")
        return "\n".join(lines)
