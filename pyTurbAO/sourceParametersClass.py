# sourceParametersClass.py
import numpy as np
from numbers import Number
from pyTurbAO.exceptions import ConfigurationError

ARCSEC_TO_RAD = np.pi / (180 * 3600)


class source:
    """
    A light source looking through the atmosphere.

    The direction is given by its zenith and azimuth angles [rad]; the height
    is inf for a natural guide star or finite for a laser guide star (cone
    effect). After a relay the source carries the wavefront it received:
    ``phase`` [rad at its own wavelength], ``mask``, ``amplitude`` and
    ``timeStamp`` [s].
    """

    def __init__(self, zenith=0.0, azimuth=0.0, height=np.inf, wavelength=500e-9,
                 resolution=None, nPhoton=None):
        self.zenith = zenith
        self.azimuth = azimuth
        self.height = height
        self.wavelength = wavelength
        self.resolution = resolution
        self.nPhoton = nPhoton
        self.timeStamp = 0.0
        self.phase = None
        self.mask = None
        self.amplitude = None

    @classmethod
    def from_dict(cls, params: dict):
        return cls(
            zenith=params.get("zenithInArcsec", 0.0) * ARCSEC_TO_RAD,
            azimuth=np.radians(params.get("azimuthInDeg", 0.0)),
            height=params.get("height", np.inf),
            wavelength=params.get("wavelength", 500e-9),
            resolution=params.get("resolution"),
            nPhoton=params.get("nPhoton"),
        )

    @property
    def zenith(self) -> float:
        return self._zenith

    @zenith.setter
    def zenith(self, value):
        if not isinstance(value, Number):
            raise TypeError("zenith must be numeric")
        if value < 0 or value >= np.pi / 2:
            raise ConfigurationError("zenith must be in [0, pi/2)")
        self._zenith = float(value)

    @property
    def azimuth(self) -> float:
        return self._azimuth

    @azimuth.setter
    def azimuth(self, value):
        if not isinstance(value, Number):
            raise TypeError("azimuth must be numeric")
        self._azimuth = float(value)

    @property
    def height(self) -> float:
        """Source altitude [m], inf at infinity"""
        return self._height

    @height.setter
    def height(self, value):
        if not isinstance(value, Number):
            raise TypeError("height must be numeric")
        if value <= 0:
            raise ConfigurationError("height must be positive")
        self._height = float(value)

    @property
    def wavelength(self) -> float:
        return self._wavelength

    @wavelength.setter
    def wavelength(self, value):
        if not isinstance(value, Number):
            raise TypeError("wavelength must be numeric")
        if value <= 0:
            raise ConfigurationError("wavelength must be positive")
        self._wavelength = float(value)

    @property
    def resolution(self):
        return self._resolution

    @resolution.setter
    def resolution(self, value):
        if value is not None:
            if not isinstance(value, (int, np.integer)):
                raise TypeError("resolution must be an integer")
            if value < 3:
                raise ConfigurationError(f"resolution must be at least 3 (got {value})")
            value = int(value)
        self._resolution = value

    @property
    def nPhoton(self):
        """Photons per second per square meter, None for unit amplitude"""
        return self._nPhoton

    @nPhoton.setter
    def nPhoton(self, value):
        if value is not None:
            if not isinstance(value, Number):
                raise TypeError("nPhoton must be numeric")
            if value < 0:
                raise ConfigurationError("nPhoton cannot be negative")
        self._nPhoton = value

    @property
    def directionVector(self) -> np.ndarray:
        """Pointing offset per meter of altitude (x, y)"""
        t = np.tan(self.zenith)
        return np.array([t * np.cos(self.azimuth), t * np.sin(self.azimuth)])

    @property
    def isNgs(self) -> bool:
        return np.isinf(self.height)

    def __str__(self):
        height = "inf" if self.isNgs else f"{self.height*1e-3:.1f}km"
        return (f"Source: zenith {self.zenith/ARCSEC_TO_RAD:.2f}arcsec, "
                f"azimuth {np.degrees(self.azimuth):.1f}deg, height {height}, "
                f"wavelength {self.wavelength*1e9:.0f}nm")


class sourceParameters:
    """
    Source parameters read from the ``source_parameters`` configuration
    section: either a single source or a list of them.
    """

    def __init__(self, config: dict):
        self._config = config.get("source_parameters", {})
        self._initialize_properties()

    def _initialize_properties(self):
        params = self._config
        if isinstance(params, dict):
            params = [params]
        if not isinstance(params, (list, tuple)):
            raise TypeError("source_parameters must be a mapping or a list of mappings")
        self.sources = [source.from_dict(p) for p in params]

    @property
    def nSource(self) -> int:
        return len(self.sources)

    def __str__(self):
        lines = ["Source Parameters:", f"Number of sources: {self.nSource}"]
        lines.extend("  " + str(src) for src in self.sources)
        return "\n".join(lines)
