# turbulenceLayerClass.py
import numpy as np
from numbers import Number
from pyTurbAO.exceptions import ConfigurationError


class turbulenceLayer:
    """
    A single frozen-flow turbulence layer.

    Holds the layer geometry, its turbulence strength and wind vector, and the
    phase screen (radians at the atmosphere wavelength). The phase is always
    a square nPixel x nPixel array and the physical extent always satisfies
    ``D == pixelLength * (nPixel - 1)``.
    """

    def __init__(self, index, altitude, D, nPixel, r0, L0, fractionnalR0=1.0,
                 windSpeed=None, windDirection=0.0):
        self.index = index
        self.altitude = altitude
        self.nPixel = nPixel
        self.D = D
        self.r0 = r0
        self.L0 = L0
        self.fractionnalR0 = fractionnalR0
        self.windSpeed = windSpeed
        self.windDirection = windDirection
        self._phase = np.zeros((self.nPixel, self.nPixel))
        self.initialPhase = None

    # === Geometry ===
    @property
    def altitude(self) -> float:
        """Layer altitude in meters (non-negative)"""
        return self._altitude

    @altitude.setter
    def altitude(self, value):
        if not isinstance(value, Number):
            raise TypeError("Layer altitude must be numeric")
        if value < 0 or not np.isfinite(value):
            raise ConfigurationError("Layer altitude must be finite and non-negative")
        self._altitude = float(value)

    @property
    def D(self) -> float:
        """Physical extent of the phase screen in meters"""
        return self._D

    @D.setter
    def D(self, value):
        if not isinstance(value, Number):
            raise TypeError("Layer extent must be numeric")
        if value <= 0 or not np.isfinite(value):
            raise ConfigurationError("Layer extent must be positive")
        self._D = float(value)

    @property
    def nPixel(self) -> int:
        """Number of pixels across the phase screen (at least 3)"""
        return self._nPixel

    @nPixel.setter
    def nPixel(self, value):
        if not isinstance(value, (int, np.integer)):
            raise TypeError("Layer pixel count must be an integer")
        if value < 3:
            raise ConfigurationError(f"Layer pixel count must be at least 3 (got {value})")
        self._nPixel = int(value)

    @property
    def pixelLength(self) -> float:
        """Phase screen sampling in meters"""
        return self.D / (self.nPixel - 1)

    @property
    def layerSampling(self) -> np.ndarray:
        """Pixel coordinates in meters, centred on the optical axis"""
        return self.D * 0.5 * np.linspace(-1, 1, self.nPixel)

    # === Turbulence strength ===
    @property
    def r0(self) -> float:
        """Fried parameter of the whole atmosphere in meters"""
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
        """Outer scale in meters"""
        return self._L0

    @L0.setter
    def L0(self, value):
        if not isinstance(value, Number):
            raise TypeError("L0 must be numeric")
        if value <= 0 or not np.isfinite(value):
            raise ConfigurationError("L0 must be positive and finite")
        self._L0 = float(value)

    @property
    def fractionnalR0(self) -> float:
        """Fraction of the turbulence carried by this layer"""
        return self._fractionnalR0

    @fractionnalR0.setter
    def fractionnalR0(self, value):
        if not isinstance(value, Number):
            raise TypeError("fractionnalR0 must be numeric")
        if value < 0:
            raise ConfigurationError("fractionnalR0 cannot be negative")
        self._fractionnalR0 = float(value)

    @property
    def layerR0(self) -> float:
        """Fried parameter of the layer alone, r0 * fractionnalR0^(-3/5)"""
        if self.fractionnalR0 == 0:
            return np.inf
        return self.r0 * self.fractionnalR0 ** (-3/5)

    # === Wind ===
    @property
    def windSpeed(self):
        """Wind speed in m/s, None for a static layer"""
        return self._windSpeed

    @windSpeed.setter
    def windSpeed(self, value):
        if value is not None:
            if not isinstance(value, Number):
                raise TypeError("Wind speed must be numeric")
            if value < 0 or not np.isfinite(value):
                raise ConfigurationError("Wind speed must be finite and non-negative")
            value = float(value)
        self._windSpeed = value

    @property
    def windDirection(self) -> float:
        """Wind direction in radians"""
        return self._windDirection

    @windDirection.setter
    def windDirection(self, value):
        if not isinstance(value, Number):
            raise TypeError("Wind direction must be numeric")
        self._windDirection = float(value)

    @property
    def windVelocity(self) -> np.ndarray:
        """Wind vector (vx, vy) in m/s"""
        if self.isFrozen:
            return np.zeros(2)
        return self.windSpeed * np.array([np.cos(self.windDirection), np.sin(self.windDirection)])

    @property
    def isFrozen(self) -> bool:
        """True when the layer does not move"""
        return self.windSpeed is None or self.windSpeed == 0

    # === Phase ===
    @property
    def phase(self) -> np.ndarray:
        return self._phase

    @phase.setter
    def phase(self, value):
        arr = np.asarray(value, dtype=np.float64)
        if arr.shape != (self.nPixel, self.nPixel):
            raise ConfigurationError(
                f"Layer {self.index}: phase must be {self.nPixel}x{self.nPixel}, got {arr.shape}")
        self._phase = arr

    @property
    def signature(self) -> tuple:
        """Physical parameters the border predictor depends on"""
        return (self.D, self.nPixel, self.r0, self.L0, self.fractionnalR0)

    def __str__(self):
        wind = "static" if self.isFrozen else \
            f"{self.windSpeed:5.2f}m/s @ {np.degrees(self.windDirection):6.1f}deg"
        return (f"Layer {self.index + 1}: {self.altitude*1e-3:6.2f}km, "
                f"fractionnalR0={self.fractionnalR0:4.2f}, r0={self.layerR0*1e2:.2f}cm, "
                f"D={self.D:5.2f}m, n={self.nPixel}px, wind {wind}")


class borderPredictor:
    """
    Linear predictor of the 1-pixel border of a layer from the band of
    pixels next to it.

    ``A`` maps the inner band to the expected border, ``B`` is the lower
    Cholesky factor of the residual covariance. Both are read-only.
    """

    def __init__(self, A, B, innerMask, outerMask, signature):
        self._A = np.array(A, dtype=np.float64)
        self._B = np.array(B, dtype=np.float64)
        self._innerMask = np.array(innerMask, dtype=bool)
        self._outerMask = np.array(outerMask, dtype=bool)
        for arr in (self._A, self._B, self._innerMask, self._outerMask):
            arr.setflags(write=False)
        self.signature = signature

    @property
    def A(self) -> np.ndarray:
        return self._A

    @property
    def B(self) -> np.ndarray:
        return self._B

    @property
    def innerMask(self) -> np.ndarray:
        """Inner band on the enlarged (nPixel+2)^2 grid"""
        return self._innerMask

    @property
    def outerMask(self) -> np.ndarray:
        """Border ring on the enlarged (nPixel+2)^2 grid"""
        return self._outerMask


class stepState:
    """
    Per-layer translation state.

    Attributes
    ----------
    rng : numpy.random.Generator
        Private random stream of the layer.
    nShift : int
        Number of ticks between two scheduled border extensions.
    count : int
        Tick counter modulo nShift; an extension is due when it is 0.
    leap : ndarray, shape (2,)
        Displacement in pixels of the current phase relative to mapShift.
    mapShift : ndarray or None
        Enlarged (nPixel+2)^2 field produced by the last border extension.
    """

    def __init__(self, rng, nShift=1):
        self.rng = rng
        self.nShift = nShift
        self.count = 0
        self.leap = np.zeros(2)
        self.mapShift = None

    @property
    def nShift(self) -> int:
        return self._nShift

    @nShift.setter
    def nShift(self, value):
        if not isinstance(value, (int, np.integer)):
            raise TypeError("nShift must be an integer")
        if value < 1:
            raise ValueError("nShift must be at least 1")
        self._nShift = int(value)

    def reset(self):
        """Forget the current extension cycle."""
        self.count = 0
        self.leap = np.zeros(2)
        self.mapShift = None
