# telescopeParametersClass.py
import logging
import numpy as np
from numbers import Number
from scipy.integrate import quad
from scipy.optimize import brentq
from scipy.special import j0, j1
from pyTurbAO.exceptions import ConfigurationError
from pyTurbAO.phaseStatsUtils import otf as atmosphere_otf

logger = logging.getLogger(__name__)

ARCSEC_TO_RAD = np.pi / (180 * 3600)


class telescopeParameters:
    """
    Telescope parameters with validation: aperture, pupil sampling, field of
    view and sampling time, plus the long-exposure imaging quantities
    (OTF, PSF, FWHM) of the telescope alone or seen through an atmosphere.
    """

    def __init__(self, config: dict):
        self._config = config["telescope_parameters"]
        self._initialize_properties()

    def _initialize_properties(self):
        params = self._config
        self.D = params["D"]
        self.resolution = params.get("resolution")
        self.obstructionRatio = params.get("obstructionRatio", 0.0)
        if "fieldOfViewInArcmin" in params:
            self.fieldOfViewInArcsec = params["fieldOfViewInArcmin"] * 60
        else:
            self.fieldOfViewInArcsec = params.get("fieldOfViewInArcsec", 0.0)
        self.samplingTime = params.get("samplingTime", 1e-3)

    # === Aperture ===
    @property
    def D(self) -> float:
        """Telescope diameter [m]"""
        return self._D

    @D.setter
    def D(self, value):
        if not isinstance(value, Number):
            raise TypeError("D must be numeric")
        if value <= 0 or not np.isfinite(value):
            raise ConfigurationError("D must be positive and finite")
        self._D = float(value)

    @property
    def resolution(self):
        """Pupil sampling in pixels across D, None when left to the sources"""
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
    def obstructionRatio(self) -> float:
        """Central obstruction diameter as a fraction of D"""
        return self._obstructionRatio

    @obstructionRatio.setter
    def obstructionRatio(self, value):
        if not isinstance(value, Number):
            raise TypeError("obstructionRatio must be numeric")
        if value < 0 or value >= 1:
            raise ConfigurationError("obstructionRatio must be in [0, 1)")
        self._obstructionRatio = float(value)

    @property
    def fieldOfViewInArcsec(self) -> float:
        return self._fieldOfViewInArcsec

    @fieldOfViewInArcsec.setter
    def fieldOfViewInArcsec(self, value):
        if not isinstance(value, Number):
            raise TypeError("fieldOfViewInArcsec must be numeric")
        if value < 0 or not np.isfinite(value):
            raise ConfigurationError("fieldOfViewInArcsec must be finite and non-negative")
        self._fieldOfViewInArcsec = float(value)

    @property
    def fieldOfView(self) -> float:
        """Field of view [rad]"""
        return self.fieldOfViewInArcsec * ARCSEC_TO_RAD

    @property
    def samplingTime(self) -> float:
        """Time between two updates [s]; inf draws uncorrelated screens"""
        return self._samplingTime

    @samplingTime.setter
    def samplingTime(self, value):
        if not isinstance(value, Number):
            raise TypeError("samplingTime must be numeric")
        if value <= 0:
            raise ConfigurationError("samplingTime must be positive")
        self._samplingTime = float(value)

    # === Pupil ===
    @property
    def area(self) -> float:
        """Collecting area [m^2]"""
        return np.pi * self.D**2 * (1 - self.obstructionRatio**2) / 4

    @property
    def pixelLength(self) -> float:
        """Pupil sampling [m]"""
        self._require_resolution()
        return self.D / (self.resolution - 1)

    @property
    def sampler(self) -> np.ndarray:
        """Normalised pupil coordinates in [-1, 1]"""
        self._require_resolution()
        return np.linspace(-1, 1, self.resolution)

    @property
    def pupilLogical(self) -> np.ndarray:
        """Boolean pupil mask, resolution x resolution"""
        x, y = np.meshgrid(self.sampler, self.sampler)
        r = np.hypot(x, y)
        return (r <= 1) & (r >= self.obstructionRatio)

    @property
    def pupil(self) -> np.ndarray:
        return self.pupilLogical.astype(np.float64)

    def _require_resolution(self):
        if self.resolution is None:
            raise ConfigurationError("The telescope resolution is not set")

    # === Imaging ===
    def otf(self, rho, atmParams=None):
        """
        Long-exposure optical transfer function at separations ``rho`` [m],
        normalised to 1 at rho = 0.
        """
        rho = np.abs(np.asarray(rho, dtype=np.float64))
        out = _pupil_cross_correlation(rho, self.D / 2) \
            - 2 * _pupil_cross_correlation(rho, self.D / 2, self.obstructionRatio * self.D / 2) \
            + _pupil_cross_correlation(rho, self.obstructionRatio * self.D / 2)
        out = out / (np.pi * self.D**2 * (1 - self.obstructionRatio**2) / 4)
        if atmParams is not None:
            out = out * atmosphere_otf(rho, atmParams.r0, atmParams.L0)
        return out

    def psf(self, f, atmParams=None):
        """
        Long-exposure point spread function at angular frequencies ``f``
        [1/m]. Diffraction limited when ``atmParams`` is None, otherwise the
        Hankel transform of the telescope x atmosphere OTF.
        """
        f = np.atleast_1d(np.asarray(f, dtype=np.float64))
        if atmParams is None:
            out = np.empty(f.shape)
            for i, fi in np.ndenumerate(f):
                out[i] = _annulus_amplitude(abs(fi), self.D, self.obstructionRatio)
            return out**2 / self.area

        out = np.empty(f.shape)
        for i, fi in np.ndenumerate(f):
            out[i], _ = quad(
                lambda r: r * j0(2 * np.pi * r * abs(fi)) * float(self.otf(r, atmParams)),
                0, self.D, limit=200)
        return 2 * np.pi * out

    def fullWidthHalfMax(self, atmParams=None) -> float:
        """Full width at half maximum of the PSF [1/m]."""
        scale = self.D if atmParams is None else min(self.D, atmParams.r0)
        peak = self.psf(0.0, atmParams)[0]

        def halfMaxCrossing(x):
            return self.psf(x / 2, atmParams)[0] - peak / 2

        try:
            return brentq(halfMaxCrossing, 0.0, 2.0 / scale)
        except ValueError:
            logger.error("FWHM search failed: no half maximum crossing below %.3g", 2.0 / scale)
            raise

    def __str__(self):
        """Human-readable string representation of the telescope parameters"""
        lines = [
            "Telescope Parameters:",
            f"Diameter: {self.D:.2f}m",
            f"Obstruction ratio: {self.obstructionRatio:.2f}",
            f"Collecting area: {self.area:.2f}m^2",
            f"Field of view: {self.fieldOfViewInArcsec:.2f}arcsec",
            f"Sampling time: {self.samplingTime:.3g}s",
        ]
        if self.resolution is not None:
            lines.append(f"Pupil sampling: {self.resolution}px ({self.pixelLength*1e2:.2f}cm/px)")
        return "\n".join(lines)


def _annulus_amplitude(f, D, obstructionRatio):
    """Fourier transform of the annular pupil at frequency modulus ``f``."""
    def disk(diameter):
        if f == 0:
            return np.pi * diameter**2 / 4
        x = np.pi * diameter * f
        return diameter * j1(x) / (2 * f)
    out = disk(D)
    if obstructionRatio > 0:
        out -= disk(obstructionRatio * D)
    return out


def _pupil_cross_correlation(rho, R1, R2=None):
    """Overlap area of two disks of radii R1 and R2 separated by ``rho``."""
    if R2 is None:
        R2 = R1
    rho = np.asarray(rho, dtype=np.float64)
    out = np.zeros(rho.shape)
    if R1 == 0 or R2 == 0:
        return out

    inside = rho <= abs(R1 - R2)
    out[inside] = np.pi * min(R1, R2)**2

    overlap = (rho > abs(R1 - R2)) & (rho < R1 + R2)
    r = rho[overlap]
    red = (r**2 + R1**2 - R2**2) / (2 * r * R1)
    blue = (r**2 + R2**2 - R1**2) / (2 * r * R2)
    red = np.clip(red, -1, 1)
    blue = np.clip(blue, -1, 1)
    out[overlap] = R1**2 * np.arccos(red) + R2**2 * np.arccos(blue) \
        - 0.5 * np.sqrt((-r + R1 + R2) * (r + R1 - R2) * (r - R1 + R2) * (r + R1 + R2))
    return out
