from .frozenFlowAtmosphere import *
from .atmosphereParametersClass import *
from .telescopeParametersClass import *
from .sourceParametersClass import *
from .turbulenceLayerClass import *
from .exceptions import *
from .splineInterpolation import *
from .phaseStatsUtils import *

__all__ = [
    'frozenFlowAtmosphere',
    'atmosphereParameters',
    'telescopeParameters',
    'sourceParameters',
    'source',
    'turbulenceLayer',
    'borderPredictor',
    'stepState',
    'ConfigurationError',
    'NumericalError',
    'spline2',
    'spline_matrix',
    'covariance_matrix',
    'structure_function',
    'spectrum',
    'fourier_phase_screen',
]
