# exceptions.py
"""
Errors raised while building or evolving the turbulence layers.
"""

import numpy as np


class ConfigurationError(ValueError):
    """
    Inconsistent geometry or turbulence parameters.

    Raised before any layer state is created (parameter setters, layer
    geometry computation), so a failed construction never leaves a partially
    initialized atmosphere behind.
    """


class NumericalError(np.linalg.LinAlgError):
    """
    The residual covariance of the border predictor is not positive
    semi-definite.

    Attributes
    ----------
    layer_index : int or None
        Index of the layer whose predictor failed.
    min_eigenvalue : float or None
        Smallest eigenvalue of the residual covariance BBt.
    condition : float or None
        Condition number estimate of the inner auto-covariance ZZt.
    """

    def __init__(self, message, layer_index=None, min_eigenvalue=None, condition=None):
        super().__init__(message)
        self.layer_index = layer_index
        self.min_eigenvalue = min_eigenvalue
        self.condition = condition
