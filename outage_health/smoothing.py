"""
LOESS smoothing with pointwise standard errors.

Local polynomial regression with tricube weights, following the defaults of
the classic `loess` routine (span 0.75, local quadratic, gaussian family).
Each local fit is a weighted least squares problem solved by statsmodels;
its hat row is collected into the smoother operator L so that

    fit = L y
    se  = sigma * sqrt(rowSums(L^2)),   sigma^2 = RSS / trace((I - L)'(I - L))

and the 95% band is fit -/+ 1.96 se.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
import statsmodels.api as sm
import logging

logger = logging.getLogger(__name__)

Z_95 = 1.96


@dataclass
class LoessResult:
    """Fitted LOESS curve evaluated at the input points."""
    x: np.ndarray
    y: np.ndarray
    fit: np.ndarray
    se: np.ndarray
    residual_scale: float

    @property
    def lower(self) -> np.ndarray:
        return self.fit - Z_95 * self.se

    @property
    def upper(self) -> np.ndarray:
        return self.fit + Z_95 * self.se

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'x': self.x,
            'y': self.y,
            'fit': self.fit,
            'se': self.se,
            'lower': self.lower,
            'upper': self.upper,
        })


def loess(x, y, span: float = 0.75, degree: int = 2) -> LoessResult:
    """
    Fit a LOESS curve of y on x.

    Args:
        x: Predictor values (e.g. days before/after the outage)
        y: Response values
        span: Fraction of points in each local neighbourhood
        degree: Local polynomial degree (0, 1 or 2)

    Returns:
        LoessResult with fitted values and standard errors at each x

    Raises:
        ValueError: on mismatched, non-finite or too few observations, or an
            invalid span/degree
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)

    if x.ndim != 1 or x.shape != y.shape:
        raise ValueError("x and y must be one-dimensional and the same length")
    if not (np.all(np.isfinite(x)) and np.all(np.isfinite(y))):
        raise ValueError("x and y must be finite; drop missing values first")
    if span <= 0:
        raise ValueError(f"span must be positive, got {span}")
    if degree not in (0, 1, 2):
        raise ValueError(f"degree must be 0, 1 or 2, got {degree}")

    n = len(x)
    q = int(np.floor(n * span))
    # The q-th neighbour sits on the bandwidth and gets zero weight
    if q < degree + 2:
        raise ValueError(
            f"span {span} leaves {q} point(s) per neighbourhood; need at least {degree + 2}"
        )

    operator = np.vstack([_hat_row(x, y, x0, q, span, degree) for x0 in x])
    fit = operator @ y

    residuals = y - fit
    complement = np.eye(n) - operator
    one_delta = float(np.sum(complement ** 2))
    residual_scale = float(np.sqrt(np.sum(residuals ** 2) / one_delta)) if one_delta > 0 else 0.0
    se = residual_scale * np.sqrt(np.sum(operator ** 2, axis=1))

    logger.debug(f"LOESS fit on {n} points (span={span}, degree={degree}), sigma={residual_scale:.4g}")
    return LoessResult(x=x, y=y, fit=fit, se=se, residual_scale=residual_scale)


def _hat_row(x: np.ndarray, y: np.ndarray, x0: float, q: int, span: float, degree: int) -> np.ndarray:
    """Weights mapping y to the local fit at x0."""
    distance = np.abs(x - x0)
    n = len(x)
    if q <= n:
        bandwidth = np.sort(distance)[q - 1]
    else:
        bandwidth = distance.max() * span
    if bandwidth <= 0:
        bandwidth = np.finfo(float).eps

    u = distance / bandwidth
    weights = np.where(u < 1, (1 - u ** 3) ** 3, 0.0)

    design = np.vander(x - x0, degree + 1, increasing=True)
    local = sm.WLS(y, design, weights=weights).fit(method='pinv')
    return (local.normalized_cov_params @ (design * weights[:, None]).T)[0]
