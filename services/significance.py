"""Two-proportion significance test for a variant against the control.

Arithmetic runs on numpy float64 so that empty variants (zero visitors)
come out as NaN instead of raising ZeroDivisionError. Callers must be
ready for NaN p-values.
"""
import numpy as np
from scipy import stats
from models.results import Variant

# A variant is significant when its p-value falls below this
SIGNIFICANCE_THRESHOLD = 0.05

# Two-sided 95% critical value of the standard normal
CONFIDENCE_Z = 1.96


def calculate_p_value(control: Variant, variant: Variant) -> float:
    """
    Two-tailed p-value of a pooled two-proportion z-test, variant vs control.
    Identical rates give a value close to 1. Zero visitors on either side give NaN.
    """
    n1 = np.float64(control.visitors)
    n2 = np.float64(variant.visitors)
    c1 = np.float64(control.conversions)
    c2 = np.float64(variant.conversions)

    with np.errstate(divide="ignore", invalid="ignore"):
        p1 = c1 / n1
        p2 = c2 / n2
        p_pooled = (c1 + c2) / (n1 + n2)

        se = np.sqrt(p_pooled * (1 - p_pooled) * (1 / n1 + 1 / n2))
        z = (p2 - p1) / se

    # 0/0 above leaves z as NaN, and sf(NaN) stays NaN
    p_value = 2 * stats.norm.sf(np.abs(z))
    return float(p_value)
