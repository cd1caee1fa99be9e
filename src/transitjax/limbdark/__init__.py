"""Polynomial limb darkening: coefficient transforms, the Green's-basis
occultation engine and batch light-curve evaluation.
"""

from transitjax.limbdark.coefficients import get_cl, get_cl_rev, normalize_cl
from transitjax.limbdark.greens import GreensLimbDark, GreensSolution
from transitjax.limbdark.light_curve import LimbDark, LimbDarkResult, limb_dark_light_curve

__all__ = [
    "GreensLimbDark",
    "GreensSolution",
    "LimbDark",
    "LimbDarkResult",
    "get_cl",
    "get_cl_rev",
    "limb_dark_light_curve",
    "normalize_cl",
]
