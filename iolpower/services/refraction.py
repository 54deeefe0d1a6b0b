"""
Refraction helpers shared by the formulas and exposed to callers.
"""

import math
from typing import Dict, Optional

from .biometry import BiometryData, PatientData
from iolpower.config import settings

# IOL-plane diopters per diopter of spectacle refraction
POWER_PER_REFRACTION_D = 1.5
# Corneal-plane to IOL-plane cylinder ratio for toric lenses
TORIC_IOL_PLANE_RATIO = 1.4
LENS_STEP_D = 0.5
VERTEX_DISTANCE_M = 0.012
# corneal power change per diopter of refractive correction (no pre-LASIK K)
REFRACTION_CHANGE_K_RATIO = 0.47


def calculate_spherical_equivalent(sphere: float, cylinder: float) -> float:
    """SE = sphere + cylinder / 2"""
    return sphere + cylinder / 2


def estimate_power_change(refraction_change: float) -> float:
    """IOL power change needed for a change in spectacle refraction (about 1.5 D per D)."""
    return POWER_PER_REFRACTION_D * refraction_change


def round_to_lens_step(power: float, step: float = LENS_STEP_D) -> float:
    """Round half up to the manufacturer power grid."""
    return math.floor(power / step + 0.5) * step


def calculate_toric_cylinder(corneal_cylinder: float, correction_factor: Optional[float],
                             axis: float) -> Dict[str, float]:
    """
    Convert corneal astigmatism into the toric IOL cylinder.

    The correction factor (surgically induced astigmatism) is subtracted at the
    corneal plane, the remainder is scaled to the IOL plane and rounded to the
    0.5 D toric step. The axis passes through unchanged. A correction factor of
    None uses the configured default SIA. A correction larger than the corneal
    cylinder gives a negative cylinder; callers decide whether a toric lens applies.
    """
    if correction_factor is None:
        correction_factor = settings.sia_default
    effective = corneal_cylinder - correction_factor
    return {
        "cylinder": round_to_lens_step(effective * TORIC_IOL_PLANE_RATIO),
        "axis": axis,
    }


def spectacle_to_corneal_refraction(Rs: float, vertex_distance_m: float = VERTEX_DISTANCE_M) -> float:
    """Convert spectacle-plane refraction (at vertex distance d) to corneal-plane equivalent.
    Rc = Rs / (1 - d*Rs)
    Example: -2.00 D at 12 mm -> Rc ~ -1.95 D.
    """
    d = float(vertex_distance_m)
    denom = 1.0 - d * float(Rs)
    if abs(denom) < 1e-8:
        return float("inf") if Rs > 0 else float("-inf")
    return float(Rs) / denom


def corneal_to_spectacle_refraction(Rc: float, vertex_distance_m: float = VERTEX_DISTANCE_M) -> float:
    """Inverse of spectacle_to_corneal_refraction: Rs = Rc / (1 + d*Rc)."""
    d = float(vertex_distance_m)
    denom = 1.0 + d * float(Rc)
    if abs(denom) < 1e-8:
        return float("inf") if Rc > 0 else float("-inf")
    return float(Rc) / denom


def corrected_keratometry(biometry: BiometryData, patient: Optional[PatientData]) -> float:
    """
    Effective K for the vergence formulas.

    Untreated corneas use the mean K. After LASIK/PRK the measured K overstates
    the true corneal power, so:
    - clinical history method when pre-LASIK K and refraction are known:
      K_pre + (Rc_pre - Rc_now), refractions taken at the corneal plane
      (current refraction defaults to plano);
    - refraction-change regression when only the pre-LASIK refraction is known:
      K + 0.47*(R_pre - R_now), so a myopic treatment lowers K;
    - Shammas no-history regression otherwise: 1.14*K - 6.8.
    """
    k_avg = biometry.k_avg
    if patient is None or not patient.is_post_refractive:
        return k_avg

    current = patient.current_refraction if patient.current_refraction is not None else 0.0
    if patient.has_pre_lasik_history:
        pre_k = (patient.pre_lasik_k1 + patient.pre_lasik_k2) / 2
        change = (spectacle_to_corneal_refraction(patient.pre_lasik_refraction)
                  - spectacle_to_corneal_refraction(current))
        return pre_k + change

    if patient.pre_lasik_refraction is not None:
        return k_avg + REFRACTION_CHANGE_K_RATIO * (patient.pre_lasik_refraction - current)

    return 1.14 * k_avg - 6.8
