"""
Vergence optics shared by the formula calculators.

Two families of equations are used:
- the theoretical form published with SRK/T and Holladay 1, which carries the
  target refraction and the 12 mm spectacle vertex inside the equation;
- the thin-lens form used by Haigis (and here by Barrett), which converts the
  target to the corneal plane first.

All lengths are in millimetres, powers in diopters.
"""

import math
from dataclasses import dataclass
from typing import Callable, List

import numpy as np

from .biometry import PowerOption
from .refraction import spectacle_to_corneal_refraction, corneal_to_spectacle_refraction, round_to_lens_step

NA = 1.336  # aqueous/vitreous refractive index
VERTEX_MM = 12.0
MIN_DISTANCE_MM = 1.0  # shortest optical distance accepted before flagging degeneracy
MIN_POWER_D = 1.0  # below this the power is mapped through a positive soft floor
OPTION_SPAN_D = 2.0
HEIGHT_RADICAND_KNEE = 1.0  # mm^2
_EPS = 1e-9


@dataclass
class Guarded:
    """A value plus whether it had to be clamped."""
    value: float
    degenerate: bool = False


def corneal_radius(k: float) -> float:
    """Corneal radius (mm) from keratometric power (index 1.3375)."""
    return 337.5 / k


def corneal_height(radius: float, diameter: float) -> float:
    """
    Fyodorov corneal dome height, r - sqrt(r^2 - w^2/4).

    Below HEIGHT_RADICAND_KNEE the square root is continued along its tangent
    so the height grows with bounded slope up to the radius, instead of the
    vertical slope of sqrt near zero. Physiological corneas never reach it.
    """
    x = radius ** 2 - (diameter ** 2) / 4.0
    if x >= HEIGHT_RADICAND_KNEE:
        root = math.sqrt(x)
    else:
        knee = math.sqrt(HEIGHT_RADICAND_KNEE)
        root = max(0.0, knee + (x - HEIGHT_RADICAND_KNEE) / (2.0 * knee))
    return radius - root


def guard_distance(distance: float) -> Guarded:
    if not math.isfinite(distance) or distance <= MIN_DISTANCE_MM:
        return Guarded(MIN_DISTANCE_MM, True)
    return Guarded(distance)


def _safe_div(num: float, den: float) -> float:
    if abs(den) < _EPS:
        den = math.copysign(_EPS, den) if den else _EPS
    return num / den


# --- Theoretical (SRK/T, Holladay 1) -------------------------------------------------

def theoretical_power(lopt: float, elp: float, radius: float, target: float, ncm1: float) -> Guarded:
    """
    IOL power for a target refraction (spectacle plane):

        P = 1000 na (na r - ncm1 L - 0.001 R (V (na r - ncm1 L) + L r))
            / ((L - C) (na r - ncm1 C - 0.001 R (V (na r - ncm1 C) + C r)))
    """
    lens_to_retina = guard_distance(lopt - elp)
    x = NA * radius - ncm1 * lopt
    a = NA * radius - ncm1 * elp
    numerator = 1000.0 * NA * (x - 0.001 * target * (VERTEX_MM * x + lopt * radius))
    corneal_factor = guard_distance(a - 0.001 * target * (VERTEX_MM * a + elp * radius))
    power = numerator / (lens_to_retina.value * corneal_factor.value)
    return Guarded(power, lens_to_retina.degenerate or corneal_factor.degenerate)


def theoretical_refraction(power: float, lopt: float, elp: float, radius: float, ncm1: float) -> float:
    """Spectacle refraction expected with a given lens power (inverse of theoretical_power)."""
    lens_to_retina = max(lopt - elp, MIN_DISTANCE_MM)
    x = NA * radius - ncm1 * lopt
    a = NA * radius - ncm1 * elp
    numerator = 1000.0 * NA * x - power * lens_to_retina * a
    denominator = (NA * (VERTEX_MM * x + lopt * radius)
                   - 0.001 * power * lens_to_retina * (VERTEX_MM * a + elp * radius))
    return _safe_div(numerator, denominator)


# --- Thin lens (Haigis, Barrett) ---------------------------------------------------

def thin_lens_power(length: float, elp: float, corneal_power: float, target: float) -> Guarded:
    """
    P = 1336/(L - d) - 1336/(1336/z - d), z = DC + Rc

    Rc is the target refraction vertex-corrected to the corneal plane.
    """
    n = 1000.0 * NA
    lens_to_retina = guard_distance(length - elp)
    z = corneal_power + spectacle_to_corneal_refraction(target, VERTEX_MM / 1000.0)
    if z <= _EPS:
        cornea_to_image = Guarded(MIN_DISTANCE_MM, True)
    else:
        cornea_to_image = guard_distance(n / z - elp)
    power = n / lens_to_retina.value - n / cornea_to_image.value
    return Guarded(power, lens_to_retina.degenerate or cornea_to_image.degenerate)


def thin_lens_refraction(power: float, length: float, elp: float, corneal_power: float) -> float:
    """Spectacle refraction expected with a given lens power (inverse of thin_lens_power)."""
    n = 1000.0 * NA
    lens_to_retina = max(length - elp, MIN_DISTANCE_MM)
    vergence_at_iol = n / lens_to_retina - power
    z = _safe_div(n * vergence_at_iol, n + elp * vergence_at_iol)
    return corneal_to_spectacle_refraction(z - corneal_power, VERTEX_MM / 1000.0)


# --- Shared post-processing --------------------------------------------------------

def soft_floor(power: float) -> Guarded:
    """
    Keep powers finite and positive without changing their order: values below
    MIN_POWER_D are mapped through MIN * exp((P - MIN) / MIN).
    """
    if not math.isfinite(power):
        raise ArithmeticError(f"Non-finite IOL power: {power}")
    if power >= MIN_POWER_D:
        return Guarded(power)
    return Guarded(MIN_POWER_D * math.exp((power - MIN_POWER_D) / MIN_POWER_D), True)


def build_power_options(power: float, target: float,
                        refraction_for: Callable[[float], float]) -> List[PowerOption]:
    """Positive lens powers on the 0.5 D grid within +-2 D, closest expected refraction first."""
    center = round_to_lens_step(power)
    options = []
    for offset in np.arange(-OPTION_SPAN_D, OPTION_SPAN_D + 0.25, 0.5):
        lens_power = float(center + offset)
        if lens_power <= 0:
            continue
        expected = refraction_for(lens_power)
        options.append(PowerOption(
            power=lens_power,
            expected_refraction=round(expected, 2),
            deviation=round(abs(expected - target), 2),
        ))
    return sorted(options, key=lambda option: option.deviation)
