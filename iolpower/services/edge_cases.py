"""
Edge-case detection for biometry.

Flags anatomically unusual eyes before a formula runs. Warnings never block a
calculation; they lower confidence and are shown to the surgeon (in French,
like the rest of the clinical text).
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from .biometry import BiometryData, PatientData


class WarningCode(str, Enum):
    NANOPHTHALMIC_EYE = "nanophthalmic_eye"
    SHORT_EYE = "short_eye"
    LONG_EYE = "long_eye"
    VERY_LONG_EYE = "very_long_eye"
    STEEP_CORNEA = "steep_cornea"
    FLAT_CORNEA = "flat_cornea"
    HIGH_ASTIGMATISM = "high_astigmatism"
    IMPLAUSIBLE_KERATOMETRY = "implausible_keratometry"
    NARROW_CHAMBER = "narrow_chamber"
    DEEP_CHAMBER = "deep_chamber"
    INCONSISTENT_ACD = "inconsistent_acd"
    POST_REFRACTIVE = "post_refractive"
    MISSING_PRE_LASIK_DATA = "missing_pre_lasik_data"
    # Raised by the calculators themselves
    ACD_ESTIMATED = "acd_estimated"
    INCOMPLETE_BARRETT_BIOMETRY = "incomplete_barrett_biometry"
    DEGENERATE_GEOMETRY = "degenerate_geometry"
    POWER_OUT_OF_RANGE = "power_out_of_range"
    FORMULA_FAILED = "formula_failed"


@dataclass(frozen=True)
class BiometryWarning:
    code: WarningCode
    message: str

    def __str__(self) -> str:
        return self.message


# Thresholds
NANOPHTHALMIC_AL = 20.0
SHORT_AL = 22.0
LONG_AL = 26.0
VERY_LONG_AL = 28.0
STEEP_K = 47.0
FLAT_K = 40.0
HIGH_ASTIGMATISM_D = 2.5
PLAUSIBLE_K_RANGE = (30.0, 60.0)
NARROW_ACD = 2.5
DEEP_ACD = 4.0

# Warnings that take a formula's confidence down one level
CONFIDENCE_DOWNGRADES = frozenset({
    WarningCode.STEEP_CORNEA,
    WarningCode.HIGH_ASTIGMATISM,
    WarningCode.NARROW_CHAMBER,
    WarningCode.IMPLAUSIBLE_KERATOMETRY,
    WarningCode.INCONSISTENT_ACD,
})


def detect(biometry: BiometryData, patient_data: Optional[PatientData] = None) -> List[BiometryWarning]:
    """Inspect biometry (already validated) and return warnings in a stable order."""
    patient = patient_data or PatientData()
    warnings: List[BiometryWarning] = []

    def add(code: WarningCode, message: str) -> None:
        warnings.append(BiometryWarning(code, message))

    # Axial length
    al = biometry.axial_length
    if al < NANOPHTHALMIC_AL:
        add(WarningCode.NANOPHTHALMIC_EYE,
            f"Longueur axiale très courte ({al:.2f}mm < 20mm) - œil nanophtalme")
    elif al < SHORT_AL:
        add(WarningCode.SHORT_EYE, "Longueur axiale courte - risque de surprise réfractive")
    elif al >= VERY_LONG_AL:
        add(WarningCode.VERY_LONG_EYE,
            f"Longueur axiale très longue ({al:.2f}mm) - utiliser des formules adaptées")
    elif al >= LONG_AL:
        add(WarningCode.LONG_EYE, "Longueur axiale longue - risque de myopisation, confiance réduite")

    # Keratometry
    low_k, high_k = PLAUSIBLE_K_RANGE
    if any(k < low_k or k > high_k for k in (biometry.k1, biometry.k2)):
        add(WarningCode.IMPLAUSIBLE_KERATOMETRY,
            f"Kératométrie hors plage clinique ({biometry.k1:.2f}/{biometry.k2:.2f}D) - vérifier la mesure")

    delta_k = biometry.corneal_astigmatism
    if biometry.k_max >= STEEP_K or delta_k >= HIGH_ASTIGMATISM_D:
        add(WarningCode.STEEP_CORNEA,
            f"Kératométrie cambrée (Kmax {biometry.k_max:.2f}D) - suspicion de kératocône")
    if biometry.k_avg < FLAT_K:
        add(WarningCode.FLAT_CORNEA,
            f"Kératométrie plate ({biometry.k_avg:.2f}D < 40D) - cornée plate inhabituelle")

    if delta_k >= HIGH_ASTIGMATISM_D:
        add(WarningCode.HIGH_ASTIGMATISM,
            f"Astigmatisme cornéen significatif ({delta_k:.2f}D) - envisager IOL torique")

    # Anterior chamber
    if biometry.acd is not None:
        if biometry.acd >= al:
            add(WarningCode.INCONSISTENT_ACD,
                "Profondeur de chambre antérieure incohérente avec la longueur axiale")
        elif biometry.acd < NARROW_ACD:
            add(WarningCode.NARROW_CHAMBER, "Chambre antérieure étroite - risque de bloc pupillaire")
        elif biometry.acd > DEEP_ACD:
            add(WarningCode.DEEP_CHAMBER, "Chambre antérieure profonde - vérifier la mesure")

    # Refractive surgery history
    if patient.is_post_refractive:
        add(WarningCode.POST_REFRACTIVE, "Post-chirurgie réfractive - kératométrie corrigée utilisée")
        if not patient.has_pre_lasik_history:
            add(WarningCode.MISSING_PRE_LASIK_DATA, "Données pré-LASIK manquantes - précision réduite")

    return warnings
