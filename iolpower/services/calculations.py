"""
IOL Power Calculation Service

This module implements published IOL power calculation formulas:
- SRK/T: theoretical formula with LCOR, corneal height and retinal thickness correction
- Holladay 1: anatomic anterior segment + surgeon factor
- Haigis: three-constant ELP regression on ACD and AL
- Barrett Universal II: lens-factor ELP model driven by the anterior segment

Each formula runs independently on immutable inputs, so a calculator can be
shared between threads. calculate_all() isolates failures: a formula that
cannot run is reported as a low-confidence result and the others continue.
"""

import logging
from dataclasses import dataclass
from typing import List, Dict, Optional, Tuple, Callable

from .biometry import (
    BiometryData, PatientData, FormulaResult, MultiFormulaResult,
    BiometryValidationError, downgrade, cap,
)
from .edge_cases import detect, BiometryWarning, WarningCode, CONFIDENCE_DOWNGRADES
from .iol_constants import IOLConstants, ConstantsSpec, resolve_constants
from .refraction import corrected_keratometry, round_to_lens_step
from .vergence import (
    Guarded, corneal_radius, corneal_height, theoretical_power, theoretical_refraction,
    thin_lens_power, thin_lens_refraction, soft_floor, build_power_options,
)
from . import consensus
from iolpower.config import settings

log = logging.getLogger(__name__)

# SRK/T
SRKT_NCM1 = 0.333
SRKT_LCOR_THRESHOLD = 24.2
# Holladay 1
HOLLADAY_NCM1 = 1.0 / 3.0
HOLLADAY_RETINAL_THICKNESS = 0.2
HOLLADAY_AG_MAX = 13.5
# Haigis
HAIGIS_NC = 1.3315
POPULATION_ACD = 3.37
# Barrett
DEFAULT_WTW = 11.7
DEFAULT_LENS_THICKNESS = 4.5
BARRETT_ACD_WEIGHT = 0.35
BARRETT_LT_WEIGHT = 0.15
BARRETT_LONG_EYE_AL = 26.0
BARRETT_LONG_EYE_SLOPE = 0.12


@dataclass(frozen=True)
class FormulaCapability:
    """What a formula needs for full confidence and how its confidence is graded."""
    name: str
    full_confidence_fields: Tuple[str, ...] = ()
    uses_fields: Tuple[str, ...] = ()
    high_band: Optional[Tuple[float, float]] = None  # AL range eligible for "high"
    medium_band: Optional[Tuple[float, float]] = None  # outside this, "low"
    downgrade_band: Optional[Tuple[float, float]] = None  # outside this, one level lower
    downgrade_on_warnings: bool = True
    post_refractive_cap: bool = True
    low_when_out_of_range: bool = True


FORMULA_CAPABILITIES: Dict[str, FormulaCapability] = {
    "srkt": FormulaCapability(
        "SRK/T", high_band=(22.0, 24.5), medium_band=(21.0, 26.0)),
    "holladay1": FormulaCapability(
        "Holladay 1", uses_fields=("wtw",), high_band=(22.0, 26.0), medium_band=(21.0, 27.0)),
    "haigis": FormulaCapability(
        "Haigis", full_confidence_fields=("acd",), uses_fields=("acd",),
        downgrade_band=(20.0, 30.0), downgrade_on_warnings=False),
    # Barrett confidence only reflects how complete the biometry is
    "barrett": FormulaCapability(
        "Barrett Universal II", full_confidence_fields=("acd", "lens_thickness"),
        uses_fields=("acd", "lens_thickness", "wtw"),
        downgrade_on_warnings=False, post_refractive_cap=False, low_when_out_of_range=False),
}


def surgeon_factor_from_a(a_constant: float) -> float:
    """Holladay surgeon factor from the SRK/T A-constant."""
    return 0.5663 * a_constant - 65.60


class IOLCalculator:
    """IOL Power Calculator for one eye, one lens and one target refraction."""

    def __init__(self, biometry: BiometryData, constants: ConstantsSpec = "default",
                 patient_data: Optional[PatientData] = None):
        self.biometry = biometry
        self.constants: IOLConstants = resolve_constants(constants)
        self.patient = patient_data or PatientData(target_refraction=settings.default_target_refraction)

    # --- shared steps ---------------------------------------------------------

    def _prepare(self) -> List[BiometryWarning]:
        self.biometry.validate()
        return detect(self.biometry, self.patient)

    def _effective_k(self) -> float:
        k = corrected_keratometry(self.biometry, self.patient)
        if not k > 0:
            raise BiometryValidationError("k1", f"corrected keratometry is not positive ({k:.2f} D)")
        return k

    def _assess_confidence(self, capability: FormulaCapability, warnings: List[BiometryWarning]) -> str:
        missing = [f for f in capability.full_confidence_fields if getattr(self.biometry, f) is None]
        confidence = "medium" if missing else "high"

        al = self.biometry.axial_length
        if capability.high_band and not (capability.high_band[0] <= al <= capability.high_band[1]):
            confidence = cap(confidence, "medium")
        if capability.medium_band and not (capability.medium_band[0] <= al <= capability.medium_band[1]):
            confidence = "low"
        if capability.downgrade_band and not (capability.downgrade_band[0] <= al <= capability.downgrade_band[1]):
            confidence = downgrade(confidence)

        if capability.downgrade_on_warnings and any(w.code in CONFIDENCE_DOWNGRADES for w in warnings):
            confidence = downgrade(confidence)
        if capability.post_refractive_cap and self.patient.is_post_refractive:
            confidence = cap(confidence, "medium")
        return confidence

    def _finish(self, capability: FormulaCapability, warnings: List[BiometryWarning],
                power: Guarded, elp: float, refraction_for: Callable[[float], float],
                details: Dict[str, float]) -> FormulaResult:
        warnings = list(warnings)
        if power.degenerate:
            warnings.append(BiometryWarning(
                WarningCode.DEGENERATE_GEOMETRY,
                "Géométrie optique dégénérée (distance lentille-rétine non physiologique) - valeurs bornées"))

        floored = soft_floor(power.value)
        if floored.degenerate:
            warnings.append(BiometryWarning(
                WarningCode.POWER_OUT_OF_RANGE,
                f"Puissance calculée hors plage ({power.value:.2f}D) - résultat borné, vérifier la biométrie"))

        confidence = self._assess_confidence(capability, warnings)
        if power.degenerate or (floored.degenerate and capability.low_when_out_of_range):
            confidence = "low"

        target = self.patient.target_refraction
        return FormulaResult(
            formula=capability.name,
            recommended_power=floored.value,
            elp=elp,
            confidence=confidence,
            warnings=[w.message for w in warnings],
            power_options=build_power_options(floored.value, target, refraction_for),
            warning_codes=[w.code.value for w in warnings],
            expected_refraction=round(refraction_for(round_to_lens_step(floored.value)), 2),
            details=dict(details, raw_power_d=power.value),
        )

    def _failed_result(self, capability: FormulaCapability, error: Exception) -> FormulaResult:
        if isinstance(error, BiometryValidationError):
            reason = f"donnée invalide '{error.field}' ({error.message})"
        else:
            reason = str(error) or type(error).__name__
        return FormulaResult(
            formula=capability.name,
            recommended_power=0.0,
            elp=0.0,
            confidence="low",
            warnings=[f"Échec du calcul {capability.name} : {reason}"],
            warning_codes=[WarningCode.FORMULA_FAILED.value],
            error=reason,
        )

    # --- formulas -------------------------------------------------------------

    def calculate_srkt(self) -> FormulaResult:
        """
        SRK/T (Retzlaff, Sanders, Kraff 1990).

        Corneal height from corneal width and radius, ELP = H + (ACDconst - 3.3357),
        optical axial length corrected for retinal thickness, then the theoretical
        vergence equation for emmetropia and for the target refraction.
        """
        warnings = self._prepare()
        capability = FORMULA_CAPABILITIES["srkt"]

        L = float(self.biometry.axial_length)
        K = self._effective_k()
        A = self.constants.a_constant
        target = self.patient.target_refraction
        log.debug("SRK/T: AL=%.2fmm K=%.2fD A=%.2f target=%.2fD", L, K, A, target)

        # 1) Corneal radius (keratometric index)
        r = corneal_radius(K)

        # 2) LCOR (corrected axial length for long eyes)
        if L <= SRKT_LCOR_THRESHOLD:
            LCOR = L
        else:
            LCOR = -3.446 + 1.715 * L - 0.0237 * (L ** 2)

        # 3) Corneal width and Fyodorov corneal height
        Cw = -5.40948 + 0.58412 * LCOR + 0.098 * K
        H = corneal_height(r, Cw)

        # 4) A-constant -> ACD constant -> ELP
        ACDconst = 0.62467 * A - 68.747
        offset = ACDconst - 3.3357
        ELP = H + offset

        # 5) Retinal thickness and optical axial length
        RETHICK = 0.65696 - 0.02029 * L
        LOPT = L + RETHICK

        emmetropic = theoretical_power(LOPT, ELP, r, 0.0, SRKT_NCM1)
        power = theoretical_power(LOPT, ELP, r, target, SRKT_NCM1)

        return self._finish(
            capability, warnings, power, ELP,
            lambda p: theoretical_refraction(p, LOPT, ELP, r, SRKT_NCM1),
            {
                "a_constant": A,
                "k_d": K,
                "r_mm": r,
                "lcor_mm": LCOR,
                "cw_mm": Cw,
                "h_mm": H,
                "acd_const_mm": ACDconst,
                "offset_mm": offset,
                "rethick_mm": RETHICK,
                "lopt_mm": LOPT,
                "emmetropia_power_d": emmetropic.value,
            },
        )

    def calculate_holladay1(self) -> FormulaResult:
        """
        Holladay 1 (1988).

        ELP = anatomic ACD + surgeon factor, where the anatomic ACD comes from the
        corneal radius and the anterior segment size (from WTW when measured,
        otherwise scaled from the axial length).
        """
        warnings = self._prepare()
        capability = FORMULA_CAPABILITIES["holladay1"]

        AL = float(self.biometry.axial_length)
        K = self._effective_k()
        target = self.patient.target_refraction
        R = corneal_radius(K)

        if self.biometry.wtw is not None:
            AG = 12.5 * self.biometry.wtw / DEFAULT_WTW
        else:
            AG = 12.5 * AL / 23.45
        AG = min(AG, HOLLADAY_AG_MAX)

        ACD = 0.56 + corneal_height(R, AG)
        SF = self.constants.surgeon_factor
        if SF is None:
            SF = surgeon_factor_from_a(self.constants.a_constant)

        ELP = ACD + SF
        degenerate = ELP <= 0
        if degenerate:
            ELP = ACD

        AL_mod = AL + HOLLADAY_RETINAL_THICKNESS
        log.debug("Holladay 1: AL=%.2fmm K=%.2fD AG=%.2f SF=%.3f ELP=%.3f", AL, K, AG, SF, ELP)

        emmetropic = theoretical_power(AL_mod, ELP, R, 0.0, HOLLADAY_NCM1)
        power = theoretical_power(AL_mod, ELP, R, target, HOLLADAY_NCM1)
        if degenerate:
            power = Guarded(power.value, True)

        return self._finish(
            capability, warnings, power, ELP,
            lambda p: theoretical_refraction(p, AL_mod, ELP, R, HOLLADAY_NCM1),
            {
                "k_d": K,
                "r_mm": R,
                "ag_mm": AG,
                "anatomic_acd_mm": ACD,
                "surgeon_factor": SF,
                "al_mod_mm": AL_mod,
                "wtw_used": 1.0 if self.biometry.wtw is not None else 0.0,
                "emmetropia_power_d": emmetropic.value,
            },
        )

    def calculate_haigis(self) -> FormulaResult:
        """
        Haigis three-constant formula.
        ELP = a0 + a1*ACD + a2*AL
        Thin-lens vergence with corneal index 1.3315:
            P = 1336/(AL - d) - 1336/(1336/z - d), z = DC + Rc
        """
        warnings = self._prepare()
        capability = FORMULA_CAPABILITIES["haigis"]

        AL = float(self.biometry.axial_length)
        K = self._effective_k()
        target = self.patient.target_refraction
        a0 = self.constants.haigis_a0
        a1 = self.constants.haigis_a1
        a2 = self.constants.haigis_a2

        ACD = self.biometry.acd
        if ACD is None:
            ACD = POPULATION_ACD
            warnings.append(BiometryWarning(
                WarningCode.ACD_ESTIMATED,
                f"ACD non mesurée - valeur moyenne de population ({POPULATION_ACD:.2f}mm) utilisée"))

        d = a0 + a1 * ACD + a2 * AL
        R = corneal_radius(K)
        DC = (HAIGIS_NC - 1.0) / (R / 1000.0)
        log.debug("Haigis: AL=%.2fmm ACD=%.2fmm a=(%.3f, %.3f, %.3f) d=%.3f", AL, ACD, a0, a1, a2, d)

        emmetropic = thin_lens_power(AL, d, DC, 0.0)
        power = thin_lens_power(AL, d, DC, target)

        return self._finish(
            capability, warnings, power, d,
            lambda p: thin_lens_refraction(p, AL, d, DC),
            {
                "a0": a0, "a1": a1, "a2": a2,
                "acd_mm": ACD,
                "acd_measured": 1.0 if self.biometry.acd is not None else 0.0,
                "k_d": K,
                "dc_d": DC,
                "emmetropia_power_d": emmetropic.value,
            },
        )

    def calculate_barrett(self) -> FormulaResult:
        """
        Barrett Universal II style lens-factor model.

        ELP = 0.56 + corneal height (radius, anterior segment size from WTW) + lens factor,
        refined by the measured ACD and lens thickness. Eyes longer than 26 mm
        get a lens-to-retina correction that lowers the power.
        """
        warnings = self._prepare()
        capability = FORMULA_CAPABILITIES["barrett"]
        bio = self.biometry

        AL = float(bio.axial_length)
        K = self._effective_k()
        target = self.patient.target_refraction
        R = corneal_radius(K)

        LF = surgeon_factor_from_a(self.constants.a_constant)
        wtw = bio.wtw if bio.wtw is not None else DEFAULT_WTW
        diameter = min(12.5 * wtw / DEFAULT_WTW, HOLLADAY_AG_MAX)
        H = corneal_height(R, diameter)

        ELP = 0.56 + H + LF
        if bio.acd is not None:
            ELP += BARRETT_ACD_WEIGHT * (bio.acd - POPULATION_ACD)
        if bio.lens_thickness is not None:
            ELP += BARRETT_LT_WEIGHT * (bio.lens_thickness - DEFAULT_LENS_THICKNESS)

        if bio.acd is None or bio.lens_thickness is None:
            missing = [name for name, value in (("ACD", bio.acd), ("épaisseur du cristallin", bio.lens_thickness))
                       if value is None]
            warnings.append(BiometryWarning(
                WarningCode.INCOMPLETE_BARRETT_BIOMETRY,
                f"Données biométriques incomplètes pour Barrett ({', '.join(missing)})"))

        length = AL + HOLLADAY_RETINAL_THICKNESS
        long_eye_correction = 0.0
        if AL > BARRETT_LONG_EYE_AL:
            long_eye_correction = BARRETT_LONG_EYE_SLOPE * (AL - BARRETT_LONG_EYE_AL)
        length += long_eye_correction

        DC = (HAIGIS_NC - 1.0) / (R / 1000.0)
        log.debug("Barrett: AL=%.2fmm K=%.2fD LF=%.3f ELP=%.3f long-eye=%.3f", AL, K, LF, ELP, long_eye_correction)

        emmetropic = thin_lens_power(length, ELP, DC, 0.0)
        power = thin_lens_power(length, ELP, DC, target)

        return self._finish(
            capability, warnings, power, ELP,
            lambda p: thin_lens_refraction(p, length, ELP, DC),
            {
                "k_d": K,
                "r_mm": R,
                "lens_factor": LF,
                "anterior_segment_mm": diameter,
                "h_mm": H,
                "long_eye_correction_mm": long_eye_correction,
                "optical_length_mm": length,
                "emmetropia_power_d": emmetropic.value,
            },
        )

    # --- orchestration --------------------------------------------------------

    def calculate_all(self) -> MultiFormulaResult:
        """Run every formula, isolate failures and build the consensus recommendation."""
        results: Dict[str, FormulaResult] = {}
        for key, capability in FORMULA_CAPABILITIES.items():
            try:
                results[key] = getattr(self, f"calculate_{key}")()
            except Exception as e:
                log.error("%s calculation failed: %s", capability.name, e)
                results[key] = self._failed_result(capability, e)

        ordered = list(results.values())
        al = self.biometry.axial_length
        valid_al = al if isinstance(al, (int, float)) and al > 0 else None

        optimized = consensus.optimize(ordered, valid_al, self.patient.target_refraction)
        recommended = self.get_recommended_formulas(
            valid_al if valid_al is not None else 23.5, self.patient.is_post_refractive)
        recommendations = consensus.build_recommendations(
            self.biometry, self.patient, ordered, optimized, recommended)

        return MultiFormulaResult(
            srkt=results["srkt"],
            holladay1=results["holladay1"],
            haigis=results["haigis"],
            barrett=results["barrett"],
            optimized_recommendation=optimized,
            recommendations=recommendations,
        )

    @staticmethod
    def get_recommended_formulas(axial_length: float, is_post_refractive: bool = False) -> List[str]:
        """Formulas best suited to an axial length (and to post-refractive corneas)."""
        if axial_length < 22.0:
            formulas = ["Haigis", "Hoffer Q", "Holladay 1", "Barrett Universal II"]
        elif axial_length < 26.0:
            formulas = ["Barrett Universal II", "SRK/T", "Holladay 1", "Haigis"]
        else:
            formulas = ["Barrett Universal II", "SRK/T", "Wang-Koch AL adjustment"]

        if is_post_refractive:
            formulas = ["Barrett True K", "Haigis-L", "Shammas-PL"] + formulas
        return formulas
