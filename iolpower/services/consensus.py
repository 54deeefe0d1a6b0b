"""
Multi-formula consensus.

Combines the four formula results into one lens power, scores how well the
formulas agree, and writes the clinical guidance shown next to the result.
"""

from typing import List, Optional, Sequence

import numpy as np

from iolpower.config import settings
from .biometry import BiometryData, PatientData, FormulaResult, OptimizedRecommendation
from .edge_cases import WarningCode
from .refraction import round_to_lens_step, estimate_power_change

CONFIDENCE_WEIGHTS = {"high": 3.0, "medium": 2.0, "low": 1.0}

# Tie-break between equally confident formulas outside the normal eye band
FORMULA_PRIORITY = {
    "Barrett Universal II": 1.3,
    "Haigis": 1.2,
    "Holladay 1": 1.1,
    "SRK/T": 1.0,
}
NORMAL_AL_BAND = (22.0, 24.5)
SHORT_EYE_AL = 22.0
LONG_EYE_AL = 26.0


def formula_weight(result: FormulaResult, axial_length: Optional[float]) -> float:
    """Confidence weight, with the formula priority applied outside 22-24.5 mm."""
    weight = CONFIDENCE_WEIGHTS[result.confidence]
    low, high = NORMAL_AL_BAND
    if axial_length is not None and not (low <= axial_length <= high):
        weight *= FORMULA_PRIORITY.get(result.formula, 1.0)
    return weight


def is_degenerate(result: FormulaResult) -> bool:
    return WarningCode.DEGENERATE_GEOMETRY.value in result.warning_codes


def consensus_results(results: Sequence[FormulaResult]) -> List[FormulaResult]:
    """
    Results that take part in the consensus: succeeded, and not computed on a
    degenerate geometry unless every succeeded result was.
    """
    succeeded = [r for r in results if r.succeeded]
    sound = [r for r in succeeded if not is_degenerate(r)]
    return sound or succeeded


def agreement_score(powers: Sequence[float], penalty_per_d: Optional[float] = None) -> float:
    """100 minus a penalty proportional to the spread of the powers, within [0, 100]."""
    if not powers:
        return 0.0
    penalty = settings.agreement_penalty_per_d if penalty_per_d is None else penalty_per_d
    spread = float(np.max(powers) - np.min(powers))
    return float(round(min(100.0, max(0.0, 100.0 - penalty * spread))))


def optimize(results: Sequence[FormulaResult], axial_length: Optional[float],
             target_refraction: float = 0.0) -> OptimizedRecommendation:
    """Confidence-weighted power on the 0.5 D grid from the consensus results."""
    usable = consensus_results(results)
    if not usable:
        return OptimizedRecommendation(power=0.0, agreement_score=0.0, formulas=[],
                                       expected_refraction=target_refraction)

    weights = np.array([formula_weight(r, axial_length) for r in usable])
    powers = np.array([r.recommended_power for r in usable])
    weighted_power = float(np.average(powers, weights=weights))
    lens_power = round_to_lens_step(weighted_power)

    # highest weight first; sorted() is stable so ties keep the formula order
    ranked = sorted(zip(usable, weights), key=lambda pair: -pair[1])

    return OptimizedRecommendation(
        power=lens_power,
        agreement_score=agreement_score(powers.tolist()),
        formulas=[r.formula for r, _ in ranked],
        expected_refraction=round(
            target_refraction - (lens_power - weighted_power) / estimate_power_change(1.0), 2),
    )


def build_recommendations(biometry: BiometryData, patient: PatientData,
                          results: Sequence[FormulaResult],
                          optimized: OptimizedRecommendation,
                          recommended_formulas: List[str]) -> List[str]:
    """Free-text guidance for the surgeon."""
    recommendations = [f"Formules recommandées : {', '.join(recommended_formulas)}"]

    al = biometry.axial_length
    if isinstance(al, (int, float)) and al > 0:
        if al < SHORT_EYE_AL:
            recommendations.extend([
                "Œil court : Haigis et Holladay 1 recommandés",
                "Risque de surprise hypermétropique - viser légèrement myope",
            ])
        elif al >= LONG_EYE_AL:
            recommendations.extend([
                "Œil long : Barrett Universal II fortement recommandé",
                "Risque de surprise myopique - viser l'emmétropie",
            ])
        else:
            recommendations.append("Œil normal : Barrett Universal II offre la meilleure précision")

    if patient.is_post_refractive:
        recommendations.extend([
            "Post-LASIK/PRK : utiliser une kératométrie corrigée",
            "Barrett True K ou Haigis-L recommandés",
        ])
        if not patient.has_pre_lasik_history:
            recommendations.append("Historique pré-LASIK manquant - obtenir les données pré-opératoires si possible")
        recommendations.append("Prévoir un possible ajustement réfractif post-opératoire")

    usable = consensus_results(results)
    if len(usable) > 1 and optimized.agreement_score < settings.disagreement_threshold:
        recommendations.append(
            f"Désaccord inter-formules ({optimized.agreement_score:.0f}%) - vérifier la biométrie")

    for result in results:
        if not result.succeeded:
            recommendations.append(f"Calcul {result.formula} impossible : {result.error}")
        elif result not in usable:
            recommendations.append(
                f"Résultat {result.formula} exclu du consensus : géométrie optique dégénérée")

    if isinstance(biometry.k1, (int, float)) and isinstance(biometry.k2, (int, float)):
        delta_k = abs(biometry.k1 - biometry.k2)
        if delta_k > settings.toric_suggestion_d:
            recommendations.append(f"Astigmatisme {delta_k:.2f}D - envisager IOL torique")

    return recommendations
