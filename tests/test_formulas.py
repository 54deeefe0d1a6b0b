"""
Unit tests for the four IOL power formulas.

Reference values were worked by hand from the published equations with the
default lens (A = 118.7, a0/a1/a2 = 1.321/0.4/0.1).
"""

import math
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from iolpower.services.biometry import BiometryData, PatientData
from iolpower.services.calculations import IOLCalculator


def normal_eye(**overrides):
    values = dict(axial_length=23.5, k1=43.5, k2=44.0, acd=3.2, lens_thickness=4.5)
    values.update(overrides)
    return BiometryData(**values)


class TestSRKT:
    def test_normal_eye_is_high_confidence(self):
        result = IOLCalculator(BiometryData(axial_length=23.5, k1=43.5, k2=44.0)).calculate_srkt()
        assert 15 < result.recommended_power < 25
        assert result.recommended_power == pytest.approx(20.66, abs=0.1)
        assert result.confidence == "high"
        assert result.formula == "SRK/T"

    def test_long_eye_is_low_confidence_with_warnings(self):
        result = IOLCalculator(BiometryData(axial_length=27.0, k1=43.0, k2=43.5)).calculate_srkt()
        assert result.recommended_power < 15
        assert result.confidence == "low"
        assert len(result.warnings) > 0
        assert "long_eye" in result.warning_codes

    def test_short_eye_is_not_high_confidence(self):
        result = IOLCalculator(BiometryData(axial_length=21.5, k1=45.0, k2=45.5)).calculate_srkt()
        assert result.recommended_power > 25
        assert result.confidence != "high"

    def test_full_theoretical_formula_for_average_eye(self):
        """AL=23.73mm, K=42.34D, A=119 gives a physiological emmetropic power."""
        bio = BiometryData(axial_length=23.73, k1=42.34, k2=42.34, acd=2.89, lens_thickness=4.9)
        result = IOLCalculator(bio, {"a_constant": 119.0}).calculate_srkt()
        assert 20.0 <= result.recommended_power <= 23.0
        # LCOR only applies above 24.2 mm
        assert result.details["lcor_mm"] == pytest.approx(23.73)

    def test_lcor_applied_to_long_eyes(self):
        result = IOLCalculator(BiometryData(axial_length=26.0, k1=43.5, k2=44.0)).calculate_srkt()
        expected = -3.446 + 1.715 * 26.0 - 0.0237 * 26.0 ** 2
        assert result.details["lcor_mm"] == pytest.approx(expected)

    def test_myopic_target_needs_more_power(self):
        bio = BiometryData(axial_length=23.5, k1=43.5, k2=44.0)
        plano = IOLCalculator(bio).calculate_srkt()
        myopic = IOLCalculator(bio, patient_data=PatientData(target_refraction=-1.0)).calculate_srkt()
        assert myopic.recommended_power > plano.recommended_power
        assert myopic.details["emmetropia_power_d"] == pytest.approx(plano.recommended_power)

    def test_higher_a_constant_gives_higher_power(self):
        bio = BiometryData(axial_length=23.5, k1=43.5, k2=44.0)
        low = IOLCalculator(bio, "LI61AO").calculate_srkt()
        high = IOLCalculator(bio, "ZCB00").calculate_srkt()
        assert high.recommended_power > low.recommended_power

    def test_steep_cornea_downgrades_confidence(self):
        result = IOLCalculator(BiometryData(axial_length=23.5, k1=47.5, k2=48.0)).calculate_srkt()
        assert result.confidence == "medium"
        assert "steep_cornea" in result.warning_codes

    def test_expected_refraction_matches_target(self):
        patient = PatientData(target_refraction=-0.5)
        result = IOLCalculator(normal_eye(), patient_data=patient).calculate_srkt()
        assert abs(result.expected_refraction - (-0.5)) < 0.3


class TestHolladay1:
    def test_normal_eye(self):
        result = IOLCalculator(normal_eye()).calculate_holladay1()
        assert result.recommended_power == pytest.approx(20.65, abs=0.3)
        assert result.confidence == "high"
        assert result.elp > 0

    def test_wtw_changes_anterior_segment(self):
        without = IOLCalculator(normal_eye()).calculate_holladay1()
        with_wtw = IOLCalculator(normal_eye(wtw=12.5)).calculate_holladay1()
        assert with_wtw.details["ag_mm"] == pytest.approx(12.5 * 12.5 / 11.7)
        assert with_wtw.recommended_power > without.recommended_power

    def test_anterior_segment_is_capped(self):
        result = IOLCalculator(normal_eye(axial_length=30.0)).calculate_holladay1()
        assert result.details["ag_mm"] == pytest.approx(13.5)

    def test_explicit_surgeon_factor(self):
        result = IOLCalculator(normal_eye(), {"a_constant": 118.7, "surgeon_factor": 2.0}).calculate_holladay1()
        assert result.details["surgeon_factor"] == pytest.approx(2.0)
        assert result.elp == pytest.approx(result.details["anatomic_acd_mm"] + 2.0)

    def test_surgeon_factor_derived_from_a_constant(self):
        result = IOLCalculator(normal_eye()).calculate_holladay1()
        assert result.details["surgeon_factor"] == pytest.approx(0.5663 * 118.7 - 65.60)

    def test_confidence_bands(self):
        assert IOLCalculator(normal_eye(axial_length=26.5)).calculate_holladay1().confidence == "medium"
        assert IOLCalculator(normal_eye(axial_length=28.0)).calculate_holladay1().confidence == "low"
        assert IOLCalculator(normal_eye(axial_length=20.5)).calculate_holladay1().confidence == "low"


class TestHaigis:
    def test_normal_eye_with_acd(self):
        result = IOLCalculator(normal_eye()).calculate_haigis()
        assert result.recommended_power == pytest.approx(20.92, abs=0.2)
        assert result.elp == pytest.approx(1.321 + 0.4 * 3.2 + 0.1 * 23.5)
        assert result.confidence == "high"

    def test_missing_acd_uses_population_value(self):
        result = IOLCalculator(normal_eye(acd=None)).calculate_haigis()
        assert result.confidence == "medium"
        assert "acd_estimated" in result.warning_codes
        assert result.details["acd_mm"] == pytest.approx(3.37)
        assert result.details["acd_measured"] == 0.0

    def test_custom_constants_override_registry(self):
        constants = {"a_constant": 118.7, "haigis_a0": 1.5, "haigis_a1": 0.35, "haigis_a2": 0.15}
        result = IOLCalculator(normal_eye(), constants).calculate_haigis()
        assert result.elp == pytest.approx(1.5 + 0.35 * 3.2 + 0.15 * 23.5)
        assert result.details["a0"] == 1.5

    def test_extreme_axial_length_downgrades(self):
        assert IOLCalculator(normal_eye(axial_length=19.5)).calculate_haigis().confidence == "medium"
        assert IOLCalculator(normal_eye(axial_length=31.0, acd=None)).calculate_haigis().confidence == "low"

    def test_post_lasik_caps_confidence(self):
        patient = PatientData(post_lasik=True)
        result = IOLCalculator(normal_eye(), patient_data=patient).calculate_haigis()
        assert result.confidence == "medium"


class TestBarrett:
    @pytest.mark.parametrize("acd,lt,expected", [
        (3.2, 4.5, "high"),
        (3.2, None, "medium"),
        (None, 4.5, "medium"),
        (None, None, "medium"),
    ])
    def test_confidence_follows_biometry_completeness(self, acd, lt, expected):
        result = IOLCalculator(normal_eye(acd=acd, lens_thickness=lt)).calculate_barrett()
        assert result.confidence == expected
        assert ("incomplete_barrett_biometry" in result.warning_codes) == (expected == "medium")

    def test_normal_eye_agrees_with_other_formulas(self):
        calc = IOLCalculator(normal_eye())
        barrett = calc.calculate_barrett().recommended_power
        srkt = calc.calculate_srkt().recommended_power
        assert 15 < barrett < 25
        assert abs(barrett - srkt) < 1.0

    def test_long_eye_correction(self):
        long_eye = IOLCalculator(normal_eye(axial_length=27.5, acd=3.5)).calculate_barrett()
        assert long_eye.details["long_eye_correction_mm"] == pytest.approx(0.12 * 1.5)
        assert long_eye.recommended_power < 15

        normal = IOLCalculator(normal_eye(axial_length=25.0)).calculate_barrett()
        assert normal.details["long_eye_correction_mm"] == 0.0

    def test_deeper_chamber_moves_lens_back(self):
        shallow = IOLCalculator(normal_eye(acd=2.8)).calculate_barrett()
        deep = IOLCalculator(normal_eye(acd=3.8)).calculate_barrett()
        assert deep.elp > shallow.elp

    def test_high_confidence_kept_after_lasik(self):
        patient = PatientData(post_lasik=True)
        result = IOLCalculator(normal_eye(), patient_data=patient).calculate_barrett()
        assert result.confidence == "high"


class TestPostRefractive:
    def test_shammas_without_history(self):
        bio = BiometryData(axial_length=23.5, k1=43.5, k2=44.0)
        normal = IOLCalculator(bio).calculate_srkt()
        lasik = IOLCalculator(bio, patient_data=PatientData(post_lasik=True)).calculate_srkt()

        assert lasik.details["k_d"] == pytest.approx(1.14 * 43.75 - 6.8)
        assert lasik.recommended_power > normal.recommended_power
        assert lasik.confidence == "medium"
        assert "post_refractive" in lasik.warning_codes
        assert "missing_pre_lasik_data" in lasik.warning_codes

    def test_clinical_history_method(self):
        patient = PatientData(post_prk=True, pre_lasik_k1=44.0, pre_lasik_k2=44.0,
                              pre_lasik_refraction=-5.0)
        result = IOLCalculator(normal_eye(), patient_data=patient).calculate_srkt()
        corneal_change = -5.0 / (1 + 0.012 * 5.0)
        assert result.details["k_d"] == pytest.approx(44.0 + corneal_change)
        assert "missing_pre_lasik_data" not in result.warning_codes


class TestDegenerateGeometry:
    """
    Constants far outside the clinical range push the lens plane past the
    retina (or behind the cornea). Each formula must still return a finite
    positive power, flagged and with low confidence.
    """

    @pytest.mark.parametrize("method,constants", [
        ("calculate_haigis", {"a_constant": 118.7, "haigis_a0": 30.0}),
        ("calculate_holladay1", {"a_constant": 118.7, "surgeon_factor": -10.0}),
        ("calculate_srkt", {"a_constant": 160.0}),
        ("calculate_barrett", {"a_constant": 160.0}),
    ])
    def test_flagged_finite_and_positive(self, method, constants):
        result = getattr(IOLCalculator(normal_eye(), constants), method)()

        assert result.succeeded
        assert math.isfinite(result.recommended_power)
        assert result.recommended_power > 0
        assert "degenerate_geometry" in result.warning_codes
        assert result.confidence == "low"

    def test_holladay_negative_elp_falls_back_to_acd(self):
        constants = {"a_constant": 118.7, "surgeon_factor": -10.0}
        result = IOLCalculator(normal_eye(), constants).calculate_holladay1()
        assert result.elp > 0


class TestValidation:
    @pytest.mark.parametrize("field,value", [
        ("axial_length", None),
        ("axial_length", 0.0),
        ("axial_length", -3.0),
        ("k1", None),
        ("k2", float("nan")),
    ])
    def test_invalid_required_values(self, field, value):
        from iolpower.services.biometry import BiometryValidationError
        bio = normal_eye(**{field: value})
        with pytest.raises(BiometryValidationError) as exc:
            IOLCalculator(bio).calculate_srkt()
        assert exc.value.field == field

    def test_results_are_finite(self):
        for method in ("calculate_srkt", "calculate_holladay1", "calculate_haigis", "calculate_barrett"):
            result = getattr(IOLCalculator(normal_eye()), method)()
            assert math.isfinite(result.recommended_power)
            assert math.isfinite(result.elp)
