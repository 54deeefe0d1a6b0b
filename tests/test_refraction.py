"""
Refraction utilities: spherical equivalent, power change, toric cylinder,
vertex conversions and corrected keratometry.
"""

import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from iolpower.services.biometry import BiometryData, PatientData
from iolpower.services.refraction import (
    calculate_spherical_equivalent, estimate_power_change, calculate_toric_cylinder,
    round_to_lens_step, spectacle_to_corneal_refraction, corneal_to_spectacle_refraction,
    corrected_keratometry,
)


def test_spherical_equivalent():
    assert calculate_spherical_equivalent(-2.0, -1.5) == -2.75


def test_power_change():
    assert estimate_power_change(1.0) == 1.5
    assert estimate_power_change(-0.5) == -0.75


@pytest.mark.parametrize("power,expected", [
    (20.24, 20.0),
    (20.25, 20.5),
    (20.74, 20.5),
    (-1.3, -1.5),
])
def test_round_to_lens_step(power, expected):
    assert round_to_lens_step(power) == expected


class TestToricCylinder:
    def test_correction_then_iol_plane(self):
        # (2.0 - 0.3) * 1.4 = 2.38 -> 2.5
        assert calculate_toric_cylinder(2.0, 0.3, 90) == {"cylinder": 2.5, "axis": 90}

    def test_axis_unchanged(self):
        assert calculate_toric_cylinder(3.0, 0.5, 175)["axis"] == 175

    def test_correction_larger_than_cylinder_is_not_clamped(self):
        # (0.0 - 0.5) * 1.4 = -0.7 -> -0.5
        assert calculate_toric_cylinder(0.0, 0.5, 10)["cylinder"] == -0.5
        assert calculate_toric_cylinder(0.2, 0.3, 10)["cylinder"] == 0.0

    def test_default_correction_factor(self):
        assert calculate_toric_cylinder(2.0, None, 90) == calculate_toric_cylinder(2.0, 0.3, 90)

    def test_axis_is_required(self):
        with pytest.raises(TypeError):
            calculate_toric_cylinder(2.0, 0.3)


class TestVertex:
    def test_spectacle_to_corneal(self):
        # -2.00 D at 12 mm is about -1.95 D at the cornea
        assert spectacle_to_corneal_refraction(-2.0) == pytest.approx(-1.953, abs=1e-3)

    def test_plus_lens_grows_at_cornea(self):
        assert spectacle_to_corneal_refraction(5.0) > 5.0

    def test_round_trip(self):
        for rs in (-8.0, -1.25, 0.0, 3.5):
            assert corneal_to_spectacle_refraction(spectacle_to_corneal_refraction(rs)) == pytest.approx(rs)


class TestCorrectedKeratometry:
    def setup_method(self):
        self.biometry = BiometryData(axial_length=24.0, k1=40.0, k2=41.0)

    def test_untreated_cornea(self):
        assert corrected_keratometry(self.biometry, PatientData()) == 40.5
        assert corrected_keratometry(self.biometry, None) == 40.5

    def test_shammas(self):
        assert corrected_keratometry(self.biometry, PatientData(post_lasik=True)) == pytest.approx(1.14 * 40.5 - 6.8)

    def test_clinical_history(self):
        patient = PatientData(post_lasik=True, pre_lasik_k1=44.0, pre_lasik_k2=45.0,
                              pre_lasik_refraction=-4.0, current_refraction=-0.5)
        expected = 44.5 + (spectacle_to_corneal_refraction(-4.0) - spectacle_to_corneal_refraction(-0.5))
        assert corrected_keratometry(self.biometry, patient) == pytest.approx(expected)

    def test_refraction_change_without_pre_lasik_k(self):
        # myopic treatment of -5 D, now plano: K drops by 0.47 * 5
        patient = PatientData(post_lasik=True, pre_lasik_refraction=-5.0)
        assert corrected_keratometry(self.biometry, patient) == pytest.approx(40.5 - 0.47 * 5.0)

    def test_refraction_change_uses_current_refraction(self):
        patient = PatientData(post_prk=True, pre_lasik_refraction=-5.0, current_refraction=-1.0)
        assert corrected_keratometry(self.biometry, patient) == pytest.approx(40.5 - 0.47 * 4.0)
