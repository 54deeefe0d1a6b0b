"""
Biometry value objects for IOL power calculations.

Everything here is immutable and built per request; nothing is persisted.
"""

import math
from dataclasses import dataclass, field, asdict
from typing import List, Dict, Optional, Any


CONFIDENCE_LEVELS = ("low", "medium", "high")


class BiometryValidationError(ValueError):
    """A required biometry value is missing or unusable."""

    def __init__(self, field_name: str, message: str):
        super().__init__(f"{field_name}: {message}")
        self.field = field_name
        self.message = message


@dataclass(frozen=True)
class BiometryData:
    """Per-eye measurement snapshot."""
    axial_length: Optional[float]  # mm
    k1: Optional[float]  # diopters (flat meridian)
    k2: Optional[float]  # diopters (steep meridian)
    acd: Optional[float] = None  # mm (anterior chamber depth)
    lens_thickness: Optional[float] = None  # mm
    wtw: Optional[float] = None  # mm (white-to-white)
    cct: Optional[float] = None  # um (central corneal thickness)

    @property
    def k_avg(self) -> float:
        """Average keratometry"""
        return (self.k1 + self.k2) / 2

    @property
    def k_max(self) -> float:
        return max(self.k1, self.k2)

    @property
    def corneal_astigmatism(self) -> float:
        """Corneal astigmatism magnitude"""
        return abs(self.k1 - self.k2)

    def validate(self) -> None:
        """Raise BiometryValidationError for values no formula can work with."""
        for name in ("axial_length", "k1", "k2"):
            value = getattr(self, name)
            if value is None:
                raise BiometryValidationError(name, "required measurement is missing")
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise BiometryValidationError(name, f"must be a finite number, got {value!r}")
            if value <= 0:
                raise BiometryValidationError(name, f"must be positive, got {value}")


@dataclass(frozen=True)
class PatientData:
    """Target refraction and refractive surgery history."""
    target_refraction: float = 0.0  # diopters, spectacle plane
    post_lasik: bool = False
    post_prk: bool = False
    pre_lasik_k1: Optional[float] = None
    pre_lasik_k2: Optional[float] = None
    pre_lasik_refraction: Optional[float] = None
    current_refraction: Optional[float] = None

    @property
    def is_post_refractive(self) -> bool:
        return bool(self.post_lasik or self.post_prk)

    @property
    def has_pre_lasik_history(self) -> bool:
        return (self.pre_lasik_k1 is not None and
                self.pre_lasik_k2 is not None and
                self.pre_lasik_refraction is not None)


@dataclass(frozen=True)
class PowerOption:
    power: float  # diopters, on the 0.5 D lens grid
    expected_refraction: float  # diopters
    deviation: float  # |expected - target|


@dataclass(frozen=True)
class FormulaResult:
    """Result of a single formula."""
    formula: str
    recommended_power: float  # diopters
    elp: float  # mm
    confidence: str  # "low", "medium", "high"
    warnings: List[str] = field(default_factory=list)
    power_options: List[PowerOption] = field(default_factory=list)
    warning_codes: List[str] = field(default_factory=list)
    expected_refraction: float = 0.0
    details: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OptimizedRecommendation:
    power: float
    agreement_score: float  # 0-100
    formulas: List[str]
    expected_refraction: float = 0.0


@dataclass(frozen=True)
class MultiFormulaResult:
    """All four formulas plus the consensus recommendation."""
    srkt: FormulaResult
    holladay1: FormulaResult
    haigis: FormulaResult
    barrett: FormulaResult
    optimized_recommendation: OptimizedRecommendation
    recommendations: List[str] = field(default_factory=list)

    @property
    def results(self) -> List[FormulaResult]:
        return [self.srkt, self.holladay1, self.haigis, self.barrett]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def downgrade(confidence: str, steps: int = 1) -> str:
    """Lower a confidence level by `steps`, never below "low"."""
    index = max(CONFIDENCE_LEVELS.index(confidence) - steps, 0)
    return CONFIDENCE_LEVELS[index]


def cap(confidence: str, ceiling: str) -> str:
    """Limit a confidence level to `ceiling`."""
    return CONFIDENCE_LEVELS[min(CONFIDENCE_LEVELS.index(confidence),
                                 CONFIDENCE_LEVELS.index(ceiling))]
