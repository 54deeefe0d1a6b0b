"""
IOL Power Calculation API Routes
"""

import logging
from fastapi import APIRouter, HTTPException
from typing import Dict

from iolpower.config import settings
from iolpower.models.schema import CalculationRequest, CalculationResponse
from iolpower.services.biometry import BiometryValidationError
from iolpower.services.calculations import IOLCalculator, FORMULA_CAPABILITIES
from iolpower.services.iol_constants import get_available_lenses

log = logging.getLogger(__name__)

router = APIRouter()

# URL segment -> formula key
FORMULA_ALIASES = {
    "srkt": "srkt",
    "srk-t": "srkt",
    "holladay1": "holladay1",
    "holladay": "holladay1",
    "haigis": "haigis",
    "barrett": "barrett",
    "barrett-universal-ii": "barrett",
}


def _build_calculator(request: CalculationRequest) -> IOLCalculator:
    try:
        return IOLCalculator(
            request.biometry.to_biometry(),
            request.constants_spec(settings.default_iol_model),
            request.patient.to_patient(),
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "field": "constants", "message": str(e)})


@router.post("", response_model=CalculationResponse)
async def calculate_iol_power(request: CalculationRequest) -> CalculationResponse:
    """
    Calculate IOL power with all four formulas and the consensus recommendation.
    A formula that cannot run is reported in its own result, not as an HTTP error.
    """
    calculator = _build_calculator(request)
    try:
        result = calculator.calculate_all()
    except Exception as e:
        log.exception("Consensus calculation failed")
        raise HTTPException(status_code=500, detail=f"Calculation error: {str(e)}")
    return CalculationResponse(data=result.to_dict())


@router.get("/constants")
async def get_constants() -> Dict:
    """Registered lens identifiers with their constants."""
    return {"success": True, "data": get_available_lenses()}


@router.get("/formulas")
async def get_available_formulas() -> Dict:
    """
    Get information about available calculation formulas.
    """
    descriptions = {
        "srkt": "SRK/T: theoretical vergence formula with LCOR, corneal height and retinal thickness correction",
        "holladay1": "Holladay 1: anatomic anterior segment plus surgeon factor",
        "haigis": "Haigis: three-constant ELP regression on ACD and axial length",
        "barrett": "Barrett Universal II: lens-factor ELP model driven by the anterior segment",
    }
    return {
        "success": True,
        "data": {
            key: {
                "name": capability.name,
                "description": descriptions[key],
                "required_data": ["axial_length", "k1", "k2"],
                "full_confidence_data": list(capability.full_confidence_fields),
                "optional_data": list(capability.uses_fields),
            }
            for key, capability in FORMULA_CAPABILITIES.items()
        },
    }


@router.post("/{formula}", response_model=CalculationResponse)
async def calculate_single_formula(formula: str, request: CalculationRequest) -> CalculationResponse:
    """Run one formula; invalid biometry is a 400 naming the offending field."""
    key = FORMULA_ALIASES.get(formula.lower())
    if key is None:
        raise HTTPException(status_code=400, detail={
            "code": "INVALID_FORMULA",
            "message": f"Unknown formula '{formula}'",
            "available": sorted(FORMULA_CAPABILITIES),
        })

    calculator = _build_calculator(request)
    try:
        result = getattr(calculator, f"calculate_{key}")()
    except BiometryValidationError as e:
        raise HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "field": e.field, "message": e.message})
    except ArithmeticError as e:
        log.error("%s calculation failed: %s", FORMULA_CAPABILITIES[key].name, e)
        raise HTTPException(status_code=500, detail=f"Calculation error: {str(e)}")
    return CalculationResponse(data=result.to_dict())
