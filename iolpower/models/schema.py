from pydantic import BaseModel, Field
from typing import Optional, Dict, Any

from iolpower.services.biometry import BiometryData, PatientData


class BiometryIn(BaseModel):
    axial_length: float = Field(..., ge=15.0, le=40.0, description="mm")
    k1: float = Field(..., ge=25.0, le=65.0, description="D (flat meridian)")
    k2: float = Field(..., ge=25.0, le=65.0, description="D (steep meridian)")
    acd: Optional[float] = Field(None, ge=1.0, le=6.0, description="mm")
    lens_thickness: Optional[float] = Field(None, ge=2.0, le=8.0, description="mm")
    wtw: Optional[float] = Field(None, ge=9.0, le=15.0, description="mm")
    cct: Optional[int] = Field(None, description="um")

    def to_biometry(self) -> BiometryData:
        return BiometryData(**self.model_dump())


class IOLConstantsIn(BaseModel):
    a_constant: float = Field(..., ge=110.0, le=125.0)
    haigis_a0: Optional[float] = Field(None, ge=-5.0, le=5.0)
    haigis_a1: Optional[float] = Field(None, ge=0.0, le=1.0)
    haigis_a2: Optional[float] = Field(None, ge=0.0, le=0.5)
    surgeon_factor: Optional[float] = Field(None, ge=-3.0, le=5.0, description="mm")


class PatientIn(BaseModel):
    target_refraction: float = Field(0.0, ge=-10.0, le=10.0, description="D, spectacle plane")
    post_lasik: bool = False
    post_prk: bool = False
    pre_lasik_k1: Optional[float] = Field(None, description="D")
    pre_lasik_k2: Optional[float] = Field(None, description="D")
    pre_lasik_refraction: Optional[float] = Field(None, description="D, spherical equivalent")
    current_refraction: Optional[float] = Field(None, description="D, spherical equivalent")

    def to_patient(self) -> PatientData:
        return PatientData(**self.model_dump())


class CalculationRequest(BaseModel):
    """Biometry of one eye plus the lens and the refractive goal."""
    biometry: BiometryIn
    iol_model: Optional[str] = Field(None, description="Registered lens identifier (e.g. 'SN60WF')")
    constants: Optional[IOLConstantsIn] = Field(None, description="Explicit constants; override iol_model")
    patient: PatientIn = PatientIn()

    def constants_spec(self, default_model: str):
        if self.constants is not None:
            return self.constants.model_dump(exclude_none=True)
        return self.iol_model or default_model


class CalculationResponse(BaseModel):
    success: bool = True
    data: Dict[str, Any]
