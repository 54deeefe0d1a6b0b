"""
IOL Constants Registry

Resolves a lens model identifier, an explicit constants struct, or "default"
into the A-constant and Haigis a0/a1/a2 used by the formula calculators.
Unknown identifiers fall back to the default lens instead of failing.
"""

import logging
from dataclasses import dataclass, replace, asdict
from typing import Dict, Optional, Union, Mapping, Any

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class IOLConstants:
    """Optical constants of one IOL model."""
    a_constant: float
    haigis_a0: float
    haigis_a1: float
    haigis_a2: float
    surgeon_factor: Optional[float] = None  # Holladay 1, derived from A when absent


# === Standard lens constants ===

STANDARD_IOL_CONSTANTS: Dict[str, IOLConstants] = {
    # Alcon AcrySof
    "SA60AT": IOLConstants(a_constant=118.7, haigis_a0=1.321, haigis_a1=0.400, haigis_a2=0.100),
    "SN60WF": IOLConstants(a_constant=118.7, haigis_a0=1.321, haigis_a1=0.400, haigis_a2=0.100),
    "MA60MA": IOLConstants(a_constant=118.9, haigis_a0=1.560, haigis_a1=0.400, haigis_a2=0.100),
    # J&J Vision (AMO)
    "ZCB00": IOLConstants(a_constant=119.1, haigis_a0=1.629, haigis_a1=0.400, haigis_a2=0.100),
    "ZXR00": IOLConstants(a_constant=119.1, haigis_a0=1.629, haigis_a1=0.400, haigis_a2=0.100),
    # Bausch & Lomb
    "enVista": IOLConstants(a_constant=119.1, haigis_a0=1.691, haigis_a1=0.400, haigis_a2=0.100),
    "LI61AO": IOLConstants(a_constant=118.0, haigis_a0=0.969, haigis_a1=0.400, haigis_a2=0.100),
    # Zeiss
    "CT_Lucia": IOLConstants(a_constant=118.6, haigis_a0=1.243, haigis_a1=0.400, haigis_a2=0.100),
    "AT_Lisa": IOLConstants(a_constant=118.6, haigis_a0=1.321, haigis_a1=0.400, haigis_a2=0.100),
    "default": IOLConstants(a_constant=118.7, haigis_a0=1.321, haigis_a1=0.400, haigis_a2=0.100),
}

DEFAULT_LENS = "default"

# camelCase keys accepted from upstream JSON payloads
_FIELD_ALIASES = {
    "aConstant": "a_constant",
    "haigisA0": "haigis_a0",
    "haigisA1": "haigis_a1",
    "haigisA2": "haigis_a2",
    "surgeonFactor": "surgeon_factor",
}

ConstantsSpec = Union[str, IOLConstants, Mapping[str, Any], None]


def get_constants(lens_id: str) -> IOLConstants:
    """Get constants by lens identifier, defaulting to the generic lens if not found."""
    constants = STANDARD_IOL_CONSTANTS.get(lens_id)
    if constants is None:
        log.warning("Unknown IOL model %r, using default constants", lens_id)
        return STANDARD_IOL_CONSTANTS[DEFAULT_LENS]
    return constants


def create_custom_constants(**kwargs) -> IOLConstants:
    """Create constants from explicit values; missing Haigis values come from the default lens."""
    values = {_FIELD_ALIASES.get(key, key): value for key, value in kwargs.items() if value is not None}
    if "a_constant" not in values:
        raise ValueError("Custom IOL constants require an A-constant")

    unknown = set(values) - set(IOLConstants.__dataclass_fields__)
    if unknown:
        raise ValueError(f"Unknown IOL constant fields: {', '.join(sorted(unknown))}")

    defaults = STANDARD_IOL_CONSTANTS[DEFAULT_LENS]
    return replace(defaults, **{key: float(value) for key, value in values.items()})


def resolve_constants(spec: ConstantsSpec = DEFAULT_LENS) -> IOLConstants:
    """Resolve "default", a lens identifier, a struct or a mapping into IOLConstants."""
    if spec is None:
        return STANDARD_IOL_CONSTANTS[DEFAULT_LENS]
    if isinstance(spec, IOLConstants):
        return spec
    if isinstance(spec, str):
        return get_constants(spec)
    if isinstance(spec, Mapping):
        return create_custom_constants(**spec)
    raise TypeError(f"Unsupported IOL constants specification: {type(spec).__name__}")


def get_available_lenses() -> Dict[str, Dict[str, Any]]:
    """Get all registered lens identifiers with their constants."""
    return {lens_id: asdict(constants) for lens_id, constants in STANDARD_IOL_CONSTANTS.items()}
