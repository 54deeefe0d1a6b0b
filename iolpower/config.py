import os
from pydantic import BaseModel

class Settings(BaseModel):
    allow_origin: str = os.getenv("ALLOW_ORIGIN", "*")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    default_iol_model: str = os.getenv("IOL_DEFAULT_MODEL", "default")
    default_target_refraction: float = float(os.getenv("IOL_DEFAULT_TARGET", "0.0"))
    # agreement score lost per diopter of spread between formulas
    agreement_penalty_per_d: float = float(os.getenv("IOL_AGREEMENT_PENALTY", "25.0"))
    disagreement_threshold: float = float(os.getenv("IOL_DISAGREEMENT_THRESHOLD", "90"))
    toric_suggestion_d: float = float(os.getenv("IOL_TORIC_SUGGESTION_D", "1.5"))
    sia_default: float = float(os.getenv("SIA_DEFAULT", "0.3"))

settings = Settings()
