"""
Configuration management for the CFDI 4.0 generator
"""
from decimal import Decimal
from typing import Dict
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Project info
    PROJECT_NAME: str = "CFDI 4.0 XML Generator"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"

    # Confirmation thresholds (values published by the regulator)
    CONFIRMATION_TOTAL_THRESHOLD: Decimal = Decimal("20000000.00")
    EXCHANGE_RATE_REFERENCES: Dict[str, Decimal] = {}  # supplied by the c_Moneda catalog service
    EXCHANGE_RATE_VARIATION_PERCENT: Decimal = Decimal("35")

    # Invariant comparison epsilon, 0 means exact after rounding
    NUMERIC_TOLERANCE: Decimal = Decimal("0")

    # Output
    PRETTY_XML: bool = False

    model_config = ConfigDict(
        env_file=[".env.local", ".env"],
        case_sensitive=True
    )


settings = Settings()
