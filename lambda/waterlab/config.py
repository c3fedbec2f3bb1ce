"""
Configuration for the water sample testing core.

All limits, identifiers, and table names in one place.
Change here, not in business logic modules.
"""

import os

# --- Regulatory Standard ---

STANDARD_VERSION: str = "IS10500-2012"

# --- Value Validation ---

TEXT_MAX_LENGTH: int = 500
ADDRESS_MAX_LENGTH: int = 500
TITLE_MAX_LENGTH: int = 200

# --- Sample Identity ---

SAMPLE_ID_PREFIX: str = "SMP"
SAMPLE_ID_SEQUENCE_WIDTH: int = 5
SAMPLE_SEQUENCE_NAME: str = "sample"

# --- Lifecycle ---

# FIELD_LAB: collected -> field tested -> lab tested -> published
# SINGLE_STAGE: testing -> published (auto-publish on submit)
SAMPLE_WORKFLOW: str = os.environ.get("SAMPLE_WORKFLOW", "FIELD_LAB")

# --- Listing ---

DEFAULT_PAGE_SIZE: int = 10
MAX_PAGE_SIZE: int = 100

# --- Storage ---

SAMPLES_TABLE: str = os.environ.get("SAMPLES_TABLE", "samples")
PARAMETERS_TABLE: str = os.environ.get("PARAMETERS_TABLE", "parameters")
COUNTERS_TABLE: str = os.environ.get("COUNTERS_TABLE", "counters")
AUDIT_TABLE: str = os.environ.get("AUDIT_TABLE", "audit_log")

# --- Logging ---

LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
