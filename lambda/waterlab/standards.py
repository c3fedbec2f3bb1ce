"""
Reference limit tables.

IS 10500:2012 (Indian Standard for Drinking Water), split into the five
parameters measured on site and the seven measured in the laboratory.
Swap the table to grade against a different standard.
"""

from waterlab.models import ParameterDefinition
from waterlab.registry import ParameterRegistry


IS10500_2012: list[dict] = [
    # --- FIELD ---
    {
        "code": "TEMPERATURE",
        "name": "Temperature",
        "unit": "°C",
        "kind": "TEXT",
        "stage": "FIELD",
        "physical_limit": {"min": -50, "max": 100},
        "affects_overall": False,
        "test_method": "IS 3025 (Part 9)",
    },
    {
        "code": "PH",
        "name": "pH",
        "unit": "-",
        "kind": "RANGE",
        "stage": "FIELD",
        "acceptable_limit": {"min": 6.5, "max": 8.5},
        "permissible_limit": {"min": 6.0, "max": 9.0},
        "physical_limit": {"min": 0, "max": 14},
        "test_method": "IS 3025 (Part 11)",
    },
    {
        "code": "APPARENT_COLOUR",
        "name": "Apparent Colour",
        "unit": "-",
        "kind": "ENUM",
        "stage": "FIELD",
        "enum_evaluation": {
            "Clear": "ACCEPTABLE",
            "Yellowish": "PERMISSIBLE",
            "Brownish": "NOT_ACCEPTABLE",
            "Blackish": "NOT_ACCEPTABLE",
        },
        "test_method": "Visual",
    },
    {
        "code": "ODOUR",
        "name": "Odour",
        "unit": "-",
        "kind": "ENUM",
        "stage": "FIELD",
        "enum_evaluation": {
            "Unobjectionable": "ACCEPTABLE",
            "Earthy": "PERMISSIBLE",
            "Sewer smell": "NOT_ACCEPTABLE",
        },
        "test_method": "IS 3025 (Part 5)",
    },
    {
        "code": "TURBIDITY",
        "name": "Turbidity",
        "unit": "NTU",
        "kind": "MAX",
        "stage": "FIELD",
        "acceptable_limit": {"max": 1},
        "permissible_limit": {"max": 5},
        "physical_limit": {"min": 0, "max": 10000},
        "test_method": "IS 3025 (Part 10)",
    },
    # --- LAB ---
    {
        "code": "TRUE_COLOUR",
        "name": "True Colour",
        "unit": "Hazen",
        "kind": "MAX",
        "stage": "LAB",
        "acceptable_limit": {"max": 5},
        "permissible_limit": {"max": 15},
        "physical_limit": {"min": 0, "max": 1000},
        "test_method": "IS 3025 (Part 4)",
    },
    {
        "code": "TDS",
        "name": "Total Dissolved Solids",
        "unit": "mg/L",
        "kind": "MAX",
        "stage": "LAB",
        "acceptable_limit": {"max": 500},
        "permissible_limit": {"max": 2000},
        "physical_limit": {"min": 0, "max": 100000},
        "test_method": "IS 3025 (Part 16)",
    },
    {
        "code": "ALUMINUM",
        "name": "Aluminum (as Al)",
        "unit": "mg/L",
        "kind": "MAX",
        "stage": "LAB",
        "acceptable_limit": {"max": 0.03},
        "permissible_limit": {"max": 0.2},
        "physical_limit": {"min": 0, "max": 1000},
        "test_method": "IS 3025 (Part 55)",
    },
    {
        "code": "AMMONIA",
        "name": "Ammonia (as Total Ammonia-N)",
        "unit": "mg/L",
        "kind": "MAX",
        "stage": "LAB",
        "acceptable_limit": {"max": 0.5},
        "permissible_limit": {"max": 0.5},
        "physical_limit": {"min": 0, "max": 1000},
        "test_method": "IS 3025 (Part 34)",
    },
    {
        "code": "CHLORIDE",
        "name": "Chloride (as Cl)",
        "unit": "mg/L",
        "kind": "MAX",
        "stage": "LAB",
        "acceptable_limit": {"max": 250},
        "permissible_limit": {"max": 1000},
        "physical_limit": {"min": 0, "max": 100000},
        "test_method": "IS 3025 (Part 32)",
    },
    {
        "code": "FREE_CHLORINE",
        "name": "Free Residual Chlorine",
        "unit": "mg/L",
        "kind": "MAX",
        "stage": "LAB",
        "acceptable_limit": {"max": 0.2},
        "permissible_limit": {"max": 1.0},
        "physical_limit": {"min": 0, "max": 100},
        "test_method": "IS 3025 (Part 26)",
    },
    {
        "code": "HARDNESS",
        "name": "Total Hardness (as CaCO3)",
        "unit": "mg/L",
        "kind": "MAX",
        "stage": "LAB",
        "acceptable_limit": {"max": 200},
        "permissible_limit": {"max": 600},
        "physical_limit": {"min": 0, "max": 100000},
        "test_method": "IS 3025 (Part 21)",
    },
]


def build_definitions(table: list[dict] | None = None) -> list[ParameterDefinition]:
    """Fresh definitions for every row of table (IS 10500:2012 by default)."""
    return [ParameterDefinition.model_validate(row) for row in (table or IS10500_2012)]


def build_registry(table: list[dict] | None = None) -> ParameterRegistry:
    return ParameterRegistry(build_definitions(table))
