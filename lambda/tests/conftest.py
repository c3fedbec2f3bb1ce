# In lambda/ folder

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add lambda/ directory to Python path
lambda_dir = Path(__file__).parent.parent
sys.path.insert(0, str(lambda_dir))

from waterlab.models import Actor, Role  # noqa: E402
from waterlab.standards import build_registry  # noqa: E402
from waterlab.workflow import collect_sample  # noqa: E402


# ============================================================================
# SHARED FIXTURES
# ============================================================================

FIXED_NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def registry():
    """Fresh IS 10500:2012 registry per test."""
    return build_registry()


@pytest.fixture
def admin():
    return Actor(actor_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def member():
    return Actor(actor_id="member-1", role=Role.TEAM_MEMBER)


@pytest.fixture
def field_inputs():
    """All five FIELD parameters, every value acceptable."""
    return [
        {"code": "TEMPERATURE", "value": "24.5"},
        {"code": "PH", "value": 7.2},
        {"code": "APPARENT_COLOUR", "value": "Clear"},
        {"code": "ODOUR", "value": "Unobjectionable"},
        {"code": "TURBIDITY", "value": 0.5},
    ]


@pytest.fixture
def lab_inputs():
    """All seven LAB parameters, every value acceptable."""
    return [
        {"code": "TRUE_COLOUR", "value": 2},
        {"code": "TDS", "value": 320},
        {"code": "ALUMINUM", "value": 0.01},
        {"code": "AMMONIA", "value": 0.1},
        {"code": "CHLORIDE", "value": 120},
        {"code": "FREE_CHLORINE", "value": 0.1},
        {"code": "HARDNESS", "value": 150},
    ]


@pytest.fixture
def collected_sample(member, now):
    return collect_sample(
        sample_id="SMP-2503-00001",
        actor=member,
        location={"longitude": 77.59, "latitude": 12.97},
        address="Ward 12 borewell, Bengaluru",
        now=now,
    ).sample
