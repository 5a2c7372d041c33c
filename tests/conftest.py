# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest configuration for the suite",
#   "sections": [
#     {"id": "globals", "name": "Globals", "anchor": "GLB", "kind": "section"},
#     {"id": "hypothesis", "name": "Hypothesis profiles", "anchor": "HYP", "kind": "section"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Makes ``src`` importable without an editable install and registers the
Hypothesis profiles used by the property-based suites.

Usage:
    pytest                              # default profile
    HYPOTHESIS_PROFILE=ci pytest        # more examples, derandomized
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from hypothesis import HealthCheck, settings

# --- Globals ---

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# --- Hypothesis profiles ---

settings.register_profile(
    "default",
    max_examples=25,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)
settings.register_profile(
    "ci",
    max_examples=100,
    deadline=None,
    derandomize=True,
    suppress_health_check=[HealthCheck.too_slow, HealthCheck.function_scoped_fixture],
)
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "default"))
