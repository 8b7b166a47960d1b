"""
This file configures pytest.

It puts src/ on the import path so tests import ``market_sync`` the same way
the installed package is imported.

pip install -e ".[test]"
pytest -q tests
RUN_INTEGRATION_TESTS=1 pytest -q -m integration tests
"""

from __future__ import annotations

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"

for candidate in (PROJECT_ROOT, SRC_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)
