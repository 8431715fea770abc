"""
Pytest configuration and fixtures.
Adds the repo root to the Python path so tests can import tifbot without installing.
"""

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from tifbot.execution.policies import PolicyConfig  # noqa: E402


@pytest.fixture
def fast_config():
    """Policy config with short waits so monitoring loops finish quickly."""
    return PolicyConfig(
        poll_interval_sec=0.01,
        error_backoff_sec=0.01,
        gtc_max_checks=5,
        max_consecutive_errors=0,
        liquidity_check_enabled=True,
        liquidity_probe_multiplier=1.01,
    )
