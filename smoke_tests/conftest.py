"""Pytest configuration and fixtures for smoke tests.

Smoke tests verify basic package health:
- Package and sub-package imports
- Type checking of the library code
"""

from pathlib import Path
from typing import List

import pytest


PROJECT_ROOT = Path(__file__).parent.parent
SRC_DIR = PROJECT_ROOT / "src"
PACKAGE_DIR = SRC_DIR / "broker_messaging"


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory path."""
    return PROJECT_ROOT


@pytest.fixture
def package_dir() -> Path:
    """Return the broker_messaging package directory path."""
    return PACKAGE_DIR


@pytest.fixture
def subpackages() -> List[str]:
    """Return the dotted names of every broker_messaging sub-package."""
    return sorted(
        f"broker_messaging.{path.parent.name}"
        for path in PACKAGE_DIR.glob("*/__init__.py")
    )
