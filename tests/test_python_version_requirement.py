"""Ensure Python compatibility requirements stay in sync across the project."""

from __future__ import annotations

import sys
from pathlib import Path

import src
from config.version import (
    MIN_PYTHON_VERSION,
    PROJECT_VERSION,
    PYTHON_REQUIRES_SPECIFIER,
    VERSION_INFO,
)

ROOT_DIR = Path(__file__).resolve().parents[1]


def test_python_version_single_source_of_truth() -> None:
    """The declared Python version should match the package metadata."""

    assert src.__package_info__["python_requires"] == PYTHON_REQUIRES_SPECIFIER
    assert sys.version_info[:2] >= MIN_PYTHON_VERSION

    setup_text = (ROOT_DIR / "setup.py").read_text(encoding="utf-8")
    assert "PYTHON_REQUIRES_SPECIFIER" in setup_text
    assert "PROJECT_VERSION" in setup_text


def test_version_file_is_semantic() -> None:
    assert src.__version__ == PROJECT_VERSION
    assert str(VERSION_INFO) == PROJECT_VERSION
