# Copyright (c) 2024 Converge Contributors
# MIT License

"""Converge release metadata."""

from __future__ import annotations

__version__ = "0.1.0"
__author__ = "Converge Contributors"
__codename__ = "Keel"

# Version info tuple for programmatic comparison
VERSION_INFO = (0, 1, 0)
