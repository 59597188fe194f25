#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
"""Version information for contextlinter."""

__version__ = "0.3.0"
