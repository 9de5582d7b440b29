# src/PPdownscalePy/errors.py
# SPDX-License-Identifier: MIT
"""Exception types raised by PPdownscalePy."""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid or inconsistent downscaling configuration.

    Raised for unknown method names, missing or malformed fold
    specifications and predictor/variable mismatches. Never retried.
    """


class DateMismatchError(ConfigurationError):
    """Predictor and predictand reference dates are not identical."""
