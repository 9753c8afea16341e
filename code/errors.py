#!/usr/bin/env python3
"""Exceptions raised by the harmonization pipeline.

A field missing from a source table is never an error: it resolves to
unknown values (see `sources.resolve_field`). The exceptions below cover
the failures that do interrupt work:

    LoadError   - one country's source could not be read; that country is
                  skipped by the pool builder.
    SchemaError - a pooled table lacks a column the core extract requires.
    ConfigError - the country list is malformed (empty, duplicate codes).
    PoolBuildError - every configured country failed to load.
"""


class HarmonizationError(Exception):
    """Base class for pipeline errors."""


class LoadError(HarmonizationError, OSError):
    """A raw country source is unreachable or unreadable."""

    def __init__(self, country_code: str, reason: str):
        self.country_code = country_code
        self.reason = reason
        super().__init__(f"Could not load source for {country_code}: {reason}")


class SchemaError(HarmonizationError, ValueError):
    """A required output column is missing."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Pooled table missing required columns: {self.missing}")


class ConfigError(HarmonizationError, ValueError):
    """Malformed pipeline configuration."""


class PoolBuildError(HarmonizationError, RuntimeError):
    """No configured country could be added to the pool."""

    def __init__(self, failures):
        self.failures = list(failures)
        detail = "; ".join(f"{code}: {reason}" for code, reason in self.failures)
        super().__init__(f"No country was appended to the pool ({detail})")
