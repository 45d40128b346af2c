"""
Custom exceptions for the callset-refine toolkit.

This module provides specific exception types so callers can tell
configuration mistakes, caller-level bugs and per-site data problems apart.
"""

from typing import Optional


class CallsetRefineError(Exception):
    """Base exception for callset-refine errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


class InvalidConfigurationError(CallsetRefineError):
    """Raised when configuration is invalid (negative pseudocounts, thresholds outside [0, 1])."""
    pass


class InvalidPloidyError(CallsetRefineError):
    """Raised when a non-diploid sample is presented for family refinement."""

    def __init__(self, sample_id: str, ploidy: int):
        super().__init__(
            f"Sample {sample_id} has ploidy {ploidy}; family priors require diploid genotypes",
            {"sample_id": sample_id, "ploidy": ploidy},
        )
        self.sample_id = sample_id
        self.ploidy = ploidy


class MissingAnnotationError(CallsetRefineError):
    """Raised when a filter strategy's required annotation is absent from a site."""

    def __init__(self, filter_name: str, annotation: str, site_id: Optional[str] = None):
        location = f" at {site_id}" if site_id else ""
        super().__init__(
            f"Filter {filter_name} requires annotation {annotation}{location}",
            {"filter_name": filter_name, "annotation": annotation, "site_id": site_id},
        )
        self.filter_name = filter_name
        self.annotation = annotation
        self.site_id = site_id


class MalformedGenotypeLikelihoodError(CallsetRefineError):
    """Raised when a likelihood vector does not match the site's genotype count."""
    pass


class EngineStateError(CallsetRefineError):
    """Raised when the filtering engine is driven out of phase order."""
    pass


class PedigreeError(CallsetRefineError):
    """Raised when pedigree input cannot be parsed."""
    pass
