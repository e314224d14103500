"""Observed pressure test data loading."""

from .observed import ObservedDataLoader, load_observed_data

__all__ = [
    "ObservedDataLoader",
    "load_observed_data",
]
