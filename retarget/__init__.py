"""Landmark-to-skeleton retargeting: filtered landmarks in, bone rotations out."""

__version__ = "0.3.0"
