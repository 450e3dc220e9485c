"""Ravel: dependency-aware orchestration of phased implementation plans."""

__version__ = "0.1.0"
