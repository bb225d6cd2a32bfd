"""SMART Health Link issuance and manifest service."""

__version__ = "0.1.0"
