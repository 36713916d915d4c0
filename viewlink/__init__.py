"""Viewlink – presenter side of a one-to-one streaming session."""

__version__ = "0.1.0"
