"""
Top‑level package for the Enatbet marketplace API.

This file makes ``enatbet_api`` a Python package so that modules
within ``app`` can be imported using fully qualified names like
``enatbet_api.app.main``.  The package provides no public exports;
all functionality lives in submodules under ``app``.
"""

__all__ = []
