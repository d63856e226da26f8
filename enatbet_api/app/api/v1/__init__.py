"""
Version 1 of the Enatbet API.

All routes are mounted under ``/api/v1``.  Breaking changes belong in
a new version subpackage.
"""
