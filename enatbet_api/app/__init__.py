"""
Application package initializer.

The project is organised by domain: listings, bookings, payments,
reviews, messaging and the admin back office each expose a router
defined in ``api/v1/endpoints`` backed by a service class in
``services``.  Pure helpers for dates and money live in ``utils`` and
infrastructure (configuration, database, authentication, Stripe) in
``core``.
"""

from .main import app  # noqa: F401
