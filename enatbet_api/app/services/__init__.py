"""
Business logic layer.

Each module exposes a service class whose async classmethods open a
SQLite connection, perform their work and close it again.  Services
raise ``ValueError`` subclasses from ``errors`` which the routers turn
into HTTP responses.
"""
