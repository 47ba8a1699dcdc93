"""Canonical API version constant.

Kept in its own module so middleware and the health route can read it
without importing the application factory.
"""

API_VERSION = "0.3.0"
