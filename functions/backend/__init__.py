"""
Backend package for the Viraly API.

This package provides a FastAPI application covering payments and
subscriptions, transactional email, admin actions and AI analysis, with
database and rate limiting abstractions behind it.
"""
