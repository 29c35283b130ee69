"""
Backend package for tagdesk.

This package provides a FastAPI application for managing data-tagging
projects, with storage and database abstractions so the same routes run
against S3/Postgres in production and in-memory doubles in tests.
"""
