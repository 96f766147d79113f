"""Application package for the StudyTogether backend.

This package exposes the service, repository and model modules used by
the FastAPI application. Individual modules contain the concrete
implementations and documentation; `utils.free_time` holds the pure
mutual free-time calculation.
"""
