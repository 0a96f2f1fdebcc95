"""
pgscope - request-scoped observability for a PostgreSQL monitoring service.

Subpackages:
    core       Errors and settings shared by everything else
    framework  The logging pipeline (context, redaction, levels, dispatch, timing)
    api        FastAPI middleware and the runtime log-control router
"""

__version__ = "0.1.0"
