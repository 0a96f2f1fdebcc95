from pgscope.api.middleware.errors import pgscope_error_handler, problem_response
from pgscope.api.middleware.request_context import RequestContextMiddleware

__all__ = ["RequestContextMiddleware", "pgscope_error_handler", "problem_response"]
