"""HTTP surface: request-context middleware and the log-control router."""
