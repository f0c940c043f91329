from prcanary.api.middleware.errors import (
    canary_error_handler,
    problem_response,
    unhandled_exception_handler,
)
from prcanary.api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
    "canary_error_handler",
    "problem_response",
    "unhandled_exception_handler",
]
