from . import types
from .messages import REQUEST_MODELS, parse_request, make_event, resp_error

__all__ = [
    "types",
    "REQUEST_MODELS",
    "parse_request",
    "make_event",
    "resp_error",
]
