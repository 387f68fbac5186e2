from . import compile

__all__ = ["compile"]
