"""
NebulAuth license-gate middleware for ASGI and WSGI frameworks.

Re-exports middleware classes for convenient imports:
    from nebulauth.middleware import NebulAuthASGIMiddleware
    from nebulauth.middleware import NebulAuthWSGIMiddleware
"""

from .wsgi import ENVIRON_KEY, NebulAuthWSGIMiddleware

__all__: list[str] = ["ENVIRON_KEY", "NebulAuthWSGIMiddleware"]

# ASGI middleware needs starlette (the "asgi" extra)
try:
    from .asgi import NebulAuthASGIMiddleware
    __all__.append("NebulAuthASGIMiddleware")
except ImportError:
    pass
