from viso.middleware.gate import EdgeGateMiddleware
from viso.middleware.session import SessionSyncMiddleware

__all__ = ["EdgeGateMiddleware", "SessionSyncMiddleware"]
