from .capture import BufferedResponse, ResponseCapture, ResponseSink
from .messages import decode_messages
from .metrics import ProxyMetrics
from .server import ProxyState, create_app

__all__ = [
    "create_app",
    "ProxyState",
    "ProxyMetrics",
    "ResponseCapture",
    "ResponseSink",
    "BufferedResponse",
    "decode_messages",
]
