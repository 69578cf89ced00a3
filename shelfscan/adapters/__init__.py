"""Adapters package initialization."""
from shelfscan.adapters.http_transport import HttpTransport, FetchResult, FetchOutcome, HeaderProfile
from shelfscan.adapters.browser_renderer import BrowserRenderer, StealthPolicy
from shelfscan.adapters.proxy import ProxyProvider, RotatingProxyProvider
from shelfscan.adapters.sink import RecordSink, MemorySink

__all__ = [
    "HttpTransport",
    "FetchResult",
    "FetchOutcome",
    "HeaderProfile",
    "BrowserRenderer",
    "StealthPolicy",
    "ProxyProvider",
    "RotatingProxyProvider",
    "RecordSink",
    "MemorySink",
]
