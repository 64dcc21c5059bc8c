from .delegate import DelegatePort
from .upstream import UpstreamFetcherPort, UpstreamReply

__all__ = ["DelegatePort", "UpstreamFetcherPort", "UpstreamReply"]
