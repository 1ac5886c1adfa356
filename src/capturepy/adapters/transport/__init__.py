"""Transport adapters: background queueing and HTTP delivery."""

from capturepy.adapters.transport.background import BackgroundTransport
from capturepy.adapters.transport.http import HttpDelivery

__all__ = ["BackgroundTransport", "HttpDelivery"]
