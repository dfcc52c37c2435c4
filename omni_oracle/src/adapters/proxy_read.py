"""Single read-call feed adapter.

Collaborator: ``read() -> (value at 1e18, timestamp)``. No rescaling.
"""

from ..errors import SourceUnavailable
from .base import BaseAdapter, FeedKind, FeedSource, register_adapter


@register_adapter
class ProxyReadAdapter(BaseAdapter):
    """Adapter for proxies that already report 18-decimal values."""

    kind = FeedKind.PROXY_READ

    def _read(self, source: FeedSource, now: int) -> int:
        value, timestamp = source.endpoint.read()
        if value <= 0:
            raise SourceUnavailable(f"non-positive value {value}")
        self.check_staleness(source, timestamp, now)
        return value
