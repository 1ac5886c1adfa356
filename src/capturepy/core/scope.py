"""Per-call enrichment state (tags, user, headers, breadcrumbs)."""

from collections import deque
from typing import TYPE_CHECKING

from capturepy.core.models import Breadcrumb, ContextValue, User, coerce_context

if TYPE_CHECKING:
    from capturepy.core.tracing import Transaction

DEFAULT_MAX_BREADCRUMBS = 100


class Scope:
    """Mutable enrichment container owned by exactly one inbound call.

    A scope is created at ingress, enriched by the boundary adapter and by
    nested code, and discarded at egress. It is never shared between
    concurrent calls, so it carries no locking.

    Args:
        max_breadcrumbs: Capacity of the breadcrumb history. When full, the
                         oldest breadcrumb is evicted first.
    """

    def __init__(self, max_breadcrumbs: int = DEFAULT_MAX_BREADCRUMBS) -> None:
        self.max_breadcrumbs = max(max_breadcrumbs, 0)
        self.tags: dict[str, str] = {}
        self.contexts: dict[str, ContextValue] = {}
        self.headers: dict[str, str] = {}
        self.user: User | None = None
        self.transaction: "Transaction | None" = None
        self._breadcrumbs: deque[Breadcrumb] = deque(maxlen=self.max_breadcrumbs)

    def set_tag(self, key: str, value: str) -> None:
        self.tags[key] = value

    def set_tags(self, tags: dict[str, str]) -> None:
        self.tags.update(tags)

    def set_user(self, user: User | None) -> None:
        self.user = user

    def set_context(self, key: str, value: object) -> None:
        self.contexts[key] = coerce_context(value)

    def set_headers(self, headers: dict[str, str]) -> None:
        """Store already-redacted request headers."""
        self.headers = dict(headers)
        self.contexts["http.headers"] = dict(headers)

    def add_breadcrumb(self, breadcrumb: Breadcrumb) -> None:
        """Append a breadcrumb, evicting the oldest one when at capacity."""
        self._breadcrumbs.append(breadcrumb)

    @property
    def breadcrumbs(self) -> tuple[Breadcrumb, ...]:
        """Breadcrumbs in arrival order, oldest first."""
        return tuple(self._breadcrumbs)
