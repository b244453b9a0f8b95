"""Prometheus metric definitions for the portal.

Single source of truth for all custom metrics.
"""

from prometheus_client import Counter

logins_total = Counter(
    "portal_logins_total",
    "OAuth callback outcomes by provider",
    ["provider", "outcome"],
)

chat_requests_total = Counter(
    "portal_chat_requests_total",
    "Chat requests by result",
    ["status"],
)

chat_history_writes_total = Counter(
    "portal_chat_history_writes_total",
    "Chat history persistence attempts by result",
    ["status"],
)
