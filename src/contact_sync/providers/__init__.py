"""Contact providers -- pluggable access to Side A and Side B.

Provides the abstract ContactProvider and TokenProvider contracts and the
httpx-based REST implementations for both sides.
"""

from src.contact_sync.providers.base import (
    ContactProvider,
    StaticTokenProvider,
    TokenProvider,
)
from src.contact_sync.providers.rest import (
    HttpClientFactory,
    SideAContactProvider,
    SideBContactProvider,
)

__all__ = [
    "ContactProvider",
    "TokenProvider",
    "StaticTokenProvider",
    "HttpClientFactory",
    "SideAContactProvider",
    "SideBContactProvider",
]
