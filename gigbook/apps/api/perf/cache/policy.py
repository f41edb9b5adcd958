"""Cache policy table for cacheable read endpoints.

Endpoints are looked up by exact name; anything not listed is not cached.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class EndpointCachePolicy:
    """Cache policy for a read endpoint.

    Attributes:
        enabled: Whether responses of the endpoint are cached at all.
        ttl_seconds: Lifetime of a cached response.
        key_prefix: Namespace shared by every key of the endpoint.
    """

    enabled: bool
    ttl_seconds: float
    key_prefix: str


MINUTE = 60.0

ENDPOINT_CACHE_POLICIES: Mapping[str, EndpointCachePolicy] = MappingProxyType(
    {
        # Artist endpoints
        "artist.getAll": EndpointCachePolicy(True, 5 * MINUTE, "artist:getAll"),
        "artist.search": EndpointCachePolicy(True, 5 * MINUTE, "artist:search"),
        "artist.getById": EndpointCachePolicy(True, 10 * MINUTE, "artist:getById"),
        # Venue endpoints
        "venueDirectory.getAll": EndpointCachePolicy(True, 10 * MINUTE, "venue:getAll"),
        "venueDirectory.getById": EndpointCachePolicy(True, 10 * MINUTE, "venue:getById"),
        "venueDirectory.search": EndpointCachePolicy(True, 10 * MINUTE, "venue:search"),
        # Per-user, so short-lived
        "auth.me": EndpointCachePolicy(True, 1 * MINUTE, "auth:me"),
        "booking.getAll": EndpointCachePolicy(True, 2 * MINUTE, "booking:getAll"),
        "venueReviews.getByVenue": EndpointCachePolicy(True, 15 * MINUTE, "reviews:venue"),
    }
)


__all__ = ["ENDPOINT_CACHE_POLICIES", "EndpointCachePolicy"]
