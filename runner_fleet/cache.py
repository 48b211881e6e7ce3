"""Shared runner cache bucket declaration."""

from datetime import date, timedelta
from typing import Optional

from pydantic import BaseModel

from .models import CacheOptions


class CacheLifecycleRule(BaseModel):
    """Object expiry rule; disabled means objects never expire."""

    enabled: bool
    expiration_days: Optional[int] = None

    def expiration_date(self, today: date) -> Optional[date]:
        """Calendar date objects written today would expire on."""
        if not self.enabled or self.expiration_days is None:
            return None
        return today + timedelta(days=self.expiration_days)


class CacheBucketDeclaration(BaseModel):
    """What the storage collaborator needs to create the cache bucket."""

    bucket_name: str
    region: str
    encryption: str = "KMS"
    bucket_key_enabled: bool = True
    lifecycle_rule: CacheLifecycleRule


def lifecycle_rule(expiration_days: int) -> CacheLifecycleRule:
    """Build the lifecycle rule for a cache expiration setting.

    0 disables expiry; any positive value expires objects after that many
    days. Negative values are reported by validation and treated as 0 here.
    """
    if expiration_days > 0:
        return CacheLifecycleRule(enabled=True, expiration_days=expiration_days)
    return CacheLifecycleRule(enabled=False)


def cache_bucket_declaration(cache: CacheOptions) -> CacheBucketDeclaration:
    return CacheBucketDeclaration(
        bucket_name=cache.bucket_name,
        region=cache.bucket_location,
        lifecycle_rule=lifecycle_rule(cache.expiration_days),
    )
