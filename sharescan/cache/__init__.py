# sharescan/cache/__init__.py
#
# Pre-signed URL cache and the eager/lazy policies that fill it.

from sharescan.cache.presigned_url_cache import PresignedUrlCache  # noqa: F401
from sharescan.cache.population import (  # noqa: F401
    CachePopulation,
    EagerPopulation,
    LazyPopulation,
    PopulationPolicy,
    population_policy,
)

__all__ = [
    "PresignedUrlCache",
    "CachePopulation",
    "EagerPopulation",
    "LazyPopulation",
    "PopulationPolicy",
    "population_policy",
]
