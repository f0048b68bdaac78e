"""Stats API routers."""

from exposure_stats.api.stats import router as stats_router

__all__ = ["stats_router"]
