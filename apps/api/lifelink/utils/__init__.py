"""Utility modules."""

from lifelink.utils.datetime_utils import as_utc, start_of_day, start_of_month, utc_now
from lifelink.utils.pagination import (
    PaginatedResponse,
    PaginationParams,
    paginate_query,
)

__all__ = [
    # Datetime
    "as_utc",
    "start_of_day",
    "start_of_month",
    "utc_now",
    # Pagination
    "PaginationParams",
    "PaginatedResponse",
    "paginate_query",
]
