"""
Helpers shared by the operations services: error wrapping and paging.
"""

import functools
import inspect
import logging
import re
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from ..core.exceptions import InvalidArgumentError, ServiceError, ServiceUnavailableError
from ..models.common import SortDirection
from ..schemas.common import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

logger = logging.getLogger(__name__)


def service_operation(description: str):
    """
    Re-raise service errors unchanged and wrap anything else in a
    ServiceUnavailableError. The description is formatted with the arguments
    of the call, e.g. "retrieve the workflow ({workflow_id})".
    """
    def decorator(func):
        signature = inspect.signature(func)

        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except ServiceError:
                raise
            except ValidationError as e:
                error = e.errors()[0]
                parameter = ".".join(str(part) for part in error.get("loc", ())) or "request"
                raise InvalidArgumentError(parameter, error.get("msg")) from e
            except Exception as e:
                bound = signature.bind_partial(*args, **kwargs)
                bound.apply_defaults()
                message = "Failed to " + description.format(**bound.arguments)
                logger.error(message, exc_info=True)
                raise ServiceUnavailableError(message) from e

        return wrapper

    return decorator


def resolve_page(page_index: Optional[int], page_size: Optional[int]) -> Tuple[int, int]:
    """Return the (page_index, page_size) to use, raising InvalidArgumentError when out of range"""
    if page_index is None:
        page_index = 0
    if page_size is None:
        page_size = DEFAULT_PAGE_SIZE
    if page_index < 0:
        raise InvalidArgumentError("page_index", "must be greater than or equal to 0")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise InvalidArgumentError("page_size", f"must be between 1 and {MAX_PAGE_SIZE}")
    return page_index, page_size


def resolve_sort(
    sort_by: Optional[str],
    sort_direction: Optional[SortDirection],
    allowed: Dict[str, str],
    default: str
) -> List[Tuple[str, int]]:
    """Map a sort option onto the field it sorts by"""
    if sort_by is None:
        sort_by = default
    if sort_by not in allowed:
        raise InvalidArgumentError("sort_by", f"must be one of {', '.join(sorted(allowed))}")
    direction = (sort_direction or SortDirection.ASCENDING).mongo
    return [(allowed[sort_by], direction)]


def content_filter(field: str, value: Optional[str]) -> Dict:
    """Case-insensitive substring match on a single field"""
    if not value:
        return {}
    return {field: {"$regex": re.escape(value), "$options": "i"}}


def any_field_filter(fields: List[str], value: Optional[str]) -> Dict:
    """Case-insensitive substring match on any of the fields"""
    if not value:
        return {}
    return {"$or": [{field: {"$regex": re.escape(value), "$options": "i"}} for field in fields]}
