import base64
import binascii
from typing import Any, Optional

from pydantic import BaseModel

from ..models.common import SortDirection

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class PagedListResponse(BaseModel):
    """Fields shared by every paged list response"""
    total: int
    page_index: int = 0
    page_size: int = DEFAULT_PAGE_SIZE
    sort_by: Optional[str] = None
    sort_direction: Optional[SortDirection] = None
    filter: Optional[str] = None

    class Config:
        use_enum_values = True


def decode_base64_data(value: Any) -> Any:
    """Accept base64 encoded strings for binary request fields"""
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            raise ValueError("data must be base64 encoded")
    return value
