from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from exam_proctor.core.exceptions import BadRequestError

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


@dataclass
class Paging:
    page: int = 0
    page_size: int = DEFAULT_PAGE_SIZE
    sort_field: Optional[str] = None
    sort_desc: bool = False

    @property
    def offset(self) -> int:
        return self.page * self.page_size

    def total_pages(self, total: int) -> int:
        if total <= 0:
            return 0
        return (total + self.page_size - 1) // self.page_size


def parse_sort(sort: Optional[str], allowed: Sequence[str]) -> Tuple[Optional[str], bool]:
    """Parse ``field[,asc|desc]`` against a whitelist of sortable fields"""
    if not sort:
        return None, False
    parts = [p.strip() for p in sort.split(",")]
    field = parts[0]
    if field not in allowed:
        raise BadRequestError(f"Cannot sort by '{field}'")
    direction = parts[1].lower() if len(parts) > 1 and parts[1] else "asc"
    if direction not in ("asc", "desc"):
        raise BadRequestError("Sort direction must be 'asc' or 'desc'")
    return field, direction == "desc"


def build_paging(page: int, page_size: int, sort: Optional[str] = None,
                 allowed_sort: Sequence[str] = ()) -> Paging:
    if page < 0:
        raise BadRequestError("page must be >= 0")
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        raise BadRequestError(f"pageSize must be between 1 and {MAX_PAGE_SIZE}")
    field, desc = parse_sort(sort, allowed_sort)
    return Paging(page=page, page_size=page_size, sort_field=field, sort_desc=desc)
