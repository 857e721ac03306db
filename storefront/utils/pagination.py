from typing import Dict, Tuple


def normalize_paging(page, page_size, max_page_size: int = 100) -> Tuple[int, int]:
    try:
        p = int(page)
    except (TypeError, ValueError):
        p = 1
    try:
        ps = int(page_size)
    except (TypeError, ValueError):
        ps = 10
    p = p if p > 0 else 1
    ps = ps if ps > 0 else 10
    ps = min(ps, max_page_size)
    return p, ps


def page_info(page: int, page_size: int, total: int) -> Dict:
    total_pages = (total + page_size - 1) // page_size if total > 0 else 0
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
