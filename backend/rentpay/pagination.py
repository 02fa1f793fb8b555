# Overview: Page/per_page pagination for list endpoints.

from __future__ import annotations

from typing import Any, Callable

MAX_PER_PAGE = 500


def paginate_query(query, *, page: int | None = 1, per_page: int | None = 50, serializer: Callable | None = None) -> dict[str, Any]:
    page = max(1, int(page or 1))
    per_page = max(1, min(MAX_PER_PAGE, int(per_page or 50)))

    total = query.order_by(None).count()
    rows = query.offset((page - 1) * per_page).limit(per_page).all()
    serialize = serializer or (lambda row: row.to_dict())
    return {
        "items": [serialize(r) for r in rows],
        "page": page,
        "per_page": per_page,
        "total": total,
        "pages": (total + per_page - 1) // per_page if per_page else 1,
    }
