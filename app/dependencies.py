from fastapi import Query

from app.config import settings


class PaginationParams:
    """
    Reusable FastAPI dependency that parses pagination query parameters.

    Usage in a router::

        @router.get("/api/articles")
        async def list_articles(pagination: PaginationParams = Depends()):
            ...

    Out-of-range values are clamped rather than rejected so that cache keys
    only ever cover the normalised range.

    Attributes
    ----------
    page:
        1-based page number; anything below 1 becomes 1.
    per_page:
        Number of items per page, clamped to ``[1, settings.MAX_PAGE_SIZE]``.
    """

    def __init__(
        self,
        page: int = Query(1, description="Page number (1-based)."),
        per_page: int = Query(
            settings.DEFAULT_PAGE_SIZE,
            description=f"Items per page (1-{settings.MAX_PAGE_SIZE}).",
        ),
    ) -> None:
        self.page, self.per_page = clamp_pagination(page, per_page)


def clamp_pagination(page: int, per_page: int) -> tuple[int, int]:
    return max(1, page), max(1, min(settings.MAX_PAGE_SIZE, per_page))
