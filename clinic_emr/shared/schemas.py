from pydantic import BaseModel


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


class Pagination(BaseModel):
    """Pagination block returned alongside list results."""

    page: int
    limit: int
    total: int
    pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        pages = (total + limit - 1) // limit if limit else 0
        return cls(page=page, limit=limit, total=total, pages=pages)
