from typing import Any, Optional
from fastapi.responses import JSONResponse


def error_response(
    message: str = "Error occurred",
    errors: Optional[Any] = None,
    status_code: int = 400,
    error_code: Optional[str] = None,
) -> JSONResponse:
    """Standard error response; ``error_code`` is the machine-readable kind"""
    content = {
        "success": False,
        "message": message
    }

    if error_code:
        content["error_code"] = error_code

    if errors:
        content["errors"] = errors

    return JSONResponse(
        status_code=status_code,
        content=content
    )


def paginated_response(
    data: list,
    page: int,
    page_size: int,
    total: int,
    message: str = "Success"
) -> dict:
    """Paginated payload, same envelope as the other list endpoints"""
    return {
        "success": True,
        "message": message,
        "data": data,
        "pagination": {
            "page": page,
            "page_size": page_size,
            "total": total,
            "total_pages": (total + page_size - 1) // page_size
        }
    }
