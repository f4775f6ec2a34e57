from .cod import router as cod_router
from .reconciliation import router as reconciliation_router

__all__ = [
    "cod_router",
    "reconciliation_router",
]
