"""Travel-time matrices."""

from .service import (
    EstimatedMatrixStrategy,
    HereMatrixStrategy,
    MatrixStrategy,
    OSRMTableStrategy,
    TravelMatrix,
    TravelTimeMatrixResolver,
    create_matrix_resolver,
)

__all__ = [
    "EstimatedMatrixStrategy",
    "HereMatrixStrategy",
    "MatrixStrategy",
    "OSRMTableStrategy",
    "TravelMatrix",
    "TravelTimeMatrixResolver",
    "create_matrix_resolver",
]
