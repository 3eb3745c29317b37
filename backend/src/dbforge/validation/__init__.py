"""dbforge validation types.

The field pipeline itself lives in ``dbforge.validation.pipeline``.
"""

from dbforge.validation.types import (
    FieldError,
    Operation,
    PipelineContext,
    UserContext,
)

__all__ = [
    "FieldError",
    "Operation",
    "PipelineContext",
    "UserContext",
]
