"""Request/response context variants."""

from .api import Context, ContextKind, new_context
from .read import ReadContext
from .write import WriteContext

__all__ = ["Context", "ContextKind", "ReadContext", "WriteContext", "new_context"]
