from .convex_client import (
    ConvexAuthError,
    ConvexClient,
    ConvexError,
    ConvexMutationError,
    ConvexQueryError,
    get_convex_client,
)

__all__ = [
    "ConvexAuthError",
    "ConvexClient",
    "ConvexError",
    "ConvexMutationError",
    "ConvexQueryError",
    "get_convex_client",
]
