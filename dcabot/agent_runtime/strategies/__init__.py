from .dca_tick import DcaExecutionStrategy, DcaTickConfig

__all__ = [
    "DcaExecutionStrategy",
    "DcaTickConfig",
]
