from .client import NadfunClient

__all__ = ["NadfunClient"]
