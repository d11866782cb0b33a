from .client import PrivyClient

__all__ = ["PrivyClient"]
