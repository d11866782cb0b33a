from .client import GoogleOAuthClient

__all__ = ["GoogleOAuthClient"]
