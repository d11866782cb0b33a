from .gateway import ChainGateway, ChainSession

__all__ = ["ChainGateway", "ChainSession"]
