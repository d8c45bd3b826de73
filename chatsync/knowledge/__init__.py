"""Knowledge base retrieval for grounded replies."""

from . import schemas

__all__ = ["schemas"]
