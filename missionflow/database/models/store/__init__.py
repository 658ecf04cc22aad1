"""
Store models.

Exports:
- StoreItem
- Purchase
"""

from .purchase import Purchase
from .store_item import StoreItem

__all__ = ["Purchase", "StoreItem"]
