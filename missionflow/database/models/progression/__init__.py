"""
Progression models.

Exports:
- Notification
- ProgressionRecord
- RewardGrant
"""

from .notification import Notification
from .progression_record import ProgressionRecord
from .reward_grant import RewardGrant

__all__ = ["Notification", "ProgressionRecord", "RewardGrant"]
