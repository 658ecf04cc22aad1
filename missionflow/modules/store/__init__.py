"""Currency store: catalogue and guarded purchases."""

from missionflow.modules.store.service import StoreService

__all__ = ["StoreService"]
