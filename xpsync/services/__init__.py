"""Synchronization services for the EduGame XP client."""

from xpsync.services.event_bus import EventBus
from xpsync.services.gateway import StatsGateway
from xpsync.services.scheduler import DeferredTask
from xpsync.services.store import GamificationStore, validate_xp_amount
from xpsync.services.sync_coordinator import SyncCoordinator

__all__ = [
    "DeferredTask",
    "EventBus",
    "GamificationStore",
    "StatsGateway",
    "SyncCoordinator",
    "validate_xp_amount",
]
