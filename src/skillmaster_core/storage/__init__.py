from skillmaster_core.storage.conversation_repository import ConversationRepository
from skillmaster_core.storage.pruning import prune_usage
from skillmaster_core.storage.roadmap_repository import RoadmapRepository
from skillmaster_core.storage.store import Store
from skillmaster_core.storage.usage_store import InMemoryUsageStore, SqliteUsageStore, UsageStore

__all__ = [
    "ConversationRepository",
    "InMemoryUsageStore",
    "RoadmapRepository",
    "SqliteUsageStore",
    "Store",
    "UsageStore",
    "prune_usage",
]
