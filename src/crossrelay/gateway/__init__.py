"""Gateway: routing table, correlation store, relay orchestrator."""

from crossrelay.gateway.correlation import CorrelationStore, MemoryCorrelationStore, create_correlation_store
from crossrelay.gateway.expiry import ExpiryTimer, schedule_expiry
from crossrelay.gateway.orchestrator import RelayOrchestrator
from crossrelay.gateway.router import BridgeConfig, BridgeRoutingTable, RightFlags, SideFlags, ThreadRoute

__all__ = [
    "BridgeConfig",
    "BridgeRoutingTable",
    "CorrelationStore",
    "ExpiryTimer",
    "MemoryCorrelationStore",
    "RelayOrchestrator",
    "RightFlags",
    "SideFlags",
    "ThreadRoute",
    "create_correlation_store",
    "schedule_expiry",
]
