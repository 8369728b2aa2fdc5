from papertrail.models.flow_session import FlowSession
from papertrail.models.processed_event import ProcessedEvent
from papertrail.models.rate_limit import RateLimit

__all__ = [
    "FlowSession",
    "ProcessedEvent",
    "RateLimit",
]
