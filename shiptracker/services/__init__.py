from shiptracker.services.filters import MMSIRange, extract_mmsi, passes
from shiptracker.services.live_broadcast import LiveBroadcaster
from shiptracker.services.sessions import ViewerSession

__all__ = [
    "LiveBroadcaster",
    "MMSIRange",
    "ViewerSession",
    "extract_mmsi",
    "passes",
]
