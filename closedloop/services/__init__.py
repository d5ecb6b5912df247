# Loop services
from closedloop.services.aps_manager import APSManager
from closedloop.services.broadcaster import SuggestionBroadcaster
from closedloop.services.device_state import DeviceStateTracker
from closedloop.services.enactment import EnactmentEngine
from closedloop.services.loop_coordinator import LoopTriggerCoordinator
from closedloop.services.pump_commands import PumpCommandQueue
from closedloop.services.recommendation import RecommendationInvoker
from closedloop.services.remote_commands import RemoteCommandHandler
from closedloop.services.temp_basal import TempBasalReconciler

__all__ = [
    "APSManager",
    "DeviceStateTracker",
    "EnactmentEngine",
    "LoopTriggerCoordinator",
    "PumpCommandQueue",
    "RecommendationInvoker",
    "RemoteCommandHandler",
    "SuggestionBroadcaster",
    "TempBasalReconciler",
]
