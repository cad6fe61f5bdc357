from .position_monitor import PositionMonitor, check_live_crossing, check_retroactive_crossing

__all__ = ["PositionMonitor", "check_live_crossing", "check_retroactive_crossing"]
