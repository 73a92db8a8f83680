from meridian.common.models.models import Bar, Direction, EquityPoint, ExitReason, Position, Signal, Trade

__all__ = ["Bar", "Direction", "EquityPoint", "ExitReason", "Position", "Signal", "Trade"]
