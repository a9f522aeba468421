"""Stream/quota registry."""

from .plans import PlanProvider, SettingsPlanProvider
from .registry import StreamRegistry, StreamSession

__all__ = ["PlanProvider", "SettingsPlanProvider", "StreamRegistry", "StreamSession"]
