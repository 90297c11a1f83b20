"""Request gating, IP rules and security event logging."""

from .counters import FixedWindowCounter
from .events import SecurityEvent, SecurityLogStore
from .gate import GateDecision, SecurityGate
from .image_cache import ImageCache
from .ip_info import IpInfoClient
from .ip_rules import IPRuleStore
from .proxy_config import ImageProxyConfig, ProxyConfigRepository

__all__ = [
    "FixedWindowCounter",
    "GateDecision",
    "ImageCache",
    "ImageProxyConfig",
    "IPRuleStore",
    "IpInfoClient",
    "ProxyConfigRepository",
    "SecurityEvent",
    "SecurityGate",
    "SecurityLogStore",
]
