"""
hub-gateway - HTTP gateway module for a publish/subscribe event hub
"""

__version__ = "0.1.0"

from gateway.hub import EventHub, Hub, HubDataLayer
from gateway.main import HttpGateway, LifecycleState

__all__ = ["EventHub", "HttpGateway", "Hub", "HubDataLayer", "LifecycleState"]
