"""hrp-server: bind controllers to HRP robots and republish their joints."""

__version__ = "0.3.0"
