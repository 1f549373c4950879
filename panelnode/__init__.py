"""Keep a proxy core's inbounds, users, limits and rules in step with a management panel."""

__version__ = "0.1.0"
__all__ = ["config", "models", "service", "users", "inbound", "outbound", "control", "controller"]