"""
Pinger — Network reachability monitor with a Prometheus /metrics endpoint.
"""

__version__ = "0.3.0"
