"""
Conatus Execution Observability
"""

from conatus.automation.observability.observer import LoggingObserver

__all__ = ["LoggingObserver"]
