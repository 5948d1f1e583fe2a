"""
Conatus Workflow Actions

Dispatch of actions to connected services.
"""

from conatus.automation.actions.dispatcher import ActionDispatcher

__all__ = ["ActionDispatcher"]
