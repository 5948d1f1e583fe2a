"""
Conatus - Personal Assistant Automation Core

Runs user-authored automations on behalf of a user:
- Declarative workflows (initialization steps + ordered logic blocks)
- Service connector dispatch with per-user credentials
- Contextual triggers (time, location, device, behavior)
"""

__version__ = "1.0.0"
__author__ = "Conatus Team"

from conatus.core.config import ConatusConfig
from conatus.automation.engine import WorkflowEngine

__all__ = ["ConatusConfig", "WorkflowEngine", "__version__"]
