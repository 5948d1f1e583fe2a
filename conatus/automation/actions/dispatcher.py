"""
Conatus Action Dispatcher

Dispatches workflow actions to the user's connected services.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

import structlog

from conatus.automation.errors import (
    ActionTimeoutError,
    AutomationError,
    ConnectorError,
    NoCredentialError,
    UnknownServiceError,
    UnsupportedActionError,
)
from conatus.automation.types import ActionSpec, to_jsonable
from conatus.automation.execution.resolver import ValueResolver

if TYPE_CHECKING:
    from conatus.automation.execution.context import ExecutionContext
    from conatus.automation.interfaces import (
        ConnectorRegistry,
        CredentialProvider,
        ExecutionObserver,
    )

logger = structlog.get_logger(__name__)


class ActionDispatcher:
    """
    Dispatches actions.

    For each action:
    1. Resolve every parameter against the context
    2. Look up the service connector
    3. Fetch the user's credential for the service, unless the connector
       sets ``requires_credential = False``
    4. Call the connector method named after the action type

    Connector and credential calls run under timeouts. There is no retry.
    """

    def __init__(
        self,
        connectors: "ConnectorRegistry",
        credentials: "CredentialProvider",
        resolver: Optional[ValueResolver] = None,
        observer: Optional["ExecutionObserver"] = None,
        action_timeout: float = 30.0,
        credential_timeout: float = 10.0,
    ):
        self.connectors = connectors
        self.credentials = credentials
        self.resolver = resolver or ValueResolver()
        self.observer = observer
        self.action_timeout = action_timeout
        self.credential_timeout = credential_timeout

    async def dispatch(
        self,
        action: ActionSpec,
        context: "ExecutionContext",
    ) -> Any:
        """
        Execute an action.

        Args:
            action: Action definition
            context: Execution context

        Returns:
            Whatever the connector returned
        """
        params = self.resolve_params(action.params, context)
        service_id = action.service_id

        connector = self.connectors.get_connector(service_id)
        if connector is None:
            raise UnknownServiceError(service_id)

        credential = None
        if getattr(connector, "requires_credential", True):
            credential = await self._get_credential(context.user_id, service_id)

        method = self._get_method(connector, action.action_type)
        if method is None:
            raise UnsupportedActionError(service_id, action.action_type)

        if self.observer:
            self.observer.on_action_dispatch(action, context.user_id)

        try:
            if inspect.iscoroutinefunction(method):
                call = method(credential, **params)
            else:
                call = asyncio.to_thread(method, credential, **params)

            result = await asyncio.wait_for(call, timeout=self.action_timeout)

            logger.debug(
                "action_executed",
                service_id=service_id,
                action_type=action.action_type,
                success=True,
            )

            return result

        except asyncio.TimeoutError as e:
            logger.error(
                "action_timeout",
                service_id=service_id,
                action_type=action.action_type,
                timeout=self.action_timeout,
            )
            raise ActionTimeoutError(service_id, self.action_timeout) from e

        except Exception as e:
            logger.error(
                "action_error",
                service_id=service_id,
                action_type=action.action_type,
                error=str(e),
            )
            raise ConnectorError(str(e), service_id, cause=e) from e

    def resolve_params(
        self,
        params: Dict[str, Any],
        context: "ExecutionContext",
    ) -> Dict[str, Any]:
        """Resolve parameter expressions."""
        if not params:
            return {}

        return {
            key: to_jsonable(self.resolver.resolve(value, context))
            for key, value in params.items()
        }

    async def _get_credential(self, user_id: str, service_id: str) -> str:
        try:
            credential = await asyncio.wait_for(
                self.credentials.get_access_token(user_id, service_id),
                timeout=self.credential_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ActionTimeoutError(service_id, self.credential_timeout) from e
        except AutomationError:
            raise
        except Exception as e:
            raise ConnectorError(f"Credential lookup failed: {e}", service_id, cause=e) from e

        if not credential:
            raise NoCredentialError(user_id, service_id)

        return credential

    @staticmethod
    def _get_method(connector: Any, action_type: str) -> Optional[Callable[..., Any]]:
        """Public callable attribute named after the action type."""
        if not action_type or action_type.startswith("_"):
            return None
        method = getattr(connector, action_type, None)
        return method if callable(method) else None
