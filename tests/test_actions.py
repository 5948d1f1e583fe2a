"""
Tests for Conatus action dispatch.
"""

import asyncio

import pytest

from conatus.automation.errors import (
    ActionTimeoutError,
    ConnectorError,
    NoCredentialError,
    UnknownServiceError,
    UnsupportedActionError,
)
from conatus.automation.types import ActionSpec, Template, TriggerRef, VariableRef
from conatus.automation.actions.dispatcher import ActionDispatcher
from conatus.connectors.credentials import InMemoryCredentialProvider
from conatus.connectors.registry import InMemoryConnectorRegistry


class TestActionDispatcher:
    """Tests for dispatching actions to connectors."""

    @pytest.mark.asyncio
    async def test_dispatch_resolves_params(self, connectors, credentials, connector, context):
        dispatcher = ActionDispatcher(connectors, credentials)
        action = ActionSpec(
            service_id="chat",
            action_type="send",
            params={
                "to": VariableRef("name"),
                "text": Template("Hi {{name}}"),
                "source": TriggerRef("message.text"),
                "missing": VariableRef("missing"),
            },
        )

        result = await dispatcher.dispatch(action, context)

        assert result == {"sent": True, "to": "Ada", "text": "Hi Ada", "source": "hello", "missing": None}
        assert connector.calls[0]["credential"] == "token-1"

    @pytest.mark.asyncio
    async def test_sync_connector_method(self, connectors, credentials, context):
        dispatcher = ActionDispatcher(connectors, credentials)
        result = await dispatcher.dispatch(ActionSpec("chat", "lookup", {"key": "k"}), context)
        assert result == {"found": "k"}

    @pytest.mark.asyncio
    async def test_unknown_service(self, connectors, credentials, context):
        dispatcher = ActionDispatcher(connectors, credentials)
        with pytest.raises(UnknownServiceError):
            await dispatcher.dispatch(ActionSpec("mail", "send"), context)

    @pytest.mark.asyncio
    async def test_missing_credential(self, connectors, context):
        dispatcher = ActionDispatcher(connectors, InMemoryCredentialProvider())
        with pytest.raises(NoCredentialError) as exc_info:
            await dispatcher.dispatch(ActionSpec("chat", "send"), context)
        assert "chat" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unsupported_action(self, connectors, credentials, context):
        dispatcher = ActionDispatcher(connectors, credentials)
        with pytest.raises(UnsupportedActionError):
            await dispatcher.dispatch(ActionSpec("chat", "teleport"), context)
        with pytest.raises(UnsupportedActionError):
            await dispatcher.dispatch(ActionSpec("chat", "__init__"), context)

    @pytest.mark.asyncio
    async def test_connector_failure_is_wrapped(self, connectors, credentials, context):
        dispatcher = ActionDispatcher(connectors, credentials)
        with pytest.raises(ConnectorError) as exc_info:
            await dispatcher.dispatch(ActionSpec("chat", "fail", {"message": "rate limited"}), context)

        assert str(exc_info.value) == "rate limited"
        assert exc_info.value.service_id == "chat"
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_action_timeout(self, connectors, credentials, context):
        dispatcher = ActionDispatcher(connectors, credentials, action_timeout=0.05)
        with pytest.raises(ActionTimeoutError):
            await dispatcher.dispatch(ActionSpec("chat", "slow", {"seconds": 5}), context)

    @pytest.mark.asyncio
    async def test_credential_failure(self, connectors, context):
        class BrokenCredentials:
            async def get_access_token(self, user_id, service_id):
                raise OSError("vault unreachable")

        class SlowCredentials:
            async def get_access_token(self, user_id, service_id):
                await asyncio.sleep(5)

        dispatcher = ActionDispatcher(connectors, BrokenCredentials())
        with pytest.raises(ConnectorError):
            await dispatcher.dispatch(ActionSpec("chat", "send"), context)

        dispatcher = ActionDispatcher(connectors, SlowCredentials(), credential_timeout=0.05)
        with pytest.raises(ActionTimeoutError):
            await dispatcher.dispatch(ActionSpec("chat", "send"), context)


class TestConnectorRegistry:
    """Tests for the in-memory connector registry."""

    def test_register_and_lookup(self, connector):
        registry = InMemoryConnectorRegistry()
        registry.register("chat", connector)

        assert registry.get_connector("chat") is connector
        assert registry.get_connector("mail") is None
        assert registry.list_services() == ["chat"]
        assert registry.unregister("chat")
        assert not registry.unregister("chat")


class TestCredentialProvider:
    """Tests for the in-memory credential provider."""

    @pytest.mark.asyncio
    async def test_connect_and_revoke(self):
        provider = InMemoryCredentialProvider()
        await provider.set_access_token("u1", "chat", "t1")
        await provider.set_access_token("u1", "mail", "t2")

        assert await provider.get_access_token("u1", "chat") == "t1"
        assert await provider.list_connections("u1") == ["chat", "mail"]
        assert await provider.revoke("u1", "chat")
        assert await provider.get_access_token("u1", "chat") is None
