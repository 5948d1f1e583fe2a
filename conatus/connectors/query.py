"""
Conatus Query Connector

Lets workflows ask the language-model query router mid-logic through an
``llm_query`` action.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog

if TYPE_CHECKING:
    from conatus.automation.interfaces import QueryRouter

logger = structlog.get_logger(__name__)


class QueryConnector:
    """
    Connector exposing a single ``llm_query`` action.

    The router is reached with the platform's own access, so no per-user
    credential is looked up for this connector.
    """

    requires_credential = False

    def __init__(self, router: "QueryRouter", timeout: float = 60.0):
        self.router = router
        self.timeout = timeout

    async def llm_query(
        self,
        credential: Optional[str],
        query: str,
        provider: Optional[str] = None,
        context: Any = None,
    ) -> Dict[str, Any]:
        """
        Route a query to the language model.

        Args:
            credential: Unused; always None for this connector
            query: Prompt text
            provider: Optional provider hint
            context: Extra JSON-serialisable context appended to the prompt

        Returns:
            The router response, at least ``{"content": str}``
        """
        prompt = str(query or "")
        if context:
            prompt = f"{prompt}\n\nContext:\n{json.dumps(context, default=str)}"

        logger.debug("routing_llm_query", provider=provider, prompt_chars=len(prompt))

        response = await asyncio.wait_for(
            self.router.query(prompt, provider=provider),
            timeout=self.timeout,
        )
        return dict(response)
