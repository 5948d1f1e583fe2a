"""
Conatus Transformation Engine

Applies data transformations inside initialization steps.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Mapping, Optional, TYPE_CHECKING

import structlog

from conatus.automation.errors import TransformError, TransformTimeoutError
from conatus.automation.types import (
    ArrayFilter,
    ArrayMap,
    ArrayReduce,
    JsonParse,
    JsonStringify,
    ModelTransform,
    ObjectOmit,
    ObjectPick,
    RegexExtract,
    TransformSpec,
    to_jsonable,
)
from conatus.automation.conditions.evaluator import ConditionEvaluator
from conatus.automation.execution.context import ExecutionContext
from conatus.automation.execution.resolver import ValueResolver

if TYPE_CHECKING:
    from conatus.automation.interfaces import QueryRouter

logger = structlog.get_logger(__name__)

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


class TransformationEngine:
    """
    Applies transformations to data.

    Supports:
    - json_parse / json_stringify
    - array_map / array_filter / array_reduce
    - regex_extract
    - object_pick / object_omit
    - llm_transform (delegates to the query router)

    Every transformation except ``llm_transform`` is pure and returns a
    neutral value instead of raising on malformed input.
    """

    def __init__(
        self,
        query_router: Optional["QueryRouter"] = None,
        resolver: Optional[ValueResolver] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        timeout: float = 60.0,
    ):
        self.query_router = query_router
        self.resolver = resolver or ValueResolver()
        self.evaluator = evaluator or ConditionEvaluator(self.resolver)
        self.timeout = timeout

    async def apply(
        self,
        input: Any,
        spec: Optional[TransformSpec],
        context: Optional[ExecutionContext] = None,
    ) -> Any:
        """
        Apply a transformation.

        Args:
            input: Data to transform
            spec: Transformation definition
            context: Execution context (supplies the user id to scratch contexts)

        Returns:
            Transformed data
        """
        if spec is None:
            return input

        if isinstance(spec, JsonParse):
            return self._json_parse(input)

        if isinstance(spec, JsonStringify):
            return self._json_stringify(input)

        if isinstance(spec, ArrayMap):
            if not isinstance(input, (list, tuple)):
                return []
            return [await self.apply(item, spec.item_transformation, context) for item in input]

        if isinstance(spec, ArrayFilter):
            if not isinstance(input, (list, tuple)):
                return []
            return [
                item for item in input
                if self.evaluator.evaluate(spec.condition, self._scratch(context, item=item))
            ]

        if isinstance(spec, ArrayReduce):
            if not isinstance(input, (list, tuple)):
                return spec.initial_value
            accumulator = spec.initial_value
            for item in input:
                scratch = self._scratch(context, accumulator=accumulator, item=item)
                accumulator = self.resolver.resolve(spec.reducer, scratch)
            return accumulator

        if isinstance(spec, RegexExtract):
            return self._regex_extract(input, spec)

        if isinstance(spec, ObjectPick):
            if not isinstance(input, Mapping):
                return {}
            return {k: input[k] for k in spec.keys if k in input}

        if isinstance(spec, ObjectOmit):
            if not isinstance(input, Mapping):
                return {}
            return {k: v for k, v in input.items() if k not in spec.keys}

        if isinstance(spec, ModelTransform):
            return await self._model_transform(input, spec)

        logger.warning("unknown_transformation", kind=getattr(spec, "kind", type(spec).__name__))
        return input

    # === Helpers ===

    @staticmethod
    def _scratch(context: Optional[ExecutionContext], **variables: Any) -> ExecutionContext:
        """A context holding only the given variables."""
        return ExecutionContext(
            user_id=context.user_id if context else "",
            variables=variables,
        )

    @staticmethod
    def _json_parse(input: Any) -> Any:
        if not isinstance(input, str):
            return input
        try:
            return json.loads(input)
        except ValueError as e:
            logger.debug("json_parse_failed", error=str(e))
            return None

    @staticmethod
    def _json_stringify(input: Any) -> str:
        try:
            return json.dumps(to_jsonable(input))
        except (TypeError, ValueError) as e:
            logger.debug("json_stringify_failed", error=str(e))
            return ""

    @staticmethod
    def _regex_extract(input: Any, spec: RegexExtract) -> Any:
        if not isinstance(input, str):
            return None

        flags = 0
        for flag in spec.flags or "":
            flags |= _REGEX_FLAGS.get(flag, 0)

        try:
            match = re.search(spec.pattern, input, flags)
        except re.error as e:
            logger.debug("regex_extract_invalid_pattern", pattern=spec.pattern, error=str(e))
            return None

        if match is None:
            return None

        if spec.group:
            try:
                return match.group(spec.group)
            except IndexError:
                return None
        return match.group(0)

    async def _model_transform(self, input: Any, spec: ModelTransform) -> Any:
        if not spec.prompt:
            return input

        if self.query_router is None:
            raise TransformError("No query router configured for llm_transform")

        prompt = spec.prompt.replace("{{input}}", json.dumps(to_jsonable(input), default=str), 1)

        try:
            response = await asyncio.wait_for(
                self.query_router.query(prompt, provider=spec.provider),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransformTimeoutError(self.timeout) from e
        except Exception as e:
            raise TransformError(f"Model transform failed: {e}", cause=e) from e

        content = (response or {}).get("content", "")

        if spec.parse_json:
            try:
                return json.loads(content)
            except (TypeError, ValueError):
                logger.warning("model_transform_parse_failed", provider=spec.provider)
                return content

        return content