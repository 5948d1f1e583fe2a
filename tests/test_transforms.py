"""
Tests for Conatus data transformations.
"""

import asyncio

import pytest

from conatus.automation.errors import TransformError, TransformTimeoutError
from conatus.automation.types import (
    ArrayFilter,
    ArrayMap,
    ArrayReduce,
    FunctionCall,
    GreaterThan,
    JsonParse,
    JsonStringify,
    ModelTransform,
    ObjectOmit,
    ObjectPick,
    RegexExtract,
    UNDEFINED,
    UnknownTransform,
    VariableRef,
    parse_transform,
)
from conatus.automation.transforms.engine import TransformationEngine

from fakes import FakeQueryRouter


class TestPureTransforms:
    """Tests for transformations that need no collaborators."""

    def setup_method(self):
        self.engine = TransformationEngine()

    @pytest.mark.asyncio
    async def test_json(self):
        assert await self.engine.apply('{"a": [1, 2]}', JsonParse()) == {"a": [1, 2]}
        assert await self.engine.apply("{broken", JsonParse()) is None
        assert await self.engine.apply({"already": True}, JsonParse()) == {"already": True}
        assert await self.engine.apply({"a": UNDEFINED}, JsonStringify()) == '{"a": null}'

    @pytest.mark.asyncio
    async def test_array_map(self):
        spec = ArrayMap(JsonParse())
        assert await self.engine.apply(["1", "[2]"], spec) == [1, [2]]
        assert await self.engine.apply("nope", spec) == []

    @pytest.mark.asyncio
    async def test_array_filter(self, context):
        spec = ArrayFilter(GreaterThan(VariableRef("item"), 2))
        assert await self.engine.apply([1, 2, 3, 4], spec, context) == [3, 4]

    @pytest.mark.asyncio
    async def test_filter_sees_only_item(self, context):
        """Workflow variables are not visible inside the filter."""
        spec = ArrayFilter(GreaterThan(VariableRef("name"), ""))
        assert await self.engine.apply([1, 2], spec, context) == []

    @pytest.mark.asyncio
    async def test_array_reduce(self):
        spec = ArrayReduce(
            reducer=FunctionCall("sum", (VariableRef("accumulator"), VariableRef("item"))),
            initial_value=10,
        )
        assert await self.engine.apply([1, 2, 3], spec) == 16
        assert await self.engine.apply("nope", spec) == 10

    @pytest.mark.asyncio
    async def test_regex_extract(self):
        assert await self.engine.apply("Order ABC-42 shipped", RegexExtract(r"[A-Z]+-(\d+)")) == "ABC-42"
        assert await self.engine.apply("Order ABC-42", RegexExtract(r"[A-Z]+-(\d+)", group=1)) == "42"
        assert await self.engine.apply("Order ABC-42", RegexExtract(r"[A-Z]+-(\d+)", group=5)) is None
        assert await self.engine.apply("order abc", RegexExtract(r"ABC", flags="i")) == "abc"
        assert await self.engine.apply("nothing", RegexExtract(r"\d+")) is None
        assert await self.engine.apply(42, RegexExtract(r"\d+")) is None

    @pytest.mark.asyncio
    async def test_object_pick_and_omit(self):
        data = {"a": 1, "b": 2, "c": 3}
        assert await self.engine.apply(data, ObjectPick(("a", "c", "z"))) == {"a": 1, "c": 3}
        assert await self.engine.apply(data, ObjectOmit(("a",))) == {"b": 2, "c": 3}
        assert await self.engine.apply([1], ObjectPick(("a",))) == {}

    @pytest.mark.asyncio
    async def test_unknown_transform_passes_input_through(self):
        assert await self.engine.apply([1, 2], UnknownTransform("sparkle")) == [1, 2]
        assert await self.engine.apply("x", None) == "x"

    def test_parse_transform(self):
        spec = parse_transform({"type": "array_map", "itemTransformation": {"type": "json_parse"}})
        assert spec == ArrayMap(JsonParse())
        assert parse_transform({"type": "object_pick", "keys": ["a"]}) == ObjectPick(("a",))
        assert parse_transform({"type": "sparkle"}) == UnknownTransform("sparkle")


class TestModelTransform:
    """Tests for model-assisted transformations."""

    @pytest.mark.asyncio
    async def test_prompt_includes_input(self):
        router = FakeQueryRouter(content="summary")
        engine = TransformationEngine(query_router=router)

        result = await engine.apply({"text": "hi"}, ModelTransform(prompt="Summarise {{input}}"))

        assert result == "summary"
        assert router.prompts == ['Summarise {"text": "hi"}']

    @pytest.mark.asyncio
    async def test_parse_json_output(self):
        engine = TransformationEngine(query_router=FakeQueryRouter(content='{"n": 1}'))
        assert await engine.apply("x", ModelTransform(prompt="p", parse_json=True)) == {"n": 1}

        engine = TransformationEngine(query_router=FakeQueryRouter(content="not json"))
        assert await engine.apply("x", ModelTransform(prompt="p", parse_json=True)) == "not json"

    @pytest.mark.asyncio
    async def test_failures(self):
        with pytest.raises(TransformError):
            await TransformationEngine().apply("x", ModelTransform(prompt="p"))

        engine = TransformationEngine(query_router=FakeQueryRouter(error=RuntimeError("down")))
        with pytest.raises(TransformError) as exc_info:
            await engine.apply("x", ModelTransform(prompt="p"))
        assert isinstance(exc_info.value.cause, RuntimeError)

    @pytest.mark.asyncio
    async def test_timeout(self):
        class SlowRouter:
            async def query(self, prompt, provider=None):
                await asyncio.sleep(5)

        engine = TransformationEngine(query_router=SlowRouter(), timeout=0.05)
        with pytest.raises(TransformTimeoutError):
            await engine.apply("x", ModelTransform(prompt="p"))
