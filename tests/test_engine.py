"""
Tests for the Conatus workflow engine and block interpreter.
"""

import asyncio
from typing import Any, Dict

import pytest

from conatus.core.config import AutomationConfig
from conatus.automation.engine import WorkflowEngine
from conatus.automation.execution.context import ExecutionContext
from conatus.automation.types import BranchFailure, OutcomeStatus, WorkflowDefinition

from fakes import FakeQueryRouter


def make_workflow(**data: Any) -> WorkflowDefinition:
    return WorkflowDefinition.from_dict({"id": "wf-1", "ownerId": "user-1", **data})


def send(text: Any, **extra: Any) -> Dict[str, Any]:
    return {
        "type": "action",
        "action": {"service": "chat", "type": "send", "params": {"text": text}},
        **extra,
    }


def fail(message: str = "boom", **extra: Any) -> Dict[str, Any]:
    return {
        "type": "action",
        "action": {"service": "chat", "type": "fail", "params": {"message": message}},
        **extra,
    }


def set_var(name: str, value: Any, **extra: Any) -> Dict[str, Any]:
    return {"type": "set_variable", "name": name, "value": value, **extra}


def var(name: str) -> Dict[str, Any]:
    return {"type": "variable", "name": name}


ALWAYS = {"type": "equals", "left": 1, "right": 1}
NEVER = {"type": "equals", "left": 1, "right": 2}


# === Context Tests ===


class TestExecutionContext:
    """Tests for derived contexts."""

    def test_record_result_writes_both_maps(self):
        context = ExecutionContext(user_id="u1")
        context.record_result("r", 5)

        assert context.results["r"] == 5
        assert context.variables["r"] == 5

    def test_derive_and_merge(self):
        parent = ExecutionContext(user_id="u1", variables={"keep": 1})
        child = parent.derive(item="x", index=0)

        assert child.get_variable("keep") == 1
        assert child.get_variable("item") == "x"

        child.set_variable("written", 2)
        child.record_result("named", 3)
        child.record_error("failed", "action")

        assert "written" not in parent.variables
        parent.merge(child)

        assert parent.variables["written"] == 2
        assert parent.results["named"] == 3
        assert parent.last_error["blockKind"] == "action"
        assert "item" not in parent.variables
        assert "index" not in parent.variables

    def test_unwritten_values_are_not_merged(self):
        parent = ExecutionContext(user_id="u1", variables={"a": 1})
        child = parent.derive()
        parent.set_variable("a", 2)
        parent.merge(child)

        assert parent.variables["a"] == 2


# === Engine Tests ===


class TestWorkflowExecution:
    """Tests for basic workflow execution."""

    @pytest.mark.asyncio
    async def test_action_with_named_result(self, engine, observer):
        workflow = make_workflow(
            initialization=[{"type": "set_variable", "name": "who", "value": "Ada"}],
            logic=[send({"type": "template", "template": "Hi {{who}}"}, resultName="sent")],
        )

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.status == OutcomeStatus.SUCCESS
        assert outcome.results["sent"] == {"sent": True, "text": "Hi Ada"}
        assert outcome.variables["sent"] == {"sent": True, "text": "Hi Ada"}
        assert outcome.final_result == {"sent": True, "text": "Hi Ada"}
        assert observer.of_type("dispatch") == [("dispatch", "chat", "send")]

    @pytest.mark.asyncio
    async def test_set_variable_only_workflow(self, engine):
        literals = {"count": 3, "label": "done", "flags": [True, False], "meta": {"k": None}}
        workflow = make_workflow(
            logic=[set_var(name, value, resultName=name) for name, value in literals.items()],
        )

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        assert set(outcome.results) == set(literals)
        assert set(outcome.variables) == set(literals)
        for name, value in literals.items():
            assert outcome.results[name] == value
            assert outcome.variables[name] == value

    @pytest.mark.asyncio
    async def test_conditional_on_trigger_data(self, engine):
        workflow = make_workflow(
            initialization=[{"type": "extract_from_trigger", "name": "count", "source": "count"}],
            logic=[{
                "type": "conditional",
                "if": {"type": "greater_than", "left": var("count"), "right": 2},
                "then": [set_var("size", "big")],
                "else": [set_var("size", "small")],
            }],
        )

        big = await engine.run(workflow, {"count": 5}, "user-1")
        small = await engine.run(workflow, {"count": 1}, "user-1")

        assert big.variables["size"] == "big"
        assert big.final_result == "big"
        assert small.variables["size"] == "small"

    @pytest.mark.asyncio
    async def test_conditional_without_else(self, engine):
        workflow = make_workflow(logic=[
            {"type": "conditional", "if": NEVER, "then": [set_var("x", 1)], "resultName": "branch"},
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        assert outcome.results["branch"] is None

    @pytest.mark.asyncio
    async def test_condition_gate_and_terminal(self, engine):
        workflow = make_workflow(logic=[
            set_var("a", 1),
            set_var("b", 2, condition=NEVER),
            set_var("c", 3, terminal=True),
            set_var("d", 4),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.variables == {"a": 1, "c": 3}
        assert outcome.final_result == 3

    @pytest.mark.asyncio
    async def test_terminal_stops_only_its_own_list(self, engine):
        workflow = make_workflow(logic=[
            {"type": "conditional", "if": ALWAYS, "then": [set_var("a", 1, terminal=True), set_var("b", 2)]},
            set_var("c", 3),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.variables == {"a": 1, "c": 3}

    @pytest.mark.asyncio
    async def test_undefined_serialises_as_null(self, engine):
        workflow = make_workflow(logic=[set_var("v", var("missing"))])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.to_dict() == {
            "success": True,
            "results": {},
            "variables": {"v": None},
            "finalResult": None,
        }


class TestInitialization:
    """Tests for initialization steps."""

    @pytest.mark.asyncio
    async def test_extract_and_transform(self, engine):
        workflow = make_workflow(
            initialization=[
                {"type": "extract_from_trigger", "name": "city", "jsonPath": "user.address.city"},
                {"type": "extract_from_trigger", "name": "nothing", "jsonPath": "user.phone"},
                {
                    "type": "data_transformation",
                    "name": "payload",
                    "input": {"type": "trigger", "field": "raw"},
                    "transformation": {"type": "json_parse"},
                },
            ],
            logic=[set_var("done", True)],
        )

        outcome = await engine.run(
            workflow,
            {"user": {"address": {"city": "Oslo"}}, "raw": '{"a": 1}'},
            "user-1",
        )

        assert outcome.variables["city"] == "Oslo"
        assert outcome.variables["nothing"] is None
        assert outcome.variables["payload"] == {"a": 1}

    @pytest.mark.asyncio
    async def test_model_query(self, connectors, credentials):
        router = FakeQueryRouter(content="generated text")
        engine = WorkflowEngine(connectors, credentials, query_router=router)
        workflow = make_workflow(
            initialization=[
                {"type": "set_variable", "name": "who", "value": "Ada"},
                {
                    "type": "llm_generation",
                    "name": "poem",
                    "prompt": {"type": "template", "template": "Write about {{who}}"},
                },
            ],
            logic=[send(var("poem"))],
        )

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.variables["poem"] == "generated text"
        assert router.prompts == ["Write about Ada"]
        assert outcome.final_result == {"sent": True, "text": "generated text"}

    @pytest.mark.asyncio
    async def test_failing_steps_do_not_abort(self, engine, observer):
        workflow = make_workflow(
            initialization=[
                {
                    "type": "data_transformation",
                    "name": "summary",
                    "input": "text",
                    "transformation": {"type": "llm_transform", "prompt": "Summarise {{input}}"},
                },
                {"type": "mystery", "name": "m"},
                {"type": "set_variable", "name": "ok", "value": 1},
            ],
            logic=[set_var("done", True)],
        )

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        assert outcome.variables == {"ok": 1, "done": True}
        failures = observer.of_type("init_failure")
        assert [f[1] for f in failures] == ["summary", "m"]


class TestLoops:
    """Tests for loop blocks."""

    @pytest.mark.asyncio
    async def test_loop_iterates_and_merges(self, engine, connector):
        workflow = make_workflow(
            initialization=[{"type": "set_variable", "name": "names", "value": ["x", "y", "z"]}],
            logic=[{
                "type": "loop",
                "items": var("names"),
                "itemVariable": "n",
                "body": [set_var("last", var("n")), send(var("n"), resultName="reply")],
                "resultName": "all",
            }],
        )

        outcome = await engine.run(workflow, {}, "user-1")

        assert [call["text"] for call in connector.calls] == ["x", "y", "z"]
        assert outcome.variables["last"] == "z"
        assert "n" not in outcome.variables
        assert "index" not in outcome.variables
        assert outcome.results["reply"] == {"sent": True, "text": "z"}
        assert outcome.results["all"] == [
            {"sent": True, "text": "x"},
            {"sent": True, "text": "y"},
            {"sent": True, "text": "z"},
        ]

    @pytest.mark.asyncio
    async def test_iterations_see_earlier_writes(self, engine):
        workflow = make_workflow(
            initialization=[{"type": "set_variable", "name": "total", "value": 0}],
            logic=[{
                "type": "loop",
                "items": [1, 2, 3],
                "body": [set_var("total", {
                    "type": "function",
                    "function": "sum",
                    "args": [var("total"), var("item")],
                })],
            }],
        )

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.variables["total"] == 6

    @pytest.mark.asyncio
    async def test_index_variable(self, engine):
        workflow = make_workflow(logic=[{
            "type": "loop",
            "items": ["a", "b"],
            "indexVariable": "i",
            "body": [set_var("seen", var("i"))],
            "resultName": "indices",
        }])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.results["indices"] == [0, 1]

    @pytest.mark.asyncio
    async def test_non_sequence_items(self, engine, connector):
        workflow = make_workflow(logic=[
            {"type": "loop", "items": "abc", "body": [send("x")], "resultName": "r"},
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.results["r"] == []
        assert connector.calls == []


class TestErrorPolicies:
    """Tests for per-block error handling."""

    @pytest.mark.asyncio
    async def test_propagate(self, engine):
        workflow = make_workflow(logic=[fail("boom"), set_var("after", 1)])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.status == OutcomeStatus.FAILURE
        assert outcome.error == "boom"
        assert outcome.last_error["blockKind"] == "action"
        assert outcome.last_error["message"] == "boom"
        assert "after" not in outcome.variables

        data = outcome.to_dict()
        assert data["success"] is False
        assert data["error"] == "boom"
        assert data["lastError"]["blockKind"] == "action"
        assert "timestamp" in data["lastError"]

    @pytest.mark.asyncio
    async def test_continue(self, engine):
        workflow = make_workflow(logic=[
            fail("boom", errorHandling="continue", resultName="r"),
            set_var("after", 1),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        assert "r" not in outcome.results
        assert outcome.variables["after"] == 1
        assert outcome.last_error["message"] == "boom"

    @pytest.mark.asyncio
    async def test_return_early(self, engine):
        workflow = make_workflow(logic=[
            fail("boom", errorHandling="returnEarly"),
            set_var("after", 1),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        assert outcome.final_result == {"error": "boom"}
        assert "after" not in outcome.variables

    @pytest.mark.asyncio
    async def test_legacy_return_spelling(self, engine):
        workflow = make_workflow(logic=[fail("boom", errorHandling="return"), set_var("after", 1)])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.final_result == {"error": "boom"}

    @pytest.mark.asyncio
    async def test_innermost_block_kind_is_kept(self, engine, observer):
        workflow = make_workflow(logic=[
            {"type": "conditional", "if": ALWAYS, "then": [fail("inner")]},
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert not outcome.success
        assert outcome.error == "inner"
        assert outcome.last_error["blockKind"] == "action"
        assert [e[1] for e in observer.of_type("error")] == ["action", "conditional"]

    @pytest.mark.asyncio
    async def test_outer_continue_absorbs_inner_failure(self, engine):
        workflow = make_workflow(logic=[
            {"type": "conditional", "if": ALWAYS, "then": [fail("inner")], "errorHandling": "continue"},
            set_var("after", 1),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        assert outcome.variables["after"] == 1
        assert outcome.last_error["blockKind"] == "action"

    @pytest.mark.asyncio
    async def test_error_inside_loop_is_merged(self, engine):
        workflow = make_workflow(logic=[
            {"type": "loop", "items": [1], "body": [fail("in loop", errorHandling="continue")]},
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        assert outcome.last_error["message"] == "in loop"

    @pytest.mark.asyncio
    async def test_unknown_block_and_condition(self, engine):
        unknown_block = make_workflow(logic=[{"type": "teleport"}])
        unknown_condition = make_workflow(logic=[set_var("x", 1, condition={"type": "fuzzy"})])
        tolerated = make_workflow(logic=[{"type": "teleport", "errorHandling": "continue"}, set_var("x", 1)])

        first = await engine.run(unknown_block, {}, "user-1")
        second = await engine.run(unknown_condition, {}, "user-1")
        third = await engine.run(tolerated, {}, "user-1")

        assert first.error == "Unknown logic block type: teleport"
        assert first.last_error["blockKind"] == "teleport"
        assert second.error == "Unknown condition type: fuzzy"
        assert third.success
        assert third.variables["x"] == 1

    @pytest.mark.asyncio
    async def test_max_depth(self, connectors, credentials):
        engine = WorkflowEngine(connectors, credentials, config=AutomationConfig(max_block_depth=1))
        nested = {
            "type": "conditional",
            "if": ALWAYS,
            "then": [{"type": "conditional", "if": ALWAYS, "then": [set_var("x", 1)]}],
        }

        failed = await engine.run(make_workflow(logic=[nested]), {}, "user-1")

        assert not failed.success
        assert "depth" in failed.error
        assert failed.last_error["blockKind"] == "conditional"

        tolerant = dict(nested, then=[dict(nested["then"][0], errorHandling="continue")])
        absorbed = await engine.run(make_workflow(logic=[tolerant, set_var("after", 1)]), {}, "user-1")

        assert absorbed.success
        assert "x" not in absorbed.variables
        assert absorbed.variables["after"] == 1


class TestReturn:
    """Tests for return blocks."""

    @pytest.mark.asyncio
    async def test_return_ends_execution(self, engine):
        workflow = make_workflow(logic=[
            set_var("a", 1),
            {"type": "return", "value": var("a")},
            set_var("b", 2),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        assert outcome.final_result == 1
        assert "b" not in outcome.variables

    @pytest.mark.asyncio
    async def test_return_from_loop_bypasses_policies(self, engine):
        workflow = make_workflow(logic=[
            {
                "type": "loop",
                "items": [1, 2, 3],
                "errorHandling": "continue",
                "body": [
                    set_var("visited", var("item")),
                    {
                        "type": "conditional",
                        "if": {"type": "equals", "left": var("item"), "right": 2},
                        "then": [{"type": "return", "value": "found"}],
                    },
                ],
            },
            set_var("after", 1),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.final_result == "found"
        assert outcome.variables["visited"] == 2
        assert "after" not in outcome.variables
        assert outcome.last_error is None


class TestParallel:
    """Tests for parallel blocks."""

    @staticmethod
    def parallel(*actions: Dict[str, Any], **extra: Any) -> Dict[str, Any]:
        return {"type": "parallel", "actions": list(actions), **extra}

    @staticmethod
    def action(action_type: str, **params: Any) -> Dict[str, Any]:
        return {"service": "chat", "type": action_type, "params": params}

    @pytest.mark.asyncio
    async def test_all_succeed(self, engine):
        workflow = make_workflow(logic=[
            self.parallel(self.action("send", text="a"), self.action("send", text="b"), resultName="both"),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.results["both"] == [{"sent": True, "text": "a"}, {"sent": True, "text": "b"}]

    @pytest.mark.asyncio
    async def test_continue_keeps_failure_markers(self, engine):
        workflow = make_workflow(logic=[
            self.parallel(
                self.action("send", text="a"),
                self.action("fail", message="nope"),
                errorHandling="continue",
                resultName="mixed",
            ),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        mixed = outcome.results["mixed"]
        assert mixed[0] == {"sent": True, "text": "a"}
        assert mixed[1] == BranchFailure("nope", "ConnectorError")
        assert outcome.last_error["blockKind"] == "parallel"
        assert outcome.to_dict()["results"]["mixed"][1] == {
            "success": False,
            "error": "nope",
            "errorType": "ConnectorError",
        }

    @pytest.mark.asyncio
    async def test_propagate_waits_for_siblings(self, engine, connector, observer):
        workflow = make_workflow(logic=[
            self.parallel(self.action("fail", message="first"), self.action("send", text="a")),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert not outcome.success
        assert outcome.error == "first"
        assert outcome.last_error["blockKind"] == "parallel"
        assert len(connector.calls) == 1
        assert len(observer.of_type("error")) == 1

    @pytest.mark.asyncio
    async def test_return_early(self, engine):
        workflow = make_workflow(logic=[
            self.parallel(self.action("fail", message="nope"), errorHandling="returnEarly"),
            set_var("after", 1),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert outcome.success
        assert outcome.final_result == {"error": "nope"}
        assert "after" not in outcome.variables

    @pytest.mark.asyncio
    async def test_bounded_fan_out(self, connectors, credentials, connector):
        engine = WorkflowEngine(connectors, credentials, config=AutomationConfig(max_parallel_actions=1))
        workflow = make_workflow(logic=[
            self.parallel(*(self.action("send", text=str(i)) for i in range(4)), resultName="r"),
        ])

        outcome = await engine.run(workflow, {}, "user-1")

        assert [r["text"] for r in outcome.results["r"]] == ["0", "1", "2", "3"]
        assert len(connector.calls) == 4


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, engine, connector):
        event = asyncio.Event()
        event.set()

        outcome = await engine.run(make_workflow(logic=[send("x")]), {}, "user-1", cancel_event=event)

        assert outcome.cancelled
        assert outcome.to_dict() == {"success": False, "cancelled": True}
        assert connector.calls == []

    @pytest.mark.asyncio
    async def test_cancel_in_flight(self, connectors, credentials):
        engine = WorkflowEngine(connectors, credentials, config=AutomationConfig(action_timeout_seconds=5))
        event = asyncio.Event()
        workflow = make_workflow(logic=[
            {"type": "action", "action": {"service": "chat", "type": "slow", "params": {"seconds": 5}}},
            set_var("after", 1),
        ])

        asyncio.get_running_loop().call_later(0.05, event.set)
        outcome = await asyncio.wait_for(
            engine.run(workflow, {}, "user-1", cancel_event=event),
            timeout=2,
        )

        assert outcome.status == OutcomeStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_unset_event_runs_to_completion(self, engine):
        outcome = await engine.run(
            make_workflow(logic=[set_var("x", 1)]),
            {},
            "user-1",
            cancel_event=asyncio.Event(),
        )

        assert outcome.success


class TestIsolation:
    """Tests for concurrent executions."""

    @pytest.mark.asyncio
    async def test_concurrent_runs_do_not_share_state(self, engine):
        workflow = make_workflow(
            initialization=[{"type": "extract_from_trigger", "name": "who", "source": "who"}],
            logic=[send(var("who"), resultName="r")],
        )

        first, second = await asyncio.gather(
            engine.run(workflow, {"who": "a"}, "user-1"),
            engine.run(workflow, {"who": "b"}, "user-1"),
        )

        assert first.results["r"]["text"] == "a"
        assert second.results["r"]["text"] == "b"
        assert workflow.logic[0].result_name == "r"

    @pytest.mark.asyncio
    async def test_default_observer_counts(self, connectors, credentials):
        engine = WorkflowEngine(connectors, credentials)
        await engine.run(make_workflow(logic=[send("x")]), {}, "user-1")

        stats = engine.get_stats()

        assert stats["observer"]["actions_dispatched"] == 1
        assert stats["observer"]["actions.chat"] == 1
        assert stats["max_block_depth"] == 64
