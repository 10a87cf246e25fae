"""
Tests for WorkflowEngine execution paths.

Main chain: ordering, fail-fast, early return at EXIT.
AFTER branch: detached vs awaited, failure isolation, abandonment, drain.
"""

import asyncio

import pytest

from nodeflow.config import RunConfig
from nodeflow.graph.errors import (
    ConfigurationError,
    MethodNotFoundError,
    MissingFieldWarning,
    NodeExecutionError,
)
from nodeflow.graph.executor import AfterStatus, RunStatus, WorkflowEngine
from nodeflow.graph.node import Category, Node, NodeDescriptor, ToolNode
from nodeflow.graph.workflow import WorkflowDefinition
from nodeflow.nodes import OutputNode
from nodeflow.observability import clear_trace_context, get_trace_context, set_trace_context
from nodeflow.runner.tool_registry import ToolGroup, ToolRegistry

DETACHED = RunConfig(execute_after_nodes=True, await_after_nodes=False)
AWAITED = RunConfig(execute_after_nodes=True, await_after_nodes=True)


# ---- Fake nodes ----
class ReplyNode(Node):
    node_name = "reply"

    async def _call(self, input):
        return {"reply": f"echo:{input.get('userInput')}"}


class FailingNode(Node):
    node_name = "failing"

    async def _call(self, input):
        raise RuntimeError("llm unavailable")


class RecordingOutputNode(OutputNode):
    """Output node that counts how often it ran."""

    def __init__(self, descriptor, tools=None):
        super().__init__(descriptor, tools)
        self.executed = 0

    async def before_execute(self, input):
        self.executed += 1


# ---- Fake tool groups ----
def recording_tools(type_name, log, gate=None) -> ToolGroup:
    async def run(**kwargs):
        if gate is not None:
            await gate.wait()
        log.append(kwargs)
        return {"stored": True}

    return ToolGroup(type_name, {"run": run})


def failing_tools(type_name) -> ToolGroup:
    def run(**kwargs):
        raise RuntimeError("storage down")

    return ToolGroup(type_name, {"run": run})


def dialogue_definition(middle_type="reply", exit_successors=(), after=()) -> WorkflowDefinition:
    """userInput → <middle_type> → output, plus optional AFTER nodes."""
    return WorkflowDefinition(
        id="dialogue",
        nodes=[
            NodeDescriptor(
                id="in",
                type_name="userInput",
                category=Category.ENTRY,
                successors=["mid"],
                init_params=["userInput"],
                output_fields=["userInput"],
            ),
            NodeDescriptor(
                id="mid",
                type_name=middle_type,
                category=Category.MIDDLE,
                successors=["out"],
                input_fields=["userInput"],
                output_fields=["reply"],
            ),
            NodeDescriptor(
                id="out",
                type_name="output",
                category=Category.EXIT,
                successors=list(exit_successors),
                input_fields=["reply"],
                output_fields=["reply"],
            ),
            *after,
        ],
    )


def memory_descriptor(id="memory", type_name="memoryStorage", **fields) -> NodeDescriptor:
    fields.setdefault("input_fields", ["userInput", "reply"])
    fields.setdefault("output_fields", ["stored"])
    return NodeDescriptor(id=id, type_name=type_name, category=Category.AFTER, **fields)


def two_exit_definition(early_successors=(), late_successors=(), after=()) -> WorkflowDefinition:
    """userInput → [early (EXIT), mid → late (EXIT)]; only 'early' is reached."""
    return WorkflowDefinition(
        id="two-exits",
        nodes=[
            NodeDescriptor(
                id="in",
                type_name="userInput",
                category=Category.ENTRY,
                successors=["early", "mid"],
                init_params=["userInput"],
                output_fields=["userInput"],
            ),
            NodeDescriptor(
                id="early",
                type_name="output",
                category=Category.EXIT,
                successors=list(early_successors),
                input_fields=["userInput"],
                output_fields=["userInput"],
            ),
            NodeDescriptor(
                id="mid",
                type_name="reply",
                category=Category.MIDDLE,
                successors=["late"],
                output_fields=["reply"],
            ),
            NodeDescriptor(
                id="late",
                type_name="output",
                category=Category.EXIT,
                successors=list(late_successors),
                input_fields=["reply"],
                output_fields=["reply"],
            ),
            *after,
        ],
    )


def make_engine(definition, groups=(), config=DETACHED) -> WorkflowEngine:
    return WorkflowEngine(
        definition,
        tools=ToolRegistry(list(groups)),
        node_types={"reply": ReplyNode, "failing": FailingNode, "output": RecordingOutputNode},
        config=config,
    )


class TestMainChain:
    @pytest.mark.asyncio
    async def test_execute_returns_exit_output_only(self):
        engine = make_engine(dialogue_definition())

        output = await engine.execute({"userInput": "hi"})

        assert output == {"reply": "echo:hi"}

    @pytest.mark.asyncio
    async def test_run_records_path_and_results(self):
        engine = make_engine(dialogue_definition())

        run = await engine.start({"userInput": "hi"})

        assert run.status == RunStatus.MAIN_CHAIN_COMPLETE
        assert run.path == ["in", "mid", "out"]
        assert [r.node_id for r in run.results] == ["in", "mid", "out"]
        assert all(r.succeeded for r in run.results)
        assert run.context.get_cache("userInput") == "hi"
        assert run.after_status == AfterStatus.NOT_SCHEDULED

    @pytest.mark.asyncio
    async def test_run_ids_do_not_leak_into_caller_context(self):
        seen: list = []

        async def store(**kwargs):
            seen.append(get_trace_context())
            return {"stored": True}

        engine = make_engine(
            dialogue_definition(exit_successors=["memory"], after=[memory_descriptor()]),
            groups=[ToolGroup("memoryStorage", {"run": store})],
        )
        clear_trace_context()
        set_trace_context(request_id="req-1")

        run = await engine.start({"userInput": "hi"}, AWAITED)

        assert get_trace_context() == {"request_id": "req-1"}
        assert seen == [
            {
                "request_id": "req-1",
                "workflow_id": "dialogue",
                "run_id": run.run_id,
                "node_id": "memory",
            }
        ]

    @pytest.mark.asyncio
    async def test_runs_do_not_share_context(self):
        engine = make_engine(dialogue_definition())

        first = await engine.start({"userInput": "one"})
        second = await engine.start({"userInput": "two"})

        assert first.output == {"reply": "echo:one"}
        assert second.output == {"reply": "echo:two"}
        assert first.run_id != second.run_id
        assert first.context is not second.context

    @pytest.mark.asyncio
    async def test_missing_run_parameter_is_not_fatal(self):
        engine = make_engine(dialogue_definition())

        with pytest.warns(MissingFieldWarning):
            output = await engine.execute({})

        assert output == {"reply": "echo:None"}

    @pytest.mark.asyncio
    async def test_first_exit_ends_main_chain(self):
        engine = make_engine(two_exit_definition())

        run = await engine.start({"userInput": "hi"})

        assert run.path == ["in", "early"]
        assert run.output == {"userInput": "hi"}
        assert engine.nodes["late"].executed == 0

    @pytest.mark.asyncio
    async def test_after_nodes_of_unreached_exit_are_skipped(self):
        audit_log: list = []
        memory_log: list = []
        engine = make_engine(
            two_exit_definition(
                late_successors=["audit"],
                after=[
                    memory_descriptor("audit", "audit", input_fields=["reply"]),
                    memory_descriptor("memory", input_fields=["userInput"], output_fields=[]),
                ],
            ),
            groups=[recording_tools("audit", audit_log), recording_tools("memoryStorage", memory_log)],
        )

        run = await engine.start({"userInput": "hi"}, AWAITED)

        assert run.path == ["in", "early"]
        assert run.skipped_after == ["audit"]
        assert run.result_for("audit") is None
        assert audit_log == []
        # Standalone AFTER nodes follow whichever EXIT completed
        assert memory_log == [{"userInput": "hi"}]
        assert run.after_status == AfterStatus.AFTER_COMPLETE

    @pytest.mark.asyncio
    async def test_after_node_shared_by_both_exits_runs(self):
        log: list = []
        engine = make_engine(
            two_exit_definition(
                early_successors=["memory"],
                late_successors=["memory"],
                after=[memory_descriptor(input_fields=["userInput"])],
            ),
            groups=[recording_tools("memoryStorage", log)],
        )

        run = await engine.start({"userInput": "hi"}, AWAITED)

        assert run.skipped_after == []
        assert log == [{"userInput": "hi"}]


class TestFailFast:
    @pytest.mark.asyncio
    async def test_middle_failure_aborts_before_exit(self):
        log: list = []
        engine = make_engine(
            dialogue_definition("failing", exit_successors=["memory"], after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", log)],
        )

        with pytest.raises(NodeExecutionError) as exc_info:
            await engine.start({"userInput": "hi"}, AWAITED)

        error = exc_info.value
        assert error.node_id == "mid"
        assert isinstance(error.__cause__, RuntimeError)
        assert error.result.failed
        assert engine.nodes["out"].executed == 0
        assert engine.pending_runs == []
        assert log == []

    @pytest.mark.asyncio
    async def test_node_execution_error_keeps_its_type(self):
        # The tool group lacks the "run" operation a ToolNode calls
        engine = make_engine(
            dialogue_definition("llm"), groups=[ToolGroup("llm", {"complete": lambda: "x"})]
        )

        with pytest.raises(MethodNotFoundError) as exc_info:
            await engine.execute({"userInput": "hi"})

        assert exc_info.value.node_id == "mid"
        assert exc_info.value.result is not None


class TestNodeResolution:
    def test_unknown_type_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as exc_info:
            make_engine(dialogue_definition("mystery"))

        assert "'mystery'" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_tool_group_becomes_tool_node(self):
        def run(userInput):
            return {"reply": userInput[::-1]}

        engine = make_engine(dialogue_definition("llm"), groups=[ToolGroup("llm", {"run": run})])

        assert isinstance(engine.nodes["mid"], ToolNode)
        assert await engine.execute({"userInput": "abc"}) == {"reply": "cba"}


class TestAfterNodes:
    @pytest.mark.asyncio
    async def test_detached_after_does_not_block_caller(self):
        gate = asyncio.Event()
        log: list = []
        engine = make_engine(
            dialogue_definition(after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", log, gate)],
        )

        run = await engine.start({"userInput": "hi"}, DETACHED)

        assert run.output == {"reply": "echo:hi"}
        assert run.status == RunStatus.MAIN_CHAIN_COMPLETE
        assert run.after_status == AfterStatus.AFTER_PENDING
        assert run.after_pending
        assert engine.pending_runs == [run]
        assert log == []

        gate.set()
        assert await run.wait_for_after() == AfterStatus.AFTER_COMPLETE
        assert log == [{"userInput": "hi", "reply": "echo:hi"}]
        assert engine.pending_runs == []

    @pytest.mark.asyncio
    async def test_awaited_after_finishes_before_return(self):
        log: list = []
        engine = make_engine(
            dialogue_definition(exit_successors=["memory"], after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", log)],
        )

        run = await engine.start({"userInput": "hi"}, AWAITED)

        assert run.after_status == AfterStatus.AFTER_COMPLETE
        assert not run.after_pending
        assert len(log) == 1
        # AFTER outputs go to the cache, never to the caller's output
        assert run.context.get_cache("stored") is True
        assert run.output == {"reply": "echo:hi"}

    @pytest.mark.asyncio
    async def test_after_nodes_can_be_disabled(self):
        log: list = []
        engine = make_engine(
            dialogue_definition(after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", log)],
        )

        run = await engine.start({"userInput": "hi"}, {"executeAfterNodes": False})
        await engine.drain()

        assert run.after_status == AfterStatus.NOT_SCHEDULED
        assert run.after_task is None
        assert log == []

    @pytest.mark.asyncio
    async def test_config_mapping_accepts_snake_case(self):
        log: list = []
        engine = make_engine(
            dialogue_definition(after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", log)],
        )

        run = await engine.start({"userInput": "hi"}, {"await_after_nodes": True})

        assert run.after_status == AfterStatus.AFTER_COMPLETE
        assert len(log) == 1

    @pytest.mark.asyncio
    async def test_engine_default_config_applies(self):
        log: list = []
        engine = make_engine(
            dialogue_definition(after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", log)],
            config=RunConfig(execute_after_nodes=False, await_after_nodes=False),
        )

        run = await engine.start({"userInput": "hi"})

        assert run.after_status == AfterStatus.NOT_SCHEDULED

    @pytest.mark.asyncio
    async def test_after_failure_is_isolated(self):
        memory_log: list = []
        summary_log: list = []
        engine = make_engine(
            dialogue_definition(
                exit_successors=["broken"],
                after=[
                    memory_descriptor("broken", "broken", successors=["summary"]),
                    memory_descriptor("summary", "summary", input_fields=["reply"]),
                    memory_descriptor(),
                ],
            ),
            groups=[
                failing_tools("broken"),
                recording_tools("summary", summary_log),
                recording_tools("memoryStorage", memory_log),
            ],
        )

        run = await engine.start({"userInput": "hi"}, AWAITED)

        assert run.output == {"reply": "echo:hi"}
        assert run.status == RunStatus.MAIN_CHAIN_COMPLETE
        assert run.after_status == AfterStatus.AFTER_FAILED
        assert run.skipped_after == ["summary"]
        assert run.result_for("broken").failed
        assert run.result_for("summary") is None
        assert summary_log == []
        assert len(memory_log) == 1

    @pytest.mark.asyncio
    async def test_after_nodes_run_in_order_and_see_each_other(self):
        seen: list = []

        def summarize(reply):
            seen.append("summary")
            return {"summary": reply.upper()}

        def store(summary):
            seen.append("store")
            return {"stored": summary}

        engine = make_engine(
            dialogue_definition(
                exit_successors=["summary"],
                after=[
                    memory_descriptor(
                        "summary",
                        "summary",
                        successors=["memory"],
                        input_fields=["reply"],
                        output_fields=["summary"],
                    ),
                    memory_descriptor(input_fields=["summary"]),
                ],
            ),
            groups=[
                ToolGroup("summary", {"run": summarize}),
                ToolGroup("memoryStorage", {"run": store}),
            ],
        )

        run = await engine.start({"userInput": "hi"}, AWAITED)

        assert seen == ["summary", "store"]
        assert run.context.get_cache("stored") == "ECHO:HI"


class TestBackgroundLifecycle:
    @pytest.mark.asyncio
    async def test_abandon_pending_after(self):
        gate = asyncio.Event()
        log: list = []
        engine = make_engine(
            dialogue_definition(after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", log, gate)],
        )
        run = await engine.start({"userInput": "hi"})

        assert run.abandon_after() is True
        assert await run.wait_for_after() == AfterStatus.ABANDONED
        assert run.abandon_after() is False
        assert log == []
        assert engine.pending_runs == []

    @pytest.mark.asyncio
    async def test_abandon_after_node_has_started(self):
        gate = asyncio.Event()
        engine = make_engine(
            dialogue_definition(after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", [], gate)],
        )
        run = await engine.start({"userInput": "hi"})
        await asyncio.sleep(0)  # Let the AFTER task block on the gate

        run.abandon_after()

        assert await run.wait_for_after() == AfterStatus.ABANDONED

    @pytest.mark.asyncio
    async def test_drain_waits_for_every_run(self):
        gate = asyncio.Event()
        log: list = []
        engine = make_engine(
            dialogue_definition(after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", log, gate)],
        )
        runs = [await engine.start({"userInput": text}) for text in ("one", "two")]
        assert len(engine.pending_runs) == 2

        asyncio.get_running_loop().call_soon(gate.set)
        await engine.drain()

        assert [run.after_status for run in runs] == [AfterStatus.AFTER_COMPLETE] * 2
        assert sorted(entry["userInput"] for entry in log) == ["one", "two"]
        assert engine.pending_runs == []

    @pytest.mark.asyncio
    async def test_shutdown_abandons_pending_runs(self):
        gate = asyncio.Event()
        engine = make_engine(
            dialogue_definition(after=[memory_descriptor()]),
            groups=[recording_tools("memoryStorage", [], gate)],
        )
        runs = [await engine.start({"userInput": text}) for text in ("one", "two")]

        await engine.shutdown()

        assert [run.after_status for run in runs] == [AfterStatus.ABANDONED] * 2
        assert engine.pending_runs == []
