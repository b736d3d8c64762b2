"""
Unit tests for the graph workflow runner.

All tests run against in-memory fakes; sleeps are recorded, not slept.
"""

import os
import tempfile
import threading
import unittest

from PIL import Image

from autoflow.brain import BrainResult, TRUNCATION_SUFFIX
from autoflow.errors import GraphValidationError, UsageError
from autoflow.geometry import Region
from autoflow.graph_compiler import GraphCompiler
from autoflow.graph_model import WorkflowGraph
from autoflow.graph_runner import MAX_STEPS_TOTAL, MAX_VISITS_PER_NODE, GraphWorkflowRunner
from autoflow.status import RunState
from tests.fakes import FakeActionPort, FakeBrain, FakeMappingRegistry


def node(node_id, node_type, **config):
    return {"id": node_id, "type": node_type, "data": {"nodeType": node_type, "config": config}}


def edge(source, target, handle="OUT"):
    return {"id": f"{source}-{handle}-{target}", "source": source, "target": target, "sourceHandle": handle}


def graph(nodes, edges):
    return WorkflowGraph.from_dict({"id": "g1", "name": "Test flow", "nodes": nodes, "edges": edges})


class GraphRunnerTestCase(unittest.TestCase):
    def setUp(self):
        self.port = FakeActionPort()
        self.registry = FakeMappingRegistry()
        self.sleeps = []
        self.brain = None

    def make_runner(self, brain=None):
        return GraphWorkflowRunner(self.port, self.registry, brain=brain, sleep=self.sleeps.append)

    def run_graph(self, g, brain=None):
        runner = self.make_runner(brain)
        events = []
        runner.subscribe_events(events.append)
        state = runner.run(g)
        return runner, state, events

    def messages(self, runner):
        return [entry.message for entry in runner.get_status().logs]


class TestBasicFlow(GraphRunnerTestCase):
    """Start to end, events, routing and status."""

    def test_start_to_end_emits_events(self):
        g = graph([node("s", "start"), node("e", "end")], [edge("s", "e")])
        runner, state, events = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(
            [(ev.kind, ev.node_id, ev.result) for ev in events],
            [
                ("node.started", "s", None),
                ("node.finished", "s", "OUT"),
                ("node.started", "e", None),
                ("node.finished", "e", "OUT"),
            ],
        )
        status = runner.get_status()
        self.assertTrue(status.run_id.startswith("flowrun_"))
        self.assertEqual(status.progress, 0)
        self.assertEqual(status.workflow_id, "g1")

    def test_actions_reach_the_port(self):
        self.registry.add_point("ok", 10, 20)
        g = graph(
            [
                node("s", "start"),
                node("c", "action.clickMappedPoint", mappingName="ok", clickCount=2, postDelayMs=150),
                node("t", "action.typeText", text="hello", speed=20),
                node("k", "action.pressKey", keyCombo=["Control", "Shift", "s"]),
                node("m", "action.moveMouse", x=1, y=2),
                node("d", "action.dragMouse", **{"from": "ok", "to": {"x": 30, "y": 40}}),
                node("w", "action.wait", ms=250),
                node("e", "end"),
            ],
            [edge("s", "c"), edge("c", "t"), edge("t", "k"), edge("k", "m"), edge("m", "d"),
             edge("d", "w"), edge("w", "e")],
        )
        runner, state, _ = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(self.port.calls, [
            ("click", "left", 10, 20),
            ("click", "left", 10, 20),
            ("type_text", "hello", 20),
            ("press_key", "s", ["Control", "Shift"]),
            ("move_mouse", 1, 2),
            ("drag", 10, 20, 30, 40, "left"),
        ])
        self.assertEqual(self.sleeps, [0.15, 0.25])
        self.assertIn("Pressing key: Control + Shift + s", self.messages(runner))

    def test_missing_route_ends_branch_normally(self):
        g = graph(
            [node("s", "start"), node("f", "condition.findImage", templateName="logo"), node("e", "end")],
            [edge("s", "f"), edge("f", "e", "FOUND")],
        )
        self.registry.add_template("logo", None)
        runner, state, events = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(events[-1].result, "NOT_FOUND")
        self.assertTrue(any('No connection for handle "NOT_FOUND"' in m for m in self.messages(runner)))

    def test_missing_mapping_point_is_fatal(self):
        g = graph([node("s", "start"), node("c", "action.clickMappedPoint", mappingName="nope")], [edge("s", "c")])
        runner, state, _ = self.run_graph(g)
        self.assertEqual(state, RunState.ERROR)
        self.assertIn("nope", runner.get_status().error)

    def test_compile_errors_raise(self):
        g = graph([node("e", "end")], [])
        runner = self.make_runner()
        with self.assertRaises(GraphValidationError):
            runner.run(g)
        self.assertEqual(runner.get_state(), RunState.ERROR)
        self.assertEqual(self.port.calls, [])


class TestLoopsAndGuardrails(GraphRunnerTestCase):
    """Loop counters and the infinite-loop guardrails."""

    def test_count_loop_routes_three_times_then_done(self):
        g = graph(
            [node("s", "start"), node("l", "logic.loop", mode="count", count=3),
             node("c", "action.clickCoordinates", x=5, y=5), node("e", "end")],
            [edge("s", "l"), edge("l", "c", "LOOP"), edge("c", "l"), edge("l", "e", "DONE")],
        )
        runner, state, events = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        loop_results = [ev.result for ev in events if ev.kind == "node.finished" and ev.node_id == "l"]
        self.assertEqual(loop_results, ["LOOP", "LOOP", "LOOP", "DONE"])
        self.assertEqual(len(self.port.calls_named("click")), 3)

    def test_loop_counter_resets_after_done(self):
        # outer count loop re-enters the inner loop, which must start from zero each time
        g = graph(
            [node("s", "start"),
             node("outer", "logic.loop", mode="count", count=2),
             node("inner", "logic.loop", mode="count", count=2),
             node("c", "action.clickCoordinates", x=1, y=1),
             node("e", "end")],
            [edge("s", "outer"), edge("outer", "inner", "LOOP"), edge("inner", "c", "LOOP"),
             edge("c", "inner"), edge("inner", "outer", "DONE"), edge("outer", "e", "DONE")],
        )
        _, state, _ = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(len(self.port.calls_named("click")), 4)

    def test_until_loop_stops_when_template_appears(self):
        self.registry.add_template("done", None, None, Region(0, 0, 5, 5))
        g = graph(
            [node("s", "start"),
             node("l", "logic.loop", mode="until", untilTemplateName="done", maxIterations=10, timeoutMs=100),
             node("w", "action.wait", ms=10), node("e", "end")],
            [edge("s", "l"), edge("l", "w", "LOOP"), edge("w", "l"), edge("l", "e", "DONE")],
        )
        _, state, events = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        results = [ev.result for ev in events if ev.kind == "node.finished" and ev.node_id == "l"]
        self.assertEqual(results, ["LOOP", "LOOP", "DONE"])
        self.assertEqual(self.registry.queries[0], ("done", 0.8, 100))

    def test_cycle_without_end_hits_visit_guardrail(self):
        g = graph(
            [node("s", "start"), node("a", "action.wait", ms=0), node("b", "action.wait", ms=0)],
            [edge("s", "a"), edge("a", "b"), edge("b", "a")],
        )
        runner, state, events = self.run_graph(g)
        self.assertEqual(state, RunState.ERROR)
        self.assertIn("Possible infinite loop", runner.get_status().error)
        started_a = [ev for ev in events if ev.kind == "node.started" and ev.node_id == "a"]
        self.assertEqual(len(started_a), MAX_VISITS_PER_NODE)

    def test_long_cycle_hits_total_step_guardrail(self):
        # eleven nodes share the visits, so no single node reaches its own limit first
        ring = [f"n{i}" for i in range(11)]
        nodes = [node("s", "start")] + [node(n, "action.wait", ms=0) for n in ring]
        edges = [edge("s", ring[0])] + [edge(a, b) for a, b in zip(ring, ring[1:] + ring[:1])]
        runner, state, events = self.run_graph(graph(nodes, edges))
        self.assertEqual(state, RunState.ERROR)
        self.assertIn(f"Maximum of {MAX_STEPS_TOTAL} steps", runner.get_status().error)
        started = [ev for ev in events if ev.kind == "node.started"]
        self.assertEqual(len(started), MAX_STEPS_TOTAL)


class TestFoundImages(GraphRunnerTestCase):
    """Find-image routing and clicking found images."""

    def test_click_found_image_center_with_offset(self):
        self.registry.add_template("logo", Region(100, 200, 41, 21))
        g = graph(
            [node("s", "start"),
             node("f", "condition.findImage", templateName="logo", threshold=0.9, timeoutMs=500),
             node("c", "action.clickFoundImage", offsetX=5, offsetY="bad", clickCount=1),
             node("e", "end")],
            [edge("s", "f"), edge("f", "c", "FOUND"), edge("f", "e", "NOT_FOUND"), edge("c", "e")],
        )
        runner, state, _ = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(self.port.calls, [("click", "left", 125, 210)])
        self.assertEqual(self.registry.queries, [("logo", 0.9, 500)])
        self.assertEqual(runner.last_found_image.template_name, "logo")

    def test_click_found_image_by_name_and_corner(self):
        self.registry.add_template("a", Region(10, 10, 4, 4))
        self.registry.add_template("b", Region(50, 60, 10, 10))
        g = graph(
            [node("s", "start"),
             node("fa", "condition.findImage", templateName="a"),
             node("fb", "condition.findImage", templateName="b"),
             node("c", "action.clickFoundImage", templateName="a", clickPosition="bottom-right", button="right"),
             node("e", "end")],
            [edge("s", "fa"), edge("fa", "fb", "FOUND"), edge("fb", "c", "FOUND"), edge("c", "e")],
        )
        _, state, _ = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(self.port.calls, [("click", "right", 14, 14)])

    def test_click_found_image_without_find_is_fatal(self):
        g = graph(
            [node("s", "start"), node("c", "action.clickFoundImage"), node("e", "end")],
            [edge("s", "c"), edge("c", "e")],
        )
        runner, state, _ = self.run_graph(g)
        self.assertEqual(state, RunState.ERROR)
        self.assertIn("Find Image", runner.get_status().error)
        self.assertEqual(self.port.calls, [])


class TestOtherActions(GraphRunnerTestCase):
    """Screenshots and motion timing."""

    def test_screenshot_saved_as_png(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "shot.png")
            g = graph(
                [node("s", "start"), node("p", "action.screenshot", saveTo=path, postDelayMs=40), node("e", "end")],
                [edge("s", "p"), edge("p", "e")],
            )
            runner, state, _ = self.run_graph(g)
            self.assertEqual(state, RunState.COMPLETED)
            with Image.open(path) as saved:
                self.assertEqual((saved.format, saved.size), ("PNG", (80, 60)))
        self.assertEqual(self.port.calls, [("screenshot", None)])
        self.assertEqual(self.sleeps, [0.04])
        self.assertIn(f"Screenshot saved to {path}", self.messages(runner))

    def test_screenshot_without_target_only_captures(self):
        g = graph([node("s", "start"), node("p", "action.screenshot"), node("e", "end")],
                  [edge("s", "p"), edge("p", "e")])
        runner, state, _ = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(self.port.calls, [("screenshot", None)])
        self.assertFalse(any("saved" in m for m in self.messages(runner)))

    def test_move_and_drag_durations_reach_the_port(self):
        self.registry.add_point("handle", 3, 4)
        g = graph(
            [node("s", "start"),
             node("m", "action.moveMouse", x=7, y=8, durationMs=300),
             node("d", "action.dragMouse", durationMs=500, **{"from": "handle", "to": {"x": 9, "y": 9}}),
             node("m2", "action.moveMouse", x=1, y=1),
             node("e", "end")],
            [edge("s", "m"), edge("m", "d"), edge("d", "m2"), edge("m2", "e")],
        )
        _, state, _ = self.run_graph(g)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(self.port.durations, [("move_mouse", 300), ("drag", 500), ("move_mouse", None)])


class TestBrainNode(GraphRunnerTestCase):
    """The AI node delegates routing and fails soft."""

    def brain_graph(self):
        return graph(
            [node("s", "start", note="x" * 200),
             node("ai", "ai.brain", instruction="decide", routes=["YES", "NO"]),
             node("yes", "action.clickCoordinates", x=1, y=1),
             node("err", "action.clickCoordinates", x=9, y=9),
             node("e", "end")],
            [edge("s", "ai"), edge("ai", "yes", "YES"), edge("ai", "err", "ERROR"),
             edge("yes", "e"), edge("err", "e")],
        )

    def test_route_comes_from_collaborator(self):
        brain = FakeBrain(BrainResult(route="YES", tool_calls_executed=2, turns=1, message="clicked"))
        runner, state, _ = self.run_graph(self.brain_graph(), brain=brain)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(self.port.calls, [("click", "left", 1, 1)])
        self.assertIn("AI: clicked", self.messages(runner))

        context = brain.contexts[0]
        self.assertEqual((context.workflow_id, context.node_id), ("g1", "ai"))
        incoming = context.node_neighborhood["incoming"][0]
        self.assertEqual(incoming["sourceNodeId"], "s")
        self.assertEqual(incoming["sourceConfigPreview"]["note"], "x" * 120 + TRUNCATION_SUFFIX)
        routes = {item["route"] for item in context.node_neighborhood["outgoing"]}
        self.assertEqual(routes, {"YES", "ERROR"})

    def test_collaborator_failure_follows_error_route(self):
        brain = FakeBrain(error=RuntimeError("provider down"))
        _, state, _ = self.run_graph(self.brain_graph(), brain=brain)
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(self.port.calls, [("click", "left", 9, 9)])

    def test_missing_collaborator_follows_error_route(self):
        _, state, _ = self.run_graph(self.brain_graph())
        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(self.port.calls, [("click", "left", 9, 9)])

    def test_empty_route_becomes_error(self):
        brain = FakeBrain(BrainResult(route=""))
        self.run_graph(self.brain_graph(), brain=brain)
        self.assertEqual(self.port.calls, [("click", "left", 9, 9)])


class TestRunControl(GraphRunnerTestCase):
    """One run at a time, stop and status subscribers."""

    def looping_graph(self):
        return graph(
            [node("s", "start"), node("a", "action.clickCoordinates", x=0, y=0),
             node("b", "action.wait", ms=1)],
            [edge("s", "a"), edge("a", "b"), edge("b", "a")],
        )

    def test_second_run_while_active_is_usage_error(self):
        entered = threading.Event()
        release = threading.Event()

        def block_on_click(name, args):
            if name == "click":
                entered.set()
                release.wait(5)

        self.port.on_call = block_on_click
        runner = self.make_runner()
        runner.start(graph([node("s", "start"), node("a", "action.clickCoordinates", x=0, y=0)],
                           [edge("s", "a")]))
        try:
            self.assertTrue(entered.wait(5))
            with self.assertRaises(UsageError):
                runner.run(graph([node("s", "start")], []))
        finally:
            release.set()
        self.assertEqual(runner.join(5), RunState.COMPLETED)

    def test_stop_ends_run_as_stopped(self):
        runner = self.make_runner()

        def stop_after_three_clicks(name, args):
            if len(self.port.calls_named("click")) == 3:
                runner.stop()

        self.port.on_call = stop_after_three_clicks
        self.assertEqual(runner.run(self.looping_graph()), RunState.STOPPED)
        self.assertEqual(len(self.port.calls_named("click")), 3)

    def test_subscribers_see_every_log_line(self):
        snapshots = []
        runner = self.make_runner()
        unsubscribe = runner.subscribe(snapshots.append)
        runner.run(graph([node("s", "start"), node("e", "end")], [edge("s", "e")]))
        self.assertEqual(snapshots[-1].state, RunState.COMPLETED)
        self.assertEqual(len(snapshots[-1].logs), len(runner.get_status().logs))
        unsubscribe()
        count = len(snapshots)
        runner.run(graph([node("s", "start"), node("e", "end")], [edge("s", "e")]))
        self.assertEqual(len(snapshots), count)

    def test_pause_holds_the_run_until_resumed(self):
        runner = self.make_runner()
        states_at_click = []
        snapshots = []
        runner.subscribe(snapshots.append)
        timers = []

        def pause_after_first_click(name, args):
            states_at_click.append(runner.get_state())
            if args == ("left", 1, 1):
                self.assertTrue(runner.pause())
                timer = threading.Timer(0.2, runner.resume)
                timers.append(timer)
                timer.start()

        self.port.on_call = pause_after_first_click
        g = graph(
            [node("s", "start"), node("a", "action.clickCoordinates", x=1, y=1),
             node("b", "action.clickCoordinates", x=2, y=2), node("e", "end")],
            [edge("s", "a"), edge("a", "b"), edge("b", "e")],
        )
        state = runner.run(g)
        for timer in timers:
            timer.join()

        self.assertEqual(state, RunState.COMPLETED)
        self.assertEqual(states_at_click, [RunState.RUNNING, RunState.RUNNING])
        self.assertIn(RunState.PAUSED, [snapshot.state for snapshot in snapshots])
        messages = self.messages(runner)
        self.assertLess(messages.index("Paused"), messages.index("Resumed"))
        self.assertLess(messages.index("Resumed"), messages.index("Executing: action.clickCoordinates (b)"))

    def test_unexpected_compile_failure_does_not_leave_run_active(self):
        class BrokenCompiler(GraphCompiler):
            def compile(self, graph):
                raise RuntimeError("compiler bug")

        runner = GraphWorkflowRunner(self.port, self.registry, sleep=self.sleeps.append, compiler=BrokenCompiler())
        simple = graph([node("s", "start"), node("e", "end")], [edge("s", "e")])
        with self.assertRaises(RuntimeError):
            runner.run(simple)
        self.assertEqual(runner.get_state(), RunState.ERROR)
        self.assertFalse(runner.is_running())
        self.assertEqual(runner.get_status().error, "compiler bug")

        runner.compiler = GraphCompiler()
        self.assertEqual(runner.run(simple), RunState.COMPLETED)

    def test_subscriber_errors_do_not_break_the_run(self):
        runner = self.make_runner()

        def broken(snapshot):
            raise RuntimeError("observer bug")

        runner.subscribe(broken)
        state = runner.run(graph([node("s", "start"), node("e", "end")], [edge("s", "e")]))
        self.assertEqual(state, RunState.COMPLETED)


if __name__ == "__main__":
    unittest.main()
