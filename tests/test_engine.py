"""Engine tests — Store, Node lifecycle, retry, batch fan-out, Flow traversal."""

import asyncio

import pytest

from flowspec import (
    AsyncBatchFlow,
    AsyncBatchNode,
    AsyncFlow,
    AsyncNode,
    AsyncParallelBatchFlow,
    AsyncParallelBatchNode,
    BatchFlow,
    BatchNode,
    Diagnostics,
    Flow,
    Node,
    Store,
)


# ── Store ─────────────────────────────────────────────────────────────────────

def test_store_basic():
    s = Store({"x": 1})
    assert s["x"] == 1
    s["x"] = 2
    assert s["x"] == 2


def test_store_schema_type_check():
    s = Store({"x": 1}, schema={"x": int})
    with pytest.raises(TypeError):
        s["x"] = "bad"


def test_store_validate_missing_key():
    s = Store({}, schema={"required_key": str})
    with pytest.raises(ValueError, match="required_key"):
        s.validate()


def test_store_observer():
    log = []
    s = Store({"x": 0})
    s.add_observer(lambda k, old, new: log.append((k, old, new)))
    s["x"] = 99
    assert log == [("x", 0, 99)]


def test_store_dotted_paths():
    s = Store({"user": {"name": "Ada"}, "items": ["a", "b"]})
    assert s.get_path("user.name") == "Ada"
    assert s.get_path("items.1") == "b"
    assert s.get_path("user.missing.deeper", "none") == "none"
    s.set_path("draft.meta.title", "On Tides")
    assert s["draft"] == {"meta": {"title": "On Tides"}}


def test_store_set_path_observed_at_top_level():
    writes = []
    s = Store({})
    s.add_observer(lambda k, old, new: writes.append(k))
    s.set_path("a.b", 1)
    assert writes == ["a"]


# ── Node & Flow ───────────────────────────────────────────────────────────────

class _AddNode(Node):
    def prep(self, shared):
        return shared["value"]

    def exec(self, v):
        return v + 10

    def post(self, shared, prep, result):
        shared["value"] = result
        return "next"


def test_single_node_flow():
    shared = {"value": 5}
    result = Flow(start=_AddNode()).run(shared)
    assert shared["value"] == 15
    # no successor for "next": the run ends normally and reports the label
    assert result == "next"


def test_flow_accepts_store():
    store = Store({"value": 0})
    Flow(start=_AddNode()).run(store)
    assert store["value"] == 10


def test_chained_nodes():
    a, b = _AddNode(), _AddNode()
    a.then("next", b)
    shared = {"value": 0}
    Flow(start=a).run(shared)
    assert shared["value"] == 20


def test_none_label_follows_default_edge():
    class Quiet(Node):
        def post(self, shared, prep, result):
            shared.setdefault("order", []).append("quiet")
            return None

    class Last(Node):
        def post(self, shared, prep, result):
            shared["order"].append("last")
            return "done"

    q = Quiet()
    q.then("default", Last())
    shared = {}
    assert Flow(start=q).run(shared) == "done"
    assert shared["order"] == ["quiet", "last"]


def test_unmatched_label_ends_flow_with_diagnostic():
    diag = Diagnostics()

    class Pick(Node):
        def post(self, shared, prep, result):
            return "elsewhere"

    p = Pick(diagnostics=diag)
    p.then("here", _AddNode())
    flow = Flow(start=p, diagnostics=diag)
    assert flow.run({"value": 0}) == "elsewhere"
    assert [d.code for d in diag] == ["flow_ends"]


def test_diagnostics_keep_only_the_newest_records():
    diag = Diagnostics(max_records=2)
    seen = []
    diag.subscribe(seen.append)
    for i in range(5):
        diag.emit("flow_ends", f"run {i}")
    assert [d.message for d in diag] == ["run 3", "run 4"]
    assert len(seen) == 5


def test_wildcard_edge():
    class RouterNode(Node):
        def exec(self, prep):
            return "unknown_action"

        def post(self, shared, prep, result):
            return result

    class FallbackNode(Node):
        def post(self, shared, prep, result):
            shared["fell_back"] = True
            return "done"

    r, f = RouterNode(), FallbackNode()
    r.then("*", f)
    shared = {"fell_back": False}
    Flow(start=r).run(shared)
    assert shared["fell_back"] is True


def test_overwriting_successor_is_a_diagnostic_not_an_error():
    diag = Diagnostics()
    a = Node(diagnostics=diag)
    b, c = Node(), Node()
    a.then("go", b)
    a.then("go", c)
    assert a.successors["go"] is c
    assert [d.code for d in diag] == ["successor_overwrite"]


def test_then_rejects_non_string_action():
    with pytest.raises(TypeError):
        Node().then(1, Node())


def test_cycles_are_legal_and_author_terminated():
    class Counter(Node):
        def post(self, shared, prep, result):
            shared["n"] = shared.get("n", 0) + 1
            return "again" if shared["n"] < 4 else "stop"

    c = Counter()
    c.then("again", c)
    shared = {}
    assert Flow(start=c).run(shared) == "stop"
    assert shared["n"] == 4


def test_flow_hooks():
    starts, ends = [], []

    flow = Flow(start=_AddNode())
    flow.on("node_start", lambda name, s: starts.append(name))
    flow.on("node_end", lambda name, action, elapsed, s: ends.append((name, action)))

    flow.run({"value": 0})
    assert starts == ["_AddNode"]
    assert ends == [("_AddNode", "next")]


def test_flow_hook_errors_are_swallowed():
    flow = Flow(start=_AddNode())
    flow.on("node_start", lambda name, s: 1 / 0)
    shared = {"value": 0}
    flow.run(shared)
    assert shared["value"] == 10


def test_unknown_hook_rejected():
    with pytest.raises(ValueError):
        Flow(start=_AddNode()).on("node_exploded", print)


def test_flow_max_steps_is_opt_in():
    class LoopNode(Node):
        def post(self, shared, prep, result):
            return "loop"

    n = LoopNode()
    n.then("loop", n)
    with pytest.raises(RuntimeError, match="max_steps"):
        Flow(start=n, max_steps=5).run({})


def test_nested_flow_as_node():
    inner_a, inner_b = _AddNode(), _AddNode()
    inner_a.then("next", inner_b)
    inner = Flow(start=inner_a)

    class Done(Node):
        def post(self, shared, prep, result):
            shared["done"] = True
            return "finished"

    # the inner flow's result ("next") selects the outer successor
    inner.then("next", Done())
    shared = {"value": 1}
    assert Flow(start=inner).run(shared) == "finished"
    assert shared == {"value": 21, "done": True}


def test_node_run_alone_warns_about_successors():
    diag = Diagnostics()
    a = _AddNode(diagnostics=diag)
    a.then("next", _AddNode())
    shared = {"value": 0}
    assert a.run(shared) == "next"
    assert shared["value"] == 10
    assert [d.code for d in diag] == ["successors_ignored"]


def test_failed_run_leaves_partial_state_and_fires_error_hook():
    class Boom(Node):
        def exec(self, prep):
            raise ValueError("boom")

    a = _AddNode()
    a.then("next", Boom())
    errors = []
    flow = Flow(start=a).on("node_error", lambda name, exc, s: errors.append((name, str(exc))))
    shared = {"value": 0}
    with pytest.raises(ValueError, match="boom"):
        flow.run(shared)
    assert shared["value"] == 10
    assert errors == [("Boom", "boom")]


# ── Params ────────────────────────────────────────────────────────────────────

class _ParamRecorder(Node):
    def prep(self, shared):
        return dict(self.params)

    def post(self, shared, prep, result):
        shared.setdefault("seen", []).append(prep)
        return None


def test_flow_params_reach_nodes_without_mutating_them():
    rec = _ParamRecorder()
    flow = Flow(start=rec)
    flow.set_params({"model": "m1"})
    shared = {}
    flow.run(shared)
    assert shared["seen"] == [{"model": "m1"}]
    assert rec.params == {}


def test_batch_flow_merges_params_per_run():
    class Batches(BatchFlow):
        def prep(self, shared):
            return [{"file": "a.txt"}, {"file": "b.txt"}]

    flow = Batches(start=_ParamRecorder())
    flow.set_params({"mode": "fast"})
    shared = {}
    flow.run(shared)
    assert shared["seen"] == [
        {"mode": "fast", "file": "a.txt"},
        {"mode": "fast", "file": "b.txt"},
    ]


# ── Retry ─────────────────────────────────────────────────────────────────────

def test_retry_succeeds_on_third_attempt():
    attempts = [0]

    class FlakyNode(Node):
        max_retries = 3

        def exec(self, prep):
            attempts[0] += 1
            if attempts[0] < 3:
                raise ValueError("not yet")
            return "ok"

        def post(self, shared, prep, result):
            shared["result"] = result
            return "done"

    shared = {}
    Flow(start=FlakyNode()).run(shared)
    assert attempts[0] == 3
    assert shared["result"] == "ok"


def test_retry_count_then_fallback_once():
    calls = {"exec": 0, "fallback": 0}

    class AlwaysFail(Node):
        def exec(self, prep):
            calls["exec"] += 1
            raise RuntimeError("always fails")

        def exec_fallback(self, prep, exc):
            calls["fallback"] += 1
            return f"fallback: {exc}"

        def post(self, shared, prep, result):
            shared["result"] = result

    shared = {}
    Flow(start=AlwaysFail(max_retries=4)).run(shared)
    assert calls == {"exec": 4, "fallback": 1}
    assert shared["result"] == "fallback: always fails"


def test_retry_exhausted_raises_by_default():
    class AlwaysFailNode(Node):
        max_retries = 2

        def exec(self, prep):
            raise RuntimeError("always fails")

    with pytest.raises(RuntimeError, match="always fails"):
        Flow(start=AlwaysFailNode()).run({})


def test_retry_waits_between_attempts(monkeypatch):
    sleeps = []
    monkeypatch.setattr("flowspec.node.time.sleep", lambda s: sleeps.append(s))

    class Fail(Node):
        def exec(self, prep):
            raise RuntimeError("x")

        def exec_fallback(self, prep, exc):
            return None

    Fail(max_retries=3, retry_delay=0.5).run({})
    Fail(max_retries=4, retry_delay=0.5, retry_backoff="exponential").run({})
    assert sleeps == [0.5, 0.5, 0.5, 1.0, 2.0]


def test_invalid_retry_policy_rejected():
    with pytest.raises(ValueError):
        Node(max_retries=0)
    with pytest.raises(ValueError):
        Node(retry_delay=-1)
    with pytest.raises(ValueError):
        Node(retry_backoff="random")


# ── Batch fan-out ─────────────────────────────────────────────────────────────

def test_batch_node_preserves_order_and_retries_per_element():
    failures = {"b": 1}

    class Upper(BatchNode):
        max_retries = 2

        def prep(self, shared):
            return shared["items"]

        def exec(self, item):
            if failures.get(item):
                failures[item] -= 1
                raise ValueError(item)
            return item.upper()

        def post(self, shared, prep, results):
            shared["out"] = results

    shared = {"items": ["a", "b", "c"]}
    Flow(start=Upper()).run(shared)
    assert shared["out"] == ["A", "B", "C"]


def test_batch_node_empty_input():
    class Echo(BatchNode):
        def prep(self, shared):
            return None

        def post(self, shared, prep, results):
            shared["out"] = results

    shared = {}
    Flow(start=Echo()).run(shared)
    assert shared["out"] == []


# ── Cooperative (async) ───────────────────────────────────────────────────────

class _AsyncDouble(AsyncNode):
    async def prep_async(self, shared):
        return shared["value"]

    async def exec_async(self, v):
        await asyncio.sleep(0)
        return v * 2

    async def post_async(self, shared, prep, result):
        shared["value"] = result
        return "done"


def test_async_node_in_async_flow():
    shared = {"value": 7}
    assert AsyncFlow(start=_AsyncDouble()).run(shared) == "done"
    assert shared["value"] == 14


def test_async_flow_runs_sync_nodes_inline():
    a = _AsyncDouble()
    a.then("done", _AddNode())
    shared = {"value": 1}
    asyncio.run(AsyncFlow(start=a).run_async(shared))
    assert shared["value"] == 12


def test_async_node_refuses_sync_run():
    with pytest.raises(RuntimeError, match="run_async"):
        Flow(start=_AsyncDouble()).run({"value": 1})


def test_async_retry_then_fallback():
    calls = {"exec": 0}

    class Flaky(AsyncNode):
        max_retries = 3

        async def exec_async(self, prep):
            calls["exec"] += 1
            raise ConnectionError("down")

        async def exec_fallback_async(self, prep, exc):
            return "offline"

        async def post_async(self, shared, prep, result):
            shared["status"] = result

    shared = {}
    asyncio.run(Flaky().run_async(shared))
    assert calls["exec"] == 3
    assert shared["status"] == "offline"


def test_async_batch_node_is_sequential():
    running, peak = [0], [0]

    class Seq(AsyncBatchNode):
        async def prep_async(self, shared):
            return [1, 2, 3]

        async def exec_async(self, x):
            running[0] += 1
            peak[0] = max(peak[0], running[0])
            await asyncio.sleep(0.001)
            running[0] -= 1
            return x * 10

        async def post_async(self, shared, prep, results):
            shared["out"] = results

    shared = {}
    AsyncFlow(start=Seq()).run(shared)
    assert shared["out"] == [10, 20, 30]
    assert peak[0] == 1


def test_parallel_batch_order_independent_of_completion():
    finished = []

    class Par(AsyncParallelBatchNode):
        async def prep_async(self, shared):
            return shared["items"]

        async def exec_async(self, x):
            # later items finish first
            await asyncio.sleep(0.01 * (4 - x))
            finished.append(x)
            return x * 2

        async def post_async(self, shared, prep, results):
            shared["out"] = results

    shared = {"items": [1, 2, 3]}
    AsyncFlow(start=Par()).run(shared)
    assert finished == [3, 2, 1]
    assert shared["out"] == [2, 4, 6]


def test_parallel_batch_flow_isolates_params_per_sub_run():
    class Probe(AsyncNode):
        async def prep_async(self, shared):
            return self.params["i"]

        async def exec_async(self, i):
            await asyncio.sleep(0.001 * (3 - i))
            return i

        async def post_async(self, shared, prep, result):
            # params are still this sub-run's after the suspension
            shared.setdefault("pairs", []).append((self.params["i"], result))

    class Fan(AsyncParallelBatchFlow):
        async def prep_async(self, shared):
            return [{"i": 0}, {"i": 1}, {"i": 2}]

    shared = {}
    Fan(start=Probe()).run(shared)
    assert sorted(shared["pairs"]) == [(0, 0), (1, 1), (2, 2)]


def test_async_batch_flow_runs_sub_runs_in_order():
    class Rec(AsyncNode):
        async def post_async(self, shared, prep, result):
            shared.setdefault("order", []).append(self.params["n"])

    class Seq(AsyncBatchFlow):
        async def prep_async(self, shared):
            return [{"n": 1}, {"n": 2}, {"n": 3}]

    shared = {}
    Seq(start=Rec()).run(shared)
    assert shared["order"] == [1, 2, 3]


def test_independent_async_flows_interleave():
    class Ping(AsyncNode):
        def __init__(self, tag, inbox, outbox):
            super().__init__(name=tag)
            self.tag, self.inbox, self.outbox = tag, inbox, outbox

        async def prep_async(self, shared):
            return await self.inbox.get()

        async def exec_async(self, msg):
            return msg + 1

        async def post_async(self, shared, prep, result):
            shared.setdefault("log", []).append((self.tag, result))
            if result >= 4:
                await self.outbox.put(result)
                return None
            await self.outbox.put(result)
            return "again"

    async def main():
        a_in, b_in = asyncio.Queue(), asyncio.Queue()
        a, b = Ping("a", a_in, b_in), Ping("b", b_in, a_in)
        a.then("again", a)
        b.then("again", b)
        shared_a, shared_b = {}, {}
        await a_in.put(0)
        await asyncio.gather(AsyncFlow(start=a).run_async(shared_a),
                             AsyncFlow(start=b).run_async(shared_b))
        return shared_a, shared_b

    shared_a, shared_b = asyncio.run(main())
    assert shared_a["log"] == [("a", 1), ("a", 3), ("a", 5)]
    assert shared_b["log"] == [("b", 2), ("b", 4)]
