import asyncio
import time

import pytest

from spek import (
    Suite, SpecRunner, SpekConfig, RecordingReporter, MultiReporter, SpekError, InvalidOptions,
    UnknownAddress, Timeout, Cancelled, HookFailure,
)


def build_tree(log):
    """Root{ a, Inner{ b, c }, d } plus a second top-level context."""
    suite = Suite(source="specs/tree.py")

    @suite.describe("Root")
    def _(s):
        s.it("a", lambda: log.append("a"))

        @s.describe("Inner")
        def _(s):
            s.before_each(lambda: log.append("inner hook"))
            s.it("b", lambda: log.append("b"))
            s.it("c", lambda: log.append("c"))
        s.it("d", lambda: log.append("d"))

    @suite.describe("Other")
    def _(s):
        s.it("e", lambda: log.append("e"))

    return suite


def example_order(log):
    return [x for x in log if x != "inner hook"]


@pytest.mark.asyncio
async def test_declared_order_is_stable_across_runs():
    orders = []
    for _ in range(3):
        log = []
        await SpecRunner(build_tree(log)).run()
        orders.append(example_order(log))
    assert orders == [["a", "b", "c", "d", "e"]] * 3


@pytest.mark.asyncio
async def test_random_order_visits_every_node_once_and_replays_by_seed():
    def random_run(seed):
        log = []
        reporter = RecordingReporter()
        runner = SpecRunner(build_tree(log), SpekConfig(random=True, seed=seed), reporter=reporter)
        return log, reporter, runner

    log, reporter, runner = random_run(1234)
    report = await runner.run()
    assert report.seed == 1234
    assert sorted(example_order(log)) == ["a", "b", "c", "d", "e"]
    entered = reporter.names("entered")
    assert sorted(entered) == sorted(["Root", "Inner", "Other", "a", "b", "c", "d", "e"])
    assert reporter.names("left").count("Inner") == 1

    replay_log, _, replay_runner = random_run(1234)
    await replay_runner.run()
    assert example_order(replay_log) == example_order(log)


@pytest.mark.asyncio
async def test_context_random_option_overrides_the_default():
    log = []
    suite = Suite()

    @suite.describe("ordered", random=False)
    def _(s):
        for name in "abcdefgh":
            s.it(name, lambda name=name: log.append(name))

    await SpecRunner(suite, SpekConfig(random=True, seed=7)).run()
    assert log == list("abcdefgh")


@pytest.mark.asyncio
async def test_async_bodies_are_awaited_one_at_a_time():
    log = []
    suite = Suite()

    def make(name):
        async def body(env):
            log.append(f"start {name}")
            await asyncio.sleep(0.01)
            log.append(f"end {name}")
        return body

    @suite.describe("async")
    def _(s):
        s.it("one", make("one"))
        s.it("two", make("two"))

    report = await SpecRunner(suite).run()
    assert report.ok
    assert log == ["start one", "end one", "start two", "end two"]


@pytest.mark.asyncio
async def test_zero_timeout_never_triggers():
    suite = Suite()

    async def slowish():
        await asyncio.sleep(0.05)

    suite.it("takes its time", slowish, timeout=0)
    report = await SpecRunner(suite, SpekConfig(timeout=0.001)).run()
    assert [r.status for r in report.results] == ["passed"]


@pytest.mark.asyncio
async def test_exceeded_timeout_is_timed_out_and_abandons_the_task():
    suite = Suite()
    finished = []

    async def forever():
        await asyncio.sleep(10)
        finished.append(True)

    @suite.describe("slow", timeout=0.02)
    def _(s):
        s.it("inherits the context timeout", forever)

    runner = SpecRunner(suite, SpekConfig(timeout=0))
    report = await runner.run()
    (result,) = report.results
    assert result.status == "timedOut"
    assert isinstance(result.error, Timeout)
    assert result.error.limit == 0.02
    assert len(runner.abandoned_tasks) == 1
    assert runner.cancel_abandoned() == 1
    await asyncio.sleep(0)
    assert finished == []


@pytest.mark.asyncio
async def test_synchronous_overrun_is_timed_out():
    suite = Suite()
    suite.it("blocks", lambda: time.sleep(0.05), timeout=0.01)
    (result,) = (await SpecRunner(suite).run()).results
    assert result.status == "timedOut"


@pytest.mark.asyncio
async def test_failures_are_local_and_statuses_are_reported():
    suite = Suite()

    def fails():
        assert 1 == 2, "math"

    def raises():
        raise KeyError("boom")

    @suite.describe("mixed")
    def _(s):
        s.it("fails", fails)
        s.it("raises", raises)
        s.pending("is pending", lambda: pytest.fail("pending bodies never run"))
        s.it("passes", lambda: None)

    report = await SpecRunner(suite).run()
    assert [r.status for r in report.results] == ["failed", "failed", "pending", "passed"]
    assert report.summary() == {
        "total": 4, "passed": 1, "failed": 2, "errored": 0, "timedOut": 0,
        "pending": 1, "context-errors": 0, "seed": report.seed,
    }
    assert not report.ok
    assert "AssertionError: math" in report.results[0].format_error()
    assert report.results[3].format_error() == ""
    assert "1 passed, 2 failed, 1 pending" in report.format_summary()


@pytest.mark.asyncio
async def test_decorator_without_body_declares_nothing_until_applied():
    suite = Suite()
    decorator = suite.it("later")
    assert suite.root.children == []
    decorator(lambda: None)
    assert [c.description for c in suite.root.children] == ["later"]


@pytest.mark.asyncio
async def test_selective_run_by_address_keeps_ancestor_hooks():
    log = []
    suite = build_tree(log)
    inner = suite.find("[0:1]")
    assert inner.description == "Inner"
    c = suite.find((0, 1, 1))
    assert c.description == "c"
    assert c.address_str == "[0:1:1]"

    report = await SpecRunner(suite).run(only="specs/tree.py[0:1:1]")
    assert log == ["inner hook", "c"]
    assert [r.location for r in report.results] == ["specs/tree.py[0:1:1]"]


@pytest.mark.asyncio
async def test_selective_run_accepts_several_targets_and_nodes():
    log = []
    suite = build_tree(log)
    other = suite.find("[1]")
    await SpecRunner(suite).run(only=[(0, 0), other, "[0:1:0]"])
    assert example_order(log) == ["a", "b", "e"]


@pytest.mark.asyncio
async def test_unknown_address_is_rejected_before_running():
    log = []
    suite = build_tree(log)
    with pytest.raises(UnknownAddress):
        await SpecRunner(suite).run(only="[0:9]")
    with pytest.raises(InvalidOptions):
        await SpecRunner(suite).run(only="specs/tree.py:12")
    assert log == []


@pytest.mark.asyncio
async def test_reporter_sees_nested_enter_result_leave():
    reporter = RecordingReporter()
    suite = Suite()

    @suite.describe("ctx")
    def _(s):
        s.it("ex", lambda: None)

    await SpecRunner(suite, reporter=reporter).run()
    assert [(kind, node.description) for kind, node, _ in reporter.events] == [
        ("entered", "ctx"),
        ("entered", "ex"),
        ("result", "ex"),
        ("left", "ex"),
        ("left", "ctx"),
    ]
    assert reporter.events[2][2].status == "passed"


@pytest.mark.asyncio
async def test_tree_is_frozen_once_running():
    suite = Suite()
    saved = []

    @suite.describe("ctx")
    def _(s):
        saved.append(s)
        s.it("tries to declare while running", lambda: suite.it("late", lambda: None))

    with pytest.raises(SpekError):
        saved[0].it("after close", lambda: None)

    (result,) = (await SpecRunner(suite).run()).results
    assert result.status == "failed"
    assert isinstance(result.error, SpekError)
    with pytest.raises(SpekError):
        suite.describe("too late", lambda s: None)


def test_malformed_options_and_async_builders_fail_the_build():
    suite = Suite()
    with pytest.raises(InvalidOptions):
        suite.describe("bad timeout", lambda s: None, timeout=-1)
    with pytest.raises(InvalidOptions):
        suite.describe("bad random", lambda s: None, random="yes")
    for bad in (float("nan"), float("inf")):
        with pytest.raises(InvalidOptions):
            suite.it("non-finite timeout", lambda: None, timeout=bad)
    with pytest.raises(InvalidOptions):
        suite.it("bad body", 42)
    assert suite.root.children == []

    async def async_builder(s):
        pass

    with pytest.raises(SpekError):
        suite.describe("async", async_builder)


def test_run_sync_outside_an_event_loop():
    log = []
    report = SpecRunner(build_tree(log)).run_sync(only=(1,))
    assert report.ok
    assert log == ["e"]


@pytest.mark.asyncio
async def test_multi_reporter_fans_out_in_order():
    first, second = RecordingReporter(), RecordingReporter()
    suite = Suite()
    suite.it("solo", lambda: None)
    await SpecRunner(suite, reporter=MultiReporter(first, second)).run()
    assert first.events == second.events
    assert first.names("result") == ["solo"]


@pytest.mark.asyncio
async def test_random_order_shuffles_contexts_and_examples_as_peers():
    declared = [f"example {i}" for i in range(4)] + [f"context {i}" for i in range(4)]

    def build(log):
        suite = Suite()
        for i in range(4):
            suite.it(f"example {i}", lambda i=i: log.append(f"example {i}"))
        for i in range(4):
            suite.describe(f"context {i}",
                           lambda s, i=i: s.it("runs", lambda: log.append(f"context {i}")))
        return suite

    orders = []
    for seed in range(10):
        log = []
        await SpecRunner(build(log), SpekConfig(random=True, seed=seed)).run()
        assert sorted(log) == sorted(declared)
        orders.append(log)
    assert any(order != declared for order in orders)
    kinds = [[name.split()[0] for name in order] for order in orders]
    assert any(k != ["example"] * 4 + ["context"] * 4 for k in kinds), \
        "contexts and examples are shuffled together"


def cancelled_body(log):
    async def body():
        fut = asyncio.get_running_loop().create_future()
        fut.cancel()
        log.append("awaiting")
        await fut
    return body


@pytest.mark.parametrize("timeout", [1, 0])
@pytest.mark.asyncio
async def test_cancelled_await_in_a_body_fails_only_that_example(timeout):
    log = []
    suite = Suite()
    suite.it("awaits a cancelled future", cancelled_body(log))
    suite.it("sibling", lambda: log.append("sibling"))

    report = await SpecRunner(suite, SpekConfig(timeout=timeout)).run()
    cancelled, sibling = report.results
    assert cancelled.status == "failed"
    assert isinstance(cancelled.error, Cancelled)
    assert sibling.status == "passed"
    assert log == ["awaiting", "sibling"]


@pytest.mark.asyncio
async def test_cancelled_await_in_a_hook_errors_the_example():
    log = []
    suite = Suite()

    @suite.describe("cancelled fixture")
    def _(s):
        s.before_each(cancelled_body(log))
        s.it("guarded", lambda: log.append("body"))

    suite.it("sibling", lambda: log.append("sibling"))

    guarded, sibling = (await SpecRunner(suite).run()).results
    assert guarded.status == "errored"
    assert isinstance(guarded.error, HookFailure)
    assert isinstance(guarded.error.error, Cancelled)
    assert sibling.status == "passed"
    assert log == ["awaiting", "sibling"]


@pytest.mark.asyncio
async def test_failed_before_still_reports_nested_contexts():
    reporter = RecordingReporter()
    suite = Suite()

    @suite.describe("outer")
    def _(s):
        s.before(lambda: 1 / 0)

        @s.describe("inner")
        def _(s):
            s.it("ex", lambda: None)

    report = await SpecRunner(suite, reporter=reporter).run()
    assert [r.status for r in report.results] == ["errored"]
    assert [(kind, node.description) for kind, node, _ in reporter.events
            if kind != "context_error"] == [
        ("entered", "outer"),
        ("entered", "inner"),
        ("entered", "ex"),
        ("result", "ex"),
        ("left", "ex"),
        ("left", "inner"),
        ("left", "outer"),
    ]
