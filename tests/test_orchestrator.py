"""
tests/test_orchestrator.py
==========================
Pipelines, feedback loops and phase search, on the cooperative scheduler and
with one thread per machine.

Run with:
    pytest tests/test_orchestrator.py -v
"""

from __future__ import annotations

import queue

import pytest

from intcode.errors import StepLimitExceeded, TopologyFailed, UnknownOpcode, VMError
from intcode.vm import ExecState
from runtime.orchestrator import FeedbackLoop, Pipeline, amplify, max_signal
from runtime.scheduler import Scheduler

DOUBLE = [3, 9, 1002, 9, 2, 9, 4, 9, 99, 0]                # one value, doubled
ECHO = [3, 9, 4, 9, 1105, 1, 0, 99, 0, 0]                   # echo forever
COUNT3 = [104, 1, 104, 2, 104, 3, 99]                       # emits 1, 2, 3
SPIN = [1105, 1, 0]                                         # never halts

AMP_43210 = [3, 15, 3, 16, 1002, 16, 10, 16, 1, 16, 15, 15, 4, 15, 99, 0, 0]
AMP_54321 = [3, 23, 3, 24, 1002, 24, 10, 24, 1002, 23, -1, 23, 101, 5, 23, 23, 1, 24, 23,
             23, 4, 23, 99, 0, 0]
AMP_65210 = [3, 31, 3, 32, 1002, 32, 10, 32, 1001, 31, -2, 31, 1007, 31, 0, 33, 1002, 33, 7,
             33, 1, 33, 31, 31, 1, 32, 31, 31, 4, 31, 99, 0, 0, 0]

LOOP_139629729 = [3, 26, 1001, 26, -4, 26, 3, 27, 1002, 27, 2, 27, 1, 27, 26, 27, 4, 27,
                  1001, 28, -1, 28, 1005, 28, 6, 99, 0, 0, 5]
LOOP_18216 = [3, 52, 1001, 52, -5, 52, 3, 53, 1, 52, 56, 54, 1007, 54, 5, 55, 1005, 55, 26,
              1001, 54, -5, 54, 1105, 1, 12, 1, 53, 54, 53, 1008, 54, 0, 55, 1001, 55, 1, 55,
              2, 53, 55, 53, 4, 53, 1001, 56, -1, 56, 1005, 56, 6, 99, 0, 0, 0, 0, 10]


# ─────────────────────────────────────────────────────────────────────────────
# Pipeline
# ─────────────────────────────────────────────────────────────────────────────

class TestPipeline:

    def test_replicated_program(self) -> None:
        with Pipeline(DOUBLE, 3) as p:
            p.feed(3)
            assert p.run() is True
            assert p.collect() == [24]
            assert all(s is ExecState.HALTED for s in p.states.values())
            assert p.done

    def test_machine_names_and_wiring(self) -> None:
        p = Pipeline([DOUBLE, DOUBLE], name="amp")
        assert [m.name for m in p.machines] == ["amp0", "amp1"]
        assert p.machines[0].outbox is p.machines[1].inbox
        assert p.entry is p.machines[0].inbox
        assert p.exit is p.machines[-1].outbox
        p.teardown()

    def test_quiescence_then_more_input(self) -> None:
        p = Pipeline(ECHO, 2)
        p.feed(1)
        assert p.run() is False
        assert p.collect() == [1]
        p.feed(2)
        assert p.run() is False
        assert p.collect() == [2]
        p.close_input()
        assert p.run() is True
        assert p.states == {"pipeline0": ExecState.HALTED, "pipeline1": ExecState.HALTED}

    def test_bounded_ports_lose_nothing(self) -> None:
        p = Pipeline([COUNT3, ECHO], capacity=1)
        out = []
        while not p.run():
            assert len(p.exit) <= 1
            out += p.collect()
        out += p.collect()
        assert out == [1, 2, 3]

    @pytest.mark.timeout(5)
    def test_feed_full_entry_reports_backpressure(self) -> None:
        p = Pipeline([ECHO, ECHO], seeds=[5, None], capacity=1)
        with pytest.raises(queue.Full):
            p.feed(6)
        assert p.run() is False
        assert p.collect() == [5]
        p.feed(6)
        assert p.run() is False
        assert p.collect() == [6]
        p.teardown()

    def test_seeds(self) -> None:
        p = Pipeline(AMP_43210, 5, seeds=[4, 3, 2, 1, 0])
        p.feed(0)
        p.run()
        assert p.collect() == [43210]

    def test_bad_arguments(self) -> None:
        with pytest.raises(ValueError):
            Pipeline(DOUBLE)                      # count missing
        with pytest.raises(ValueError):
            Pipeline(DOUBLE, 2, seeds=[1])
        with pytest.raises(ValueError):
            Pipeline([DOUBLE, DOUBLE], 3)

    def test_failure_aborts_topology(self) -> None:
        p = Pipeline([ECHO, [42], ECHO])
        p.feed(1)
        with pytest.raises(TopologyFailed) as info:
            p.run()
        assert info.value.instance == "pipeline1"
        assert isinstance(info.value.error, UnknownOpcode)
        assert info.value.__cause__ is info.value.error
        assert all(port.torn_down for port in p.ports)

    def test_no_run_after_teardown(self) -> None:
        p = Pipeline(DOUBLE, 1)
        p.teardown()
        p.teardown()
        with pytest.raises(VMError):
            p.run()

    def test_step_limit(self) -> None:
        with pytest.raises(StepLimitExceeded):
            Pipeline(SPIN, 2).run(quantum=100, max_steps=5_000)


# ─────────────────────────────────────────────────────────────────────────────
# Feedback loop
# ─────────────────────────────────────────────────────────────────────────────

class TestFeedbackLoop:

    @pytest.mark.parametrize("program, phases, expected", [
        (LOOP_139629729, [9, 8, 7, 6, 5], 139629729),
        (LOOP_18216, [9, 7, 8, 5, 6], 18216),
    ])
    def test_examples(self, program, phases, expected) -> None:
        with FeedbackLoop(program, phases) as loop:
            assert loop.run() is True
            assert loop.signal == expected

    def test_ring_wiring(self) -> None:
        loop = FeedbackLoop(ECHO, [1, 2, 3])
        assert loop.entry is loop.exit
        assert loop.machines[-1].outbox is loop.machines[0].inbox
        loop.teardown()

    def test_bounded_ring(self) -> None:
        with FeedbackLoop(LOOP_139629729, [9, 8, 7, 6, 5], capacity=2) as loop:
            loop.run()
            assert loop.signal == 139629729

    def test_ring_needs_room_for_phase_and_signal(self) -> None:
        with pytest.raises(ValueError):
            FeedbackLoop(LOOP_139629729, [9, 8, 7, 6, 5], capacity=1)

    def test_failure_in_loop(self) -> None:
        loop = FeedbackLoop([LOOP_139629729, [42]], [9, 8])
        with pytest.raises(TopologyFailed) as info:
            loop.run()
        assert info.value.instance == "loop1"


# ─────────────────────────────────────────────────────────────────────────────
# Threaded execution
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.timeout(20)
class TestThreaded:

    def test_feedback_loop(self) -> None:
        with FeedbackLoop(LOOP_139629729, [9, 8, 7, 6, 5]) as loop:
            assert loop.run(threaded=True, timeout=10.0) is True
            assert loop.signal == 139629729

    def test_pipeline(self) -> None:
        with Pipeline(DOUBLE, 4) as p:
            p.feed(1)
            p.run(threaded=True, timeout=10.0)
            assert p.collect() == [16]

    def test_matches_cooperative(self) -> None:
        assert (amplify(LOOP_18216, [9, 7, 8, 5, 6], feedback=True, threaded=True)
                == amplify(LOOP_18216, [9, 7, 8, 5, 6], feedback=True))

    def test_failure(self) -> None:
        p = Pipeline([ECHO, [42]])
        p.feed(1)
        with pytest.raises(TopologyFailed) as info:
            p.run(threaded=True, timeout=10.0)
        assert info.value.instance == "pipeline1"
        assert all(port.closed for port in p.ports)

    def test_timeout(self) -> None:
        p = Pipeline(ECHO, 1)
        with pytest.raises(TimeoutError):
            p.run(threaded=True, timeout=0.2)

    def test_single_threaded_start(self) -> None:
        p = Pipeline(DOUBLE, 1)
        p.feed(1)
        p.run(threaded=True, timeout=10.0)
        with pytest.raises(RuntimeError):
            p.run(threaded=True, timeout=1.0)


# ─────────────────────────────────────────────────────────────────────────────
# Phase search
# ─────────────────────────────────────────────────────────────────────────────

class TestPhaseSearch:

    @pytest.mark.parametrize("program, phases, expected", [
        (AMP_43210, (4, 3, 2, 1, 0), 43210),
        (AMP_54321, (0, 1, 2, 3, 4), 54321),
        (AMP_65210, (1, 0, 4, 3, 2), 65210),
    ])
    def test_chain(self, program, phases, expected) -> None:
        assert amplify(program, phases) == expected
        assert max_signal(program, range(5)) == (phases, expected)

    def test_feedback_search(self) -> None:
        assert max_signal(LOOP_139629729, range(5, 10), feedback=True) == (
            (9, 8, 7, 6, 5), 139629729)

    def test_deterministic(self) -> None:
        runs = {amplify(AMP_65210, (1, 0, 4, 3, 2)) for _ in range(5)}
        assert runs == {65210}

    def test_no_output(self) -> None:
        with pytest.raises(VMError):
            amplify([99], (0,))

    def test_empty_phase_set(self) -> None:
        with pytest.raises(ValueError):
            max_signal(AMP_43210, [])


class TestScheduler:

    def test_quantum_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            Scheduler([], quantum=0)

    def test_small_quantum_same_result(self) -> None:
        with FeedbackLoop(LOOP_18216, [9, 7, 8, 5, 6]) as loop:
            loop.run(quantum=1)
            assert loop.signal == 18216
