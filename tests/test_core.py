import asyncio

from desktop_agent.errors import OracleChannelError
from desktop_agent.models import (
    Click, Decision, Done, Fail, RunStatus, StopToken, TypeText, UnknownAction,
)
from desktop_agent.transport import RecordingTransport

from conftest import ScriptedPlanner, run

NO_MATCH_TASK = "type hello world into the editor"


def test_quick_path_clicks_known_location_without_oracle(make_agent, transport):
    planner = ScriptedPlanner([Done("never")])
    agent = make_agent(planner)

    result = run(agent.run("open terminal"))

    assert result.succeeded
    assert result.status is RunStatus.COMPLETED
    assert result.iterations_used == 1
    assert result.actions_dispatched == 1
    assert planner.calls == []
    assert transport.calls == [("mouse_move", 278, 740), ("mouse_down", 1), ("mouse_up", 1)]
    assert result.history[0].action == Click(278, 740)
    # 执行前一张、验证一张
    assert agent.fake_capture.calls == 2


def test_quick_path_waits_settle_delay(make_agent, sleep):
    agent = make_agent(ScriptedPlanner([Done()]), quick_path_settle_ms=1500)

    run(agent.run("Open the File Manager"))

    assert sleep.calls == [1.5]


def test_quick_path_survives_capture_failure(make_agent, transport):
    agent = make_agent(ScriptedPlanner([Done()]), capture_fails=True)

    result = run(agent.run("open terminal"))

    assert result.succeeded
    assert len(transport.calls) == 3


def test_quick_path_device_failure_still_completes(make_agent, controller):
    controller.emitter.transport.fail_on = {"mouse_down"}
    planner = ScriptedPlanner([Done()])
    agent = make_agent(planner)
    events = []

    result = run(agent.run("open terminal", emit_progress=events.append))

    assert result.succeeded
    assert result.status is RunStatus.COMPLETED
    assert result.history[0].succeeded is False
    assert result.actions_dispatched == 1
    assert planner.calls == []
    assert any(e.kind == "agent_warning" and "failed" in e.message for e in events)


def test_oracle_called_before_terminal_state(make_agent):
    planner = ScriptedPlanner([Done("ok")])
    agent = make_agent(planner)

    result = run(agent.run(NO_MATCH_TASK))

    assert len(planner.calls) == 1
    assert result.succeeded
    assert result.iterations_used == 1


def test_rate_limited_twice_then_click(make_agent, sleep, transport):
    planner = ScriptedPlanner([
        Decision(False, error="429", rate_limited=True),
        Decision(False, error="429", rate_limited=True),
        Click(100, 200),
        Done("clicked"),
    ])
    agent = make_agent(planner)

    result = run(agent.run(NO_MATCH_TASK))

    assert result.succeeded
    assert sleep.calls[:2] == [10.0, 10.0]
    # 第三次决策才执行点击，之后是 settle + 限速等待
    assert sleep.calls[2:] == [2.0, 12.0]
    assert transport.calls == [("mouse_move", 100, 200), ("mouse_down", 1), ("mouse_up", 1)]
    failed = [h for h in result.history if not h.succeeded]
    assert len(failed) == 2
    assert all(h.action is None for h in failed)
    assert result.history[2].action == Click(100, 200)
    # 重试消耗迭代次数
    assert result.iterations_used == 4
    assert result.decision_failures == 2


def test_other_decision_failure_uses_short_backoff(make_agent, sleep):
    planner = ScriptedPlanner([Decision(False, error="bad json"), Done()])
    agent = make_agent(planner)

    result = run(agent.run(NO_MATCH_TASK))

    assert result.succeeded
    assert sleep.calls == [2.0]
    assert result.history[0].outcome_message == "bad json"


def test_done_on_third_iteration(make_agent):
    planner = ScriptedPlanner([Click(10, 10), TypeText("vlc"), Done("App is open")])
    agent = make_agent(planner)

    result = run(agent.run(NO_MATCH_TASK))

    assert result.succeeded
    assert result.iterations_used == 3
    assert result.message == "App is open"
    assert result.actions_dispatched == 2
    assert [type(h.action) for h in result.history] == [Click, TypeText]


def test_oracle_reported_failure_ends_run(make_agent):
    agent = make_agent(ScriptedPlanner([Fail("No such application")]))

    result = run(agent.run(NO_MATCH_TASK))

    assert not result.succeeded
    assert result.status is RunStatus.FAILED
    assert result.message == "No such application"


def test_stop_checked_before_fourth_iteration(make_agent):
    stop = StopToken()

    def on_call(n):
        if n == 3:
            stop.set()

    planner = ScriptedPlanner([Click(1, 1)], on_call=on_call)
    agent = make_agent(planner)

    result = run(agent.run(NO_MATCH_TASK, stop_token=stop))

    assert result.status is RunStatus.STOPPED_BY_OPERATOR
    assert result.iterations_used == 3
    assert not result.succeeded
    assert len(planner.calls) == 3


def test_preset_stop_token_stops_before_any_io(make_agent):
    stop = StopToken()
    stop.set()
    planner = ScriptedPlanner([Done()])
    agent = make_agent(planner)

    result = run(agent.run(NO_MATCH_TASK, stop_token=stop))

    assert result.status is RunStatus.STOPPED_BY_OPERATOR
    assert result.iterations_used == 0
    assert planner.calls == []
    assert agent.fake_capture.calls == 0


def test_iteration_cap_times_out(make_agent):
    planner = ScriptedPlanner([Click(5, 5)])
    agent = make_agent(planner, max_iterations=3)

    result = run(agent.run(NO_MATCH_TASK))

    assert not result.succeeded
    assert result.status is RunStatus.TIMED_OUT
    assert "maximum iterations (3)" in result.message
    assert result.actions_dispatched == 3
    assert result.iterations_used == 3


def test_capture_failure_is_fatal(make_agent):
    planner = ScriptedPlanner([Done()])
    agent = make_agent(planner, capture_fails=True)

    result = run(agent.run(NO_MATCH_TASK))

    assert result.status is RunStatus.FAILED
    assert "Screenshot failed" in result.message
    assert planner.calls == []


def test_channel_error_is_fatal(make_agent):
    agent = make_agent(ScriptedPlanner([OracleChannelError("invalid api key")]))

    result = run(agent.run(NO_MATCH_TASK))

    assert result.status is RunStatus.FAILED
    assert "invalid api key" in result.message


def test_unexpected_exception_fails_run(make_agent):
    agent = make_agent(ScriptedPlanner([RuntimeError("boom")]))

    result = run(agent.run(NO_MATCH_TASK))

    assert result.status is RunStatus.FAILED
    assert result.message == "Agent error: boom"


def test_device_failure_is_not_fatal(make_agent, controller):
    controller.emitter.transport.fail_on = {"mouse_down"}
    agent = make_agent(ScriptedPlanner([Click(1, 2), Done("recovered")]))

    result = run(agent.run(NO_MATCH_TASK))

    assert result.succeeded
    assert not result.history[0].succeeded
    assert "failed" in result.history[0].outcome_message


def test_unknown_action_recorded_and_loop_continues(make_agent):
    agent = make_agent(ScriptedPlanner([UnknownAction("teleport"), Done()]))

    result = run(agent.run(NO_MATCH_TASK))

    assert result.succeeded
    assert not result.history[0].succeeded
    assert "teleport" in result.history[0].outcome_message


def test_screen_change_is_recorded_on_previous_entry(make_agent):
    planner = ScriptedPlanner([Click(1, 1), Click(2, 2), Click(3, 3), Done()])
    agent = make_agent(planner, frames=[b"A" * 50, b"A" * 50, b"B" * 50, b"B" * 50])

    result = run(agent.run(NO_MATCH_TASK))

    assert [h.screen_changed for h in result.history] == [False, True, False]
    signals = [call[2].stagnation for call in planner.calls]
    assert [s.count for s in signals] == [0, 1, 0, 1]
    assert [s.unchanged for s in signals] == [False, True, False, True]


def test_stagnation_warning_reaches_oracle(make_agent):
    planner = ScriptedPlanner([Click(1, 1)] * 4 + [Done()])
    agent = make_agent(planner, stagnation_threshold=3)

    run(agent.run(NO_MATCH_TASK))

    warnings = [call[2].stagnation.warning for call in planner.calls]
    assert warnings == [False, False, False, True, True]


def test_context_carries_history_and_iteration(make_agent):
    planner = ScriptedPlanner([Click(1, 1), Done()])
    agent = make_agent(planner, max_iterations=7)

    run(agent.run(NO_MATCH_TASK))

    context = planner.calls[1][2]
    assert context.iteration_index == 2
    assert context.max_iterations == 7
    assert len(context.history) == 1


def test_progress_callback_errors_are_ignored(make_agent):
    def broken(event):
        raise ValueError("ui went away")

    agent = make_agent(ScriptedPlanner([Click(1, 1), Done("fine")]))

    result = run(agent.run(NO_MATCH_TASK, emit_progress=broken))

    assert result.succeeded


def test_progress_phases(make_agent):
    events = []
    agent = make_agent(ScriptedPlanner([Click(1, 1), Done()]), frames=[b"a", b"b"])

    run(agent.run(NO_MATCH_TASK, emit_progress=events.append))

    phases = [e.phase for e in events if e.phase]
    for phase in ("capture", "detect", "think", "act", "wait"):
        assert phase in phases
    assert events[0].kind == "agent_start"
    assert events[-1].kind == "agent_complete"


def test_execute_single_action(make_agent):
    transport = RecordingTransport()
    agent = make_agent(ScriptedPlanner([Done()]))
    agent.controller.emitter.transport = transport

    outcome = run(agent.execute_single_action(TypeText("hi")))

    assert outcome.succeeded
    assert transport.calls == [("type_text", "hi")]


def test_async_progress_callback_receives_every_event(make_agent):
    received = []

    async def consumer(event):
        await asyncio.sleep(0)
        received.append(event.kind)

    agent = make_agent(ScriptedPlanner([Click(1, 1), Done("fine")]))

    result = run(agent.run(NO_MATCH_TASK, emit_progress=consumer))

    assert result.succeeded
    assert received[0] == "agent_start"
    assert received[-1] == "agent_complete"


def test_async_progress_callback_errors_are_ignored(make_agent, caplog):
    async def broken(event):
        raise ValueError("ui went away")

    agent = make_agent(ScriptedPlanner([Done("fine")]))

    result = run(agent.run(NO_MATCH_TASK, emit_progress=broken))

    assert result.succeeded
    assert "ui went away" in caplog.text
