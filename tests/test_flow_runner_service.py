import asyncio

import pytest

from conftest import FakeNotifier, build_flow, edge, node, sample_flow_document
from exceptions.flow_exception import FlowValidationException
from models.test_run_data import TestRunData
from services.flow_runner_service import FlowRunnerService


@pytest.fixture
def runner(log_util, flow_db, notifier, recording_sleep):
    return FlowRunnerService(
        log_util=log_util,
        flow_db=flow_db,
        notifier=notifier,
        email_subject="Automation Test",
        sleep_func=recording_sleep,
    )


async def wait_for_run(runner, test_run_id, max_iterations=1000):
    for _ in range(max_iterations):
        if not runner.is_run_active(test_run_id):
            return
        await asyncio.sleep(0)
    raise AssertionError(f"test run {test_run_id} did not finish")


async def run_directly(runner, flow_db, document, recipient="x@test.com"):
    """Run a flow without validating it first, the way a background task would."""
    flow = build_flow(document)
    test_run = await flow_db.create_test_run(
        TestRunData(flow_id=flow.id, recipient=recipient, current_step_node_id="start")
    )
    summary = await runner.run_flow(flow=flow, recipient=recipient, test_run_id=test_run.id)
    return summary, await flow_db.get_test_run(test_run.id)


def delay_chain(*delays):
    """start -> delay... -> end"""
    nodes = [node("start", "start")]
    for index, (value, unit) in enumerate(delays):
        nodes.append(node(f"delay-{index}", "delay", delayType="relative", relativeValue=value, relativeUnit=unit))
    nodes.append(node("end", "end"))
    ids = [item["id"] for item in nodes]
    return {"name": "Delays", "nodes": nodes, "edges": [edge(s, t) for s, t in zip(ids, ids[1:])]}


def log_trail(logs):
    return [(log.node_id, log.status) for log in logs]


@pytest.mark.asyncio
async def test_end_to_end_run_of_sample_flow(runner, flow_db, notifier):
    test_run_id = await runner.start_run(build_flow(), "x@test.com")

    # Returned before the run itself progressed
    pending = await flow_db.get_test_run(test_run_id)
    assert pending.status == "running"
    assert pending.current_step_node_id == "start"

    await wait_for_run(runner, test_run_id)

    test_run = await flow_db.get_test_run(test_run_id)
    assert test_run.status == "completed"
    assert test_run.error is None
    assert test_run.finished_at is not None
    assert test_run.current_step_node_id == "end"
    assert test_run.summary.total_steps_executed == 4
    assert test_run.summary.total_delay_time_ms == 0

    logs = await flow_db.get_execution_logs_by_test_run(test_run_id)
    assert log_trail(logs) == [
        ("start", "completed"),
        ("action", "completed"),
        ("condition", "completed"),
        ("end", "completed"),
    ]
    assert logs[2].message == "Condition evaluated to TRUE"
    assert logs[1].message == "Email sent successfully to x@test.com"
    assert all(log.finished_at is not None for log in logs)

    assert notifier.sent == [{"to": "x@test.com", "subject": "Automation Test", "body": "hi"}]


@pytest.mark.asyncio
async def test_false_branch_is_followed(runner, flow_db):
    summary, test_run = await run_directly(runner, flow_db, sample_flow_document(), recipient="x@prod.com")

    assert test_run.status == "completed"
    assert summary.total_steps_executed == 4
    logs = await flow_db.get_execution_logs_by_test_run(test_run.id)
    assert logs[2].message == "Condition evaluated to FALSE"


@pytest.mark.asyncio
async def test_current_step_is_persisted_before_each_node(runner, flow_db):
    await run_directly(runner, flow_db, sample_flow_document())
    assert flow_db.step_updates == ["start", "action", "condition", "end"]


@pytest.mark.asyncio
async def test_ten_hour_delay_is_rejected_by_guard(runner, flow_db, recording_sleep):
    summary, test_run = await run_directly(runner, flow_db, delay_chain((10, "hours")))

    assert test_run.status == "failed"
    assert "6h" in test_run.error
    assert "6h" in test_run.summary.failure_reason
    assert summary.total_steps_executed == 1
    assert recording_sleep.calls == []

    logs = await flow_db.get_execution_logs_by_test_run(test_run.id)
    assert log_trail(logs) == [("start", "completed"), ("delay-0", "failed")]
    assert logs[1].message == "Single delay of 10h exceeds maximum limit of 6h"


@pytest.mark.asyncio
async def test_delays_accumulate(runner, flow_db, recording_sleep):
    summary, test_run = await run_directly(runner, flow_db, delay_chain((2, "hours"), (30, "minutes")))

    assert test_run.status == "completed"
    assert recording_sleep.calls == [7200, 1800]
    assert summary.total_delay_time_ms == 9_000_000
    assert summary.total_steps_executed == 4

    logs = await flow_db.get_execution_logs_by_test_run(test_run.id)
    assert logs[1].message == "Wait for 2 hours completed"


@pytest.mark.asyncio
async def test_total_delay_cap_stops_the_run(runner, flow_db, recording_sleep):
    summary, test_run = await run_directly(runner, flow_db, delay_chain(*[(6, "hours")] * 5))

    assert test_run.status == "failed"
    assert test_run.error == "Total execution delay exceeds maximum limit of 24 hours"
    assert len(recording_sleep.calls) == 4
    assert summary.total_delay_time_ms == 24 * 60 * 60 * 1000
    assert summary.total_steps_executed == 5


@pytest.mark.asyncio
async def test_step_limit_stops_the_run(runner, flow_db, notifier):
    nodes = [node("start", "start")]
    nodes += [node(f"a{i}", "action", message=f"message {i}") for i in range(100)]
    nodes.append(node("end", "end"))
    ids = [item["id"] for item in nodes]
    document = {"name": "Long", "nodes": nodes, "edges": [edge(s, t) for s, t in zip(ids, ids[1:])]}

    summary, test_run = await run_directly(runner, flow_db, document)

    assert test_run.status == "failed"
    assert test_run.error == "Execution exceeded maximum limit of 100 steps"
    assert summary.total_steps_executed == 100
    assert len(notifier.sent) == 99


@pytest.mark.asyncio
async def test_past_absolute_date_fails_the_run(runner, flow_db):
    document = {
        "name": "Past",
        "nodes": [
            node("start", "start"),
            node("wait", "delay", delayType="absolute", absoluteDate="2000-01-01T00:00:00Z"),
            node("end", "end"),
        ],
        "edges": [edge("start", "wait"), edge("wait", "end")],
    }
    _, test_run = await run_directly(runner, flow_db, document)

    assert test_run.status == "failed"
    assert test_run.error == "Target date is in the past"


@pytest.mark.asyncio
async def test_delivery_failure_fails_the_run(log_util, flow_db, recording_sleep):
    runner = FlowRunnerService(
        log_util=log_util,
        flow_db=flow_db,
        notifier=FakeNotifier(fail_with="Failed to send email: mailbox unavailable"),
        sleep_func=recording_sleep,
    )
    summary, test_run = await run_directly(runner, flow_db, sample_flow_document())

    assert test_run.status == "failed"
    assert test_run.error == "Failed to send email: mailbox unavailable"
    assert summary.failure_reason == test_run.error
    assert summary.total_steps_executed == 1

    logs = await flow_db.get_execution_logs_by_test_run(test_run.id)
    assert log_trail(logs) == [("start", "completed"), ("action", "failed")]
    assert logs[1].message == "Failed to send email: mailbox unavailable"


@pytest.mark.asyncio
async def test_missing_branch_fails_the_run(runner, flow_db):
    document = sample_flow_document()
    document["edges"] = [item for item in document["edges"] if item["label"] != "FALSE"]

    _, test_run = await run_directly(runner, flow_db, document, recipient="x@prod.com")

    assert test_run.status == "failed"
    assert test_run.error == "FALSE edge is missing for condition node condition"


@pytest.mark.asyncio
async def test_branch_labels_match_case_insensitively(runner, flow_db):
    document = sample_flow_document()
    for item in document["edges"]:
        if item["label"]:
            item["label"] = item["label"].lower()

    _, test_run = await run_directly(runner, flow_db, document)
    assert test_run.status == "completed"


@pytest.mark.asyncio
async def test_unknown_node_type_ends_the_walk(runner, flow_db, log_util):
    document = {
        "name": "Unknown",
        "nodes": [node("start", "start"), node("hook", "webhook"), node("end", "end")],
        "edges": [edge("start", "hook"), edge("hook", "end")],
    }
    summary, test_run = await run_directly(runner, flow_db, document)

    assert test_run.status == "completed"
    assert summary.total_steps_executed == 2
    assert any("Unknown node type: webhook" in message for message in log_util.messages("warning"))


@pytest.mark.asyncio
async def test_log_write_failures_do_not_abort_the_run(runner, flow_db, log_util):
    flow_db.fail_log_writes = True

    summary, test_run = await run_directly(runner, flow_db, sample_flow_document())

    assert test_run.status == "completed"
    assert summary.total_steps_executed == 4
    assert flow_db.execution_logs == {}
    assert any("Execution logging error" in message for message in log_util.messages("error"))


@pytest.mark.asyncio
async def test_invalid_flow_is_rejected_without_creating_a_run(runner, flow_db):
    document = sample_flow_document()
    document["nodes"] = [item for item in document["nodes"] if item["type"] != "end"]
    document["edges"] = [item for item in document["edges"] if item["target"] != "end"]

    with pytest.raises(FlowValidationException) as exc_info:
        await runner.start_run(build_flow(document), "x@test.com")

    assert exc_info.value.message == "Validation Error: Automation must have exactly one End node"
    assert exc_info.value.status_code == 400
    assert flow_db.test_runs == {}


@pytest.mark.asyncio
async def test_run_uses_a_snapshot_of_the_flow(runner, flow_db, notifier):
    flow = build_flow()
    test_run_id = await runner.start_run(flow, "x@test.com")

    # Edit the caller's flow before the background task gets to run
    flow.nodes[1].data.message = "edited"
    flow.edges.clear()

    await wait_for_run(runner, test_run_id)

    test_run = await flow_db.get_test_run(test_run_id)
    assert test_run.status == "completed"
    assert notifier.sent[0]["body"] == "hi"


@pytest.mark.asyncio
async def test_concurrent_runs_are_independent(runner, flow_db, notifier):
    first = await runner.start_run(build_flow(), "a@test.com")
    second = await runner.start_run(build_flow(), "b@prod.com")

    await wait_for_run(runner, first)
    await wait_for_run(runner, second)

    assert (await flow_db.get_test_run(first)).status == "completed"
    assert (await flow_db.get_test_run(second)).status == "completed"
    assert sorted(message["to"] for message in notifier.sent) == ["a@test.com", "b@prod.com"]

    first_logs = await flow_db.get_execution_logs_by_test_run(first)
    second_logs = await flow_db.get_execution_logs_by_test_run(second)
    assert first_logs[2].message == "Condition evaluated to TRUE"
    assert second_logs[2].message == "Condition evaluated to FALSE"


@pytest.mark.asyncio
async def test_shutdown_cancels_waiting_runs(log_util, flow_db, notifier):
    never = asyncio.Event()
    sleeping = asyncio.Event()

    async def blocking_sleep(seconds):
        sleeping.set()
        await never.wait()

    runner = FlowRunnerService(log_util=log_util, flow_db=flow_db, notifier=notifier, sleep_func=blocking_sleep)
    test_run_id = await runner.start_run(build_flow(delay_chain((1, "minutes"))), "x@test.com")

    await asyncio.wait_for(sleeping.wait(), timeout=1)
    assert runner.is_run_active(test_run_id)

    await runner.shutdown()
    await asyncio.sleep(0)

    assert not runner.is_run_active(test_run_id)
    # Left for the stale run sweep
    assert (await flow_db.get_test_run(test_run_id)).status == "running"
