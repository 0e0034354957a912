"""Tests for the orchestration bridge — acknowledgements, push channel, RPC."""

from __future__ import annotations

import asyncio

import pytest
import pytest_asyncio

from agentctl.bridge.facade import OrchestrationBridge
from agentctl.bridge.models import JsonRpcRequest
from agentctl.types import EventOrigin, LifecycleState, LogKind


@pytest_asyncio.fixture
async def bridge(make_settings):
    b = OrchestrationBridge(config=make_settings())
    yield b
    await b.shutdown()


async def _collect_until_exit(stream, run_id, timeout=15.0):
    events = []
    while True:
        event = await stream.get(timeout=timeout)
        events.append(event)
        if event.kind == LogKind.EXIT and event.run_id == run_id:
            return events


class TestRunAndStop:
    @pytest.mark.asyncio
    async def test_run_acknowledges_immediately(self, bridge):
        stream = bridge.stream()
        ack = await bridge.run({"steps": [{"name": "fetch"}, {}]})

        assert ack.ok is True
        assert ack.run_id
        assert "stub worker" in ack.message

        events = await _collect_until_exit(stream, ack.run_id)
        worker_kinds = [e.kind for e in events if e.origin == EventOrigin.WORKER]
        assert worker_kinds == [LogKind.START, LogKind.STEP, LogKind.STEP, LogKind.COMPLETE]
        assert events[-1].data["code"] == 0
        stream.close()

    @pytest.mark.asyncio
    async def test_stop_with_nothing_running(self, bridge):
        ack = await bridge.stop()
        assert ack.ok is True
        assert ack.message == "Nothing to stop"
        assert ack.state == LifecycleState.IDLE

    @pytest.mark.asyncio
    async def test_malformed_config_is_refused(self, bridge):
        stream = bridge.stream()
        ack = await bridge.run("{oops")

        assert ack.ok is False
        assert ack.error == "config_malformed"
        event = await stream.get(timeout=1.0)
        assert event.kind == LogKind.ERROR
        stream.close()

    @pytest.mark.asyncio
    async def test_missing_runtime_refused_when_stub_disabled(self, make_settings):
        bridge = OrchestrationBridge(config=make_settings(stub_enabled=False))
        ack = await bridge.run({}, ["nope.py"])

        assert ack.ok is False
        assert ack.error == "runtime_not_found"
        assert bridge.state == LifecycleState.IDLE

    @pytest.mark.asyncio
    async def test_spawn_failure_is_refused(self, make_settings, tmp_path):
        (tmp_path / "agent.run").write_text("")
        bridge = OrchestrationBridge(
            config=make_settings(interpreters={".run": str(tmp_path / "missing-interpreter")}),
        )
        ack = await bridge.run({}, ["agent.run"])

        assert ack.ok is False
        assert ack.error == "spawn_failure"

    @pytest.mark.asyncio
    async def test_stop_running_agent(self, bridge, write_worker):
        worker = write_worker("""
            import json, time
            print(json.dumps({"type": "info", "message": "ready"}), flush=True)
            time.sleep(60)
        """)
        stream = bridge.stream()
        ack = await bridge.run({}, [str(worker)])
        assert ack.ok

        while (await stream.get(timeout=10)).message != "ready":
            pass
        stop_ack = await bridge.stop()

        assert stop_ack.ok is True
        assert stop_ack.message == "Agent stopped"
        assert stop_ack.run_id == ack.run_id
        assert bridge.state == LifecycleState.IDLE
        stream.close()


class TestPushChannel:
    @pytest.mark.asyncio
    async def test_detached_subscriber_receives_nothing_more(self, bridge, recorder):
        bridge.subscribe(recorder)
        ack = await bridge.run({"steps": []})
        await bridge.supervisor.wait(timeout=15)
        seen = len(recorder.events)
        assert seen > 0

        bridge.unsubscribe(recorder)
        await bridge.run({"steps": [{}]})
        await bridge.supervisor.wait(timeout=15)

        assert len(recorder.events) == seen
        assert all(e.run_id == ack.run_id for e in recorder.events)

    @pytest.mark.asyncio
    async def test_events_arrive_in_order_for_every_subscriber(self, bridge):
        first, second = bridge.stream(), bridge.stream()
        ack = await bridge.run({"steps": [{"name": str(i)} for i in range(10)]})

        a = await _collect_until_exit(first, ack.run_id)
        b = await _collect_until_exit(second, ack.run_id)

        assert [e.id for e in a] == [e.id for e in b]
        steps = [e.message for e in a if e.kind == LogKind.STEP]
        assert steps == [f"Step {i + 1}/10: {i}" for i in range(10)]
        first.close()
        second.close()

    @pytest.mark.asyncio
    async def test_unread_stream_does_not_hold_up_the_run(self, bridge):
        idle = bridge.stream()
        await bridge.run({"steps": [{"name": str(i)} for i in range(20)]})

        assert await bridge.supervisor.wait(timeout=15) == 0
        assert bridge.state == LifecycleState.IDLE
        idle.close()


class TestJsonRpc:
    @pytest.mark.asyncio
    async def test_rpc_unknown_method(self, bridge):
        resp = await bridge.handle_rpc(JsonRpcRequest(id=1, method="agent/pause"))
        assert resp.error["code"] == -32601

    @pytest.mark.asyncio
    async def test_rpc_run_requires_config(self, bridge):
        resp = await bridge.handle_rpc(JsonRpcRequest(id=2, method="agent/run"))
        assert resp.error["code"] == -32000
        assert "config" in resp.error["message"]

    @pytest.mark.asyncio
    async def test_rpc_run_status_history(self, bridge):
        resp = await bridge.handle_rpc(JsonRpcRequest(
            id="r", method="agent/run", params={"config": {"steps": [{"name": "fetch"}]}},
        ))
        assert resp.error is None
        assert resp.result["ok"] is True
        run_id = resp.result["run_id"]

        await asyncio.wait_for(bridge.supervisor.wait(), timeout=15)

        status = await bridge.handle_rpc(JsonRpcRequest(id=3, method="agent/status"))
        assert status.result["state"] == "idle"
        assert status.result["run"]["run_id"] == run_id
        assert status.result["run"]["stub"] is True

        history = await bridge.handle_rpc(JsonRpcRequest(
            id=4, method="agent/history", params={"kind": "step", "run_id": run_id},
        ))
        assert [e["message"] for e in history.result] == ["Step 1/1: fetch"]

        empty = await bridge.handle_rpc(JsonRpcRequest(
            id=5, method="agent/history", params={"limit": 0},
        ))
        assert empty.result == []

        no_tail = await bridge.handle_rpc(JsonRpcRequest(
            id=6, method="agent/status", params={"lines": -5},
        ))
        assert no_tail.result["output"] == {"stdout": [], "stderr": []}

    @pytest.mark.asyncio
    async def test_rpc_stop_when_idle(self, bridge):
        resp = await bridge.handle_rpc(JsonRpcRequest(id=5, method="agent/stop"))
        assert resp.result["ok"] is True
        assert resp.result["message"] == "Nothing to stop"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["agent/status", "agent/history"])
    async def test_rpc_read_methods_work_before_any_run(self, bridge, method):
        resp = await bridge.handle_rpc(JsonRpcRequest(id=6, method=method))
        assert resp.error is None
