# tests/test_supervisor.py
"""
测试 ConnectionSupervisor 的注册表维护、自愈巡检与状态推送 [Asyncio Edition]。
覆盖 src/rcon_core/supervisor.py
"""

import asyncio
from dataclasses import replace

import pytest
import pytest_asyncio

from fake_server import wait_until
from rcon_core.config import ServerRecord
from rcon_core.exceptions import ErrorKind, SocketError
from rcon_core.supervisor import MSG_CONNECTION_LOST, ConnectionSupervisor


@pytest_asyncio.fixture
async def supervisor(fast_settings):
    """返回一个未启动巡检的 Supervisor，以及记录状态推送的列表"""
    events: list = []
    sup = ConnectionSupervisor(fast_settings, status_callback=events.append)
    yield sup, events
    await sup.stop()


def _kill_socket(sup: ConnectionSupervisor, server_id: str) -> None:
    """让底层 socket 直接失效 (关闭回调尚未被调度)"""
    sup._clients[server_id].net_client.transport.abort()


async def _settle() -> None:
    await asyncio.sleep(0.02)


# --- Connect / Disconnect ---


@pytest.mark.asyncio
async def test_connect_success_emits_status(supervisor, server_record):
    sup, events = supervisor

    result = await sup.connect_server(server_record)
    await _settle()

    assert result.success is True
    assert sup.is_connected("island") is True
    assert len(events) == 1
    (status,) = events[0]
    assert status.id == "island"
    assert status.name == "The Island"
    assert status.connected is True


@pytest.mark.asyncio
async def test_connect_failure_emits_and_registers_nothing(supervisor, rcon_server):
    sup, events = supervisor

    result = await sup.connect("s1", "127.0.0.1", rcon_server.port, "wrong")
    await _settle()

    assert result.success is False
    assert result.error_kind == ErrorKind.AUTH_REJECTED
    assert "s1" not in sup._clients
    assert sup.is_connected("s1") is False
    assert len(events) == 1
    assert events[0][0].connected is False


@pytest.mark.asyncio
async def test_connect_refused_reports_reason(supervisor, unused_port):
    sup, _ = supervisor

    result = await sup.connect("s1", "127.0.0.1", unused_port, "secret")

    assert result.success is False
    assert result.error_kind == ErrorKind.CONNECT_REFUSED
    assert result.message


@pytest.mark.asyncio
async def test_reconnect_replaces_previous_client(supervisor, server_record):
    sup, _ = supervisor
    await sup.connect_server(server_record)
    old = sup._clients["island"]

    result = await sup.connect_server(server_record)

    assert result.success is True
    new = sup._clients["island"]
    assert new is not old
    assert not old.is_alive
    assert new.is_alive


@pytest.mark.asyncio
async def test_disconnect_unknown_is_silent_success(supervisor):
    sup, events = supervisor

    result = await sup.disconnect("nope")
    await _settle()

    assert result.success is True
    assert events == []


@pytest.mark.asyncio
async def test_disconnect_connected_server(supervisor, server_record):
    sup, events = supervisor
    await sup.connect_server(server_record)
    client = sup._clients["island"]

    result = await sup.disconnect("island")
    await _settle()

    assert result.success is True
    assert not client.is_alive
    assert sup.is_connected("island") is False
    # connect + disconnect 各一次，关闭回调不会重复推送
    assert len(events) == 2
    assert events[-1][0].connected is False


@pytest.mark.asyncio
async def test_unregister_server_disconnects(supervisor, server_record):
    sup, _ = supervisor
    await sup.connect_server(server_record)

    assert await sup.unregister_server("island") is True
    assert sup.servers == []
    assert "island" not in sup._clients
    assert "island" not in sup._locks
    assert await sup.unregister_server("island") is False


@pytest.mark.asyncio
async def test_connect_updates_registered_endpoint(supervisor, rcon_server):
    """已登记的服务器以新地址连接后，状态快照报告新地址"""
    sup, events = supervisor
    sup.register_server(ServerRecord("s", "S", "10.9.9.9", 1111, "old"))

    result = await sup.connect("s", "127.0.0.1", rcon_server.port, "secret")
    await _settle()

    assert result.success is True
    (record,) = sup.servers
    assert record.name == "S"
    assert (record.host, record.port, record.password) == (
        "127.0.0.1",
        rcon_server.port,
        "secret",
    )
    (status,) = sup.status_snapshot()
    assert (status.host, status.port, status.connected) == (
        "127.0.0.1",
        rcon_server.port,
        True,
    )
    assert events[-1] == sup.status_snapshot()


# --- Send ---


@pytest.mark.asyncio
async def test_send_command_unknown_server(supervisor):
    sup, _ = supervisor

    result = await sup.send_command("ghost", "listplayers")

    assert result.success is False
    assert result.error_kind == ErrorKind.UNKNOWN_SERVER


@pytest.mark.asyncio
async def test_send_command_success(supervisor, server_record):
    sup, _ = supervisor
    await sup.connect_server(server_record)

    result = await sup.send_command("island", "listplayers")

    assert result.success is True
    assert result.response == "echo:listplayers"


@pytest.mark.asyncio
async def test_send_command_on_dead_entry_prunes(supervisor, server_record):
    sup, events = supervisor
    await sup.connect_server(server_record)
    await _settle()
    events.clear()

    _kill_socket(sup, "island")
    result = await sup.send_command("island", "listplayers")
    await _settle()

    assert result.success is False
    assert result.message == MSG_CONNECTION_LOST
    assert "island" not in sup._clients
    assert len(events) == 1


@pytest.mark.asyncio
async def test_send_command_timeout_prunes_entry(supervisor, server_record, rcon_server):
    sup, events = supervisor
    rcon_server.silent = {"hang"}
    await sup.connect_server(server_record)
    await _settle()
    events.clear()

    result = await sup.send_command("island", "hang")
    await _settle()

    assert result.success is False
    assert result.error_kind == ErrorKind.COMMAND_TIMEOUT
    assert result.message == MSG_CONNECTION_LOST
    assert sup.is_connected("island") is False
    assert len(events) == 1


@pytest.mark.asyncio
async def test_send_command_write_error_keeps_entry(supervisor, server_record, mocker):
    sup, _ = supervisor
    await sup.connect_server(server_record)
    client = sup._clients["island"]
    mocker.patch.object(client.net_client, "send", side_effect=SocketError("写入失败"))

    result = await sup.send_command("island", "listplayers")

    assert result.success is False
    assert result.error_kind == ErrorKind.SOCKET_ERROR
    assert sup._clients["island"] is client
    assert sup.is_connected("island") is True


@pytest.mark.asyncio
async def test_send_to_all_attributes_each_server(supervisor, rcon_server):
    """一台失效、一台正常、一台从未连接: 一成功两失败，逐台归属"""
    sup, _ = supervisor
    port = rcon_server.port
    await sup.connect_server(ServerRecord("dead", "Dead", "127.0.0.1", port, "secret"))
    await sup.connect_server(ServerRecord("ok", "Healthy", "127.0.0.1", port, "secret"))
    sup.register_server(ServerRecord("never", "Never", "127.0.0.1", port, "secret"))

    _kill_socket(sup, "dead")
    result = await sup.send_to_all("saveworld")

    assert result.success is True
    assert result.success_count == 1
    assert [r.server_name for r in result.results] == ["Dead", "Healthy", "Never"]
    assert [r.success for r in result.results] == [False, True, False]
    assert result.results[1].response == "echo:saveworld"
    assert "1/3" in result.message


@pytest.mark.asyncio
async def test_send_to_all_without_connections(supervisor, rcon_server):
    sup, _ = supervisor
    sup.register_server(ServerRecord("a", "A", "127.0.0.1", rcon_server.port, "x"))

    result = await sup.send_to_all("saveworld")

    assert result.success is False
    assert result.results == []


# --- Liveness / Sweep ---


@pytest.mark.asyncio
async def test_is_connected_prunes_dead_socket_once(supervisor, server_record):
    sup, events = supervisor
    await sup.connect_server(server_record)
    await _settle()
    events.clear()

    _kill_socket(sup, "island")

    assert sup.is_connected("island") is False
    assert sup.is_connected("island") is False
    await _settle()
    assert "island" not in sup._clients
    assert len(events) == 1


@pytest.mark.asyncio
async def test_refresh_status_emits_one_consolidated_signal(supervisor, rcon_server):
    sup, events = supervisor
    port = rcon_server.port
    for sid in ("a", "b", "c"):
        await sup.connect_server(ServerRecord(sid, sid.upper(), "127.0.0.1", port, "secret"))
    await _settle()
    events.clear()

    _kill_socket(sup, "a")
    _kill_socket(sup, "b")

    assert sup.refresh_status() is True
    await _settle()

    assert len(events) == 1
    assert {s.id: s.connected for s in events[0]} == {"a": False, "b": False, "c": True}
    assert sup.refresh_status() is False


@pytest.mark.asyncio
async def test_sweep_loop_prunes_unauthenticated_entry(fast_settings, server_record):
    events: list = []
    async with ConnectionSupervisor(fast_settings, status_callback=events.append) as sup:
        await sup.connect_server(server_record)
        await _settle()
        events.clear()

        # socket 仍打开但认证状态丢失
        sup._clients["island"]._state.authenticated = False

        assert await wait_until(lambda: "island" not in sup._clients)
        await _settle()
        assert len(events) == 1
        assert events[0][0].connected is False


@pytest.mark.asyncio
async def test_remote_close_prunes_entry(supervisor, server_record, rcon_server):
    sup, events = supervisor
    await sup.connect_server(server_record)
    await _settle()
    events.clear()

    rcon_server.drop_clients()

    assert await wait_until(lambda: "island" not in sup._clients)
    await _settle()
    assert sup.is_connected("island") is False
    assert len(events) == 1


@pytest.mark.asyncio
async def test_stop_disconnects_everything(fast_settings, rcon_server):
    sup = ConnectionSupervisor(replace(fast_settings, sweep_interval=10.0))
    await sup.start()
    for sid in ("a", "b"):
        await sup.connect(sid, "127.0.0.1", rcon_server.port, "secret")
    clients = list(sup._clients.values())

    await sup.stop()

    assert sup._clients == {}
    assert all(not c.is_alive for c in clients)
    assert sup._sweep_task is None


@pytest.mark.asyncio
async def test_async_listener_and_snapshot(fast_settings, rcon_server):
    received = []

    async def listener(snapshot):
        received.append(snapshot)

    sup = ConnectionSupervisor(fast_settings)
    sup.add_listener(listener)
    sup.register_server(ServerRecord("x", "X", "127.0.0.1", rcon_server.port, "secret"))
    await sup.connect("x", "127.0.0.1", rcon_server.port, "secret")

    assert await wait_until(lambda: len(received) == 1)
    assert received[0] == sup.status_snapshot()

    sup.remove_listener(listener)
    await sup.stop()
    await _settle()
    assert len(received) == 1
