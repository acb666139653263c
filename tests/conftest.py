# tests/conftest.py
import socket
import sys
from pathlib import Path

import pytest
import pytest_asyncio

# 确保 src 目录在 sys.path 中
src_path = Path(__file__).resolve().parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from rcon_core.config import RconSettings, ServerRecord
from fake_server import FakeRconServer


@pytest.fixture
def fast_settings() -> RconSettings:
    """
    [Fixture] 缩短所有超时的运行参数，保活间隔足够长以免干扰断言。
    """
    return RconSettings(
        connect_timeout=2.0,
        idle_timeout=5.0,
        auth_timeout=1.0,
        command_timeout=0.3,
        keep_alive_interval=60.0,
        keep_alive_command="ping",
        sweep_interval=0.05,
    )


@pytest_asyncio.fixture
async def rcon_server():
    """[Fixture] 启动一个假 RCON 服务器 (密码为 secret)。"""
    server = FakeRconServer(password="secret")
    await server.start()
    yield server
    await server.close()


@pytest.fixture
def unused_port() -> int:
    """返回一个当前无人监听的本地端口。"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def server_record(rcon_server) -> ServerRecord:
    return ServerRecord(
        id="island",
        name="The Island",
        host="127.0.0.1",
        port=rcon_server.port,
        password="secret",
    )
