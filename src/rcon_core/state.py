# File: src/rcon_core/state.py
"""
RCON 核心库 - 状态模块

负责定义和存储所有易变的会话状态。
本模块不包含业务逻辑，仅作为数据容器供 Client 和 Supervisor 读写。
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum, auto


class ClientStatus(Enum):
    """RconClient 的生命周期状态枚举。

    状态流转示意:
    IDLE -> CONNECTING -> AUTHENTICATING -> READY -> CLOSED
               |               |              |
               v               v              v
             CLOSED          CLOSED         CLOSED
    """

    IDLE = auto()
    """初始状态，客户端已实例化但未执行任何操作。"""

    CONNECTING = auto()
    """正在建立 TCP 连接。"""

    AUTHENTICATING = auto()
    """TCP 已连接，认证包已发出，等待 AUTH_RESPONSE。"""

    READY = auto()
    """认证成功，保活任务运行中，可以发送命令。"""

    CLOSED = auto()
    """已关闭。可能是主动断开、认证失败或远端断开。"""


class RequestKind(Enum):
    """挂起请求的种类。响应的含义由此决定，而不是由包类型码决定。"""

    AUTH = auto()
    COMMAND = auto()


@dataclass
class ClientState:
    """存储单个 RCON 会话的易变状态数据。

    该对象是非持久化的。每次重新连接都会创建新的客户端与新的状态。

    Attributes:
        connected: TCP 连接是否已建立。
        authenticated: 是否已通过认证。connected 为 False 时必为 False。
        status: 当前生命周期状态。
        last_error: 最近一次发生的错误信息描述，用于 UI 显示。
    """

    connected: bool = False
    authenticated: bool = False
    status: ClientStatus = ClientStatus.IDLE
    last_error: str = ""

    @property
    def is_ready(self) -> bool:
        """是否可以发送命令。"""
        return self.connected and self.authenticated

    def reset(self) -> None:
        """重置为断开状态。"""
        self.connected = False
        self.authenticated = False
        self.status = ClientStatus.CLOSED


@dataclass
class PendingRequest:
    """已写入 socket、尚未收到匹配响应的请求。

    仅由创建它的 RconClient 持有，不在客户端之间共享。

    Attributes:
        request_id: 请求标识。
        kind: 请求种类 (AUTH / COMMAND)。
        future: 等待方持有的 Future，响应到达或失败时完成。
        created_at: 创建时间 (monotonic)。
        timeout_handle: 超时定时器句柄。
    """

    request_id: int
    kind: RequestKind
    future: asyncio.Future
    created_at: float = field(default_factory=time.monotonic)
    timeout_handle: asyncio.TimerHandle | None = None

    def cancel_timeout(self) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None

    def resolve(self, value: str) -> None:
        self.cancel_timeout()
        if not self.future.done():
            self.future.set_result(value)

    def fail(self, exc: BaseException) -> None:
        self.cancel_timeout()
        if not self.future.done():
            self.future.set_exception(exc)


@dataclass(frozen=True)
class ServerStatus:
    """推送给 UI 层的单个服务器连接状态。"""

    id: str
    name: str
    host: str
    port: int
    connected: bool
