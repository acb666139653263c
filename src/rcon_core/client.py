# File: src/rcon_core/client.py
"""
RCON 协议客户端 (Client)

职责：
1. 资源组装：State + Network + Decoder。
2. 认证握手：Connect -> Auth -> Ready。
3. 请求关联：按 request_id 将响应分发给挂起的请求，处理超时。
4. 生命周期：保活心跳 -> 断开 -> 关闭通知。
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any

from .config import RconSettings
from .exceptions import (
    AuthRejectedError,
    AuthTimeoutError,
    CommandTimeoutError,
    ConnectionClosedError,
    NetworkError,
    NotAuthenticatedError,
    ProtocolError,
    RconError,
)
from .network import NetworkClient
from .protocols import packets
from .protocols.constants import AUTH_FAILED_ID, MAX_REQUEST_ID, PacketType
from .state import ClientState, ClientStatus, PendingRequest, RequestKind

logger = logging.getLogger(__name__)

# 关闭通知回调：支持同步或异步函数
ClosedCallback = Callable[["RconClient"], Any | Awaitable[Any]]


class RconClient:
    """RCON 协议客户端 (Async)。

    一个实例只持有一条到单个远端的 TCP 连接。所有状态只在事件循环中修改，
    因此不需要加锁。
    """

    def __init__(
        self,
        host: str,
        port: int,
        password: str,
        settings: RconSettings | None = None,
        on_closed: ClosedCallback | None = None,
    ) -> None:
        """初始化客户端。

        Args:
            host: 服务器地址。
            port: RCON 端口。
            password: RCON 密码。
            settings: 运行参数，缺省使用默认值。
            on_closed: 连接从打开变为关闭时调用，每次转换恰好一次。
        """
        self.host = host
        self.port = port
        self._password = password
        self.settings = settings or RconSettings()
        self.on_closed = on_closed

        self._state = ClientState()
        self._pending: dict[int, PendingRequest] = {}
        self._request_id = 0
        self._open = False

        self._decoder = packets.PacketDecoder(self.settings.encoding)
        self.net_client = NetworkClient(
            host,
            port,
            on_data=self._on_data,
            on_lost=self._on_connection_lost,
            idle_timeout=self.settings.idle_timeout,
        )

        self._stop_event = asyncio.Event()
        self._keep_alive_task: asyncio.Task | None = None
        self._callback_tasks: set[asyncio.Future] = set()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.endpoint} status={self._state.status.name}>"

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def state(self) -> ClientState:
        """获取当前会话状态的只读副本。"""
        return replace(self._state)

    @property
    def is_alive(self) -> bool:
        """Socket 仍然打开且已认证。"""
        return self._state.is_ready and self.net_client.is_open

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def connect(self) -> None:
        """建立连接并完成认证握手。

        外部调用必须使用 await client.connect()。

        Raises:
            ConnectTimeoutError / ConnectRefusedError / SocketError: 建连失败。
            AuthRejectedError: 密码错误。
            AuthTimeoutError: 认证响应超时。
            ConnectionClosedError: 收到认证响应前连接被关闭。
        """
        if self.is_alive:
            logger.warning(f"{self.endpoint} 已认证，跳过连接")
            return

        self._state.status = ClientStatus.CONNECTING
        self._state.last_error = ""
        self._decoder.clear()

        try:
            await self.net_client.connect(self.settings.connect_timeout)
        except NetworkError as e:
            self._state.status = ClientStatus.CLOSED
            self._state.last_error = str(e)
            logger.error(f"连接 {self.endpoint} 失败: {e}")
            raise

        self._open = True
        self._state.connected = True
        self._state.status = ClientStatus.AUTHENTICATING
        logger.info(f"已连接 {self.endpoint}，开始认证")

        try:
            await self._authenticate()
        except RconError as e:
            logger.error(f"{self.endpoint} 认证失败: {e}")
            await self.disconnect(reason=e)
            raise
        except asyncio.CancelledError:
            await self.disconnect()
            raise

    async def send_command(self, command: str) -> str:
        """发送一条命令并等待其响应。

        Returns:
            str: 响应负载文本。

        Raises:
            NotAuthenticatedError: 未连接或未认证，不会触碰网络。
            CommandTimeoutError: 超时未收到响应。
            ConnectionClosedError: 等待期间连接被关闭。
            SocketError: 写入失败。
        """
        if not self.is_alive:
            raise NotAuthenticatedError()

        request_id = self._next_request_id()
        future = self._register(
            request_id, RequestKind.COMMAND, self.settings.command_timeout
        )
        logger.debug(f"发送命令 #{request_id}: {command!r}")

        try:
            self._write(packets.build_command_packet(request_id, command))
        except NetworkError:
            self._discard(request_id)
            raise

        return await future

    async def disconnect(self, reason: Exception | None = None) -> None:
        """断开连接 (幂等)。

        停止保活、关闭 socket，并以 ConnectionClosedError 失败所有挂起请求。
        """
        task = self._keep_alive_task
        self._teardown(reason)

        if task and not task.done() and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._keep_alive_task = None

    def close(self) -> None:
        """同步版本的断开，供回调与巡检使用。保活任务只被取消，不等待。"""
        self._teardown()

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    # =========================================================================
    # 内部实现
    # =========================================================================

    async def _authenticate(self) -> None:
        request_id = self._next_request_id()
        future = self._register(request_id, RequestKind.AUTH, self.settings.auth_timeout)
        logger.debug(f"发送认证包 #{request_id}")

        try:
            self._write(packets.build_auth_packet(request_id, self._password))
        except NetworkError:
            self._discard(request_id)
            raise

        await future

    def _next_request_id(self) -> int:
        """分配下一个 request_id (单调递增，溢出后回绕，跳过仍在等待的 id)。"""
        while True:
            if self._request_id >= MAX_REQUEST_ID:
                self._request_id = 0
            self._request_id += 1
            if self._request_id not in self._pending:
                return self._request_id

    def _register(
        self, request_id: int, kind: RequestKind, timeout: float
    ) -> asyncio.Future:
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        pending = PendingRequest(request_id, kind, future)
        pending.timeout_handle = loop.call_later(
            timeout, self._on_request_timeout, request_id
        )
        self._pending[request_id] = pending
        return future

    def _discard(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            pending.cancel_timeout()

    def _write(self, packet: packets.Packet) -> None:
        self.net_client.send(packet.encode(self.settings.encoding))

    def _on_request_timeout(self, request_id: int) -> None:
        pending = self._pending.pop(request_id, None)
        if pending is None:
            return
        pending.timeout_handle = None

        if pending.kind is RequestKind.AUTH:
            exc: RconError = AuthTimeoutError(
                f"认证超时 ({self.settings.auth_timeout}s)"
            )
        else:
            exc = CommandTimeoutError(
                f"命令 #{request_id} 响应超时 ({self.settings.command_timeout}s)"
            )
        logger.warning(f"{self.endpoint}: {exc}")
        pending.fail(exc)

    def _on_data(self, data: bytes) -> None:
        # 逐包分发，损坏字段之前已完整到达的响应仍会送达
        try:
            for packet in self._decoder.iter_packets(data):
                self._dispatch(packet)
        except ProtocolError as e:
            logger.error(f"{self.endpoint} 数据流无法解析，断开连接: {e}")
            self._teardown(e)

    def _dispatch(self, packet: packets.Packet) -> None:
        """将一个完整的数据包分发给匹配的挂起请求。"""
        logger.debug(
            f"收到数据包: id={packet.request_id}, type={packet.type}, "
            f"payload={packet.payload!r}"
        )

        if (
            packet.type == PacketType.AUTH_RESPONSE
            and packet.request_id == AUTH_FAILED_ID
        ):
            self._reject_auth()
            return

        pending = self._pending.get(packet.request_id)
        if pending is None:
            # 保活回显或已超时请求的迟到响应
            logger.debug(f"丢弃无匹配请求的数据包 #{packet.request_id}")
            return

        if pending.kind is RequestKind.AUTH:
            if packet.type != PacketType.AUTH_RESPONSE:
                # 部分服务器会在认证结果之前先回送一个空的 RESPONSE_VALUE
                return
            del self._pending[packet.request_id]
            self._state.authenticated = True
            self._state.status = ClientStatus.READY
            logger.info(f"认证成功: {self.endpoint}")
            self._start_keep_alive()
            pending.resolve("认证成功")
            return

        del self._pending[packet.request_id]
        if packet.type != PacketType.RESPONSE_VALUE:
            logger.debug(f"命令 #{packet.request_id} 的响应类型异常: {packet.type}")
        pending.resolve(packet.payload)

    def _reject_auth(self) -> None:
        auth = next(
            (p for p in self._pending.values() if p.kind is RequestKind.AUTH), None
        )
        if auth is None:
            logger.warning(f"{self.endpoint} 收到认证失败响应，但没有等待中的认证请求")
            return

        del self._pending[auth.request_id]
        self._state.authenticated = False
        auth.fail(AuthRejectedError())

    # --- 保活 (Keep-Alive) ---

    def _start_keep_alive(self) -> None:
        if self._keep_alive_task and not self._keep_alive_task.done():
            return

        self._stop_event.clear()
        self._keep_alive_task = asyncio.get_running_loop().create_task(
            self._keep_alive_loop(), name=f"RconKeepAlive-{self.endpoint}"
        )

    async def _keep_alive_loop(self) -> None:
        interval = self.settings.keep_alive_interval
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    if not self._send_keep_alive():
                        break
        except asyncio.CancelledError:
            logger.debug(f"{self.endpoint} 保活任务被取消")
            raise

    def _send_keep_alive(self) -> bool:
        """发送一个不登记为挂起请求的保活包，其回显由分发逻辑丢弃。"""
        if not self.is_alive:
            return False

        request_id = self._next_request_id()
        try:
            self._write(
                packets.build_command_packet(
                    request_id, self.settings.keep_alive_command
                )
            )
        except NetworkError as e:
            logger.error(f"{self.endpoint} 保活包发送失败，断开连接: {e}")
            self._teardown(e)
            return False

        # 保活写入同样计为连接活动
        self.net_client.reset_idle_timer()
        logger.debug(f"{self.endpoint} 已发送保活包 #{request_id}")
        return True

    # --- 关闭 (Teardown) ---

    def _on_connection_lost(self, exc: Exception | None) -> None:
        if not self._open:
            return
        logger.warning(f"{self.endpoint} 连接被关闭: {exc or '远端关闭'}")
        self._teardown(exc)

    def _teardown(self, reason: Exception | None = None) -> None:
        was_open = self._open
        self._open = False

        self._stop_event.set()
        task = self._keep_alive_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

        self.net_client.close()
        self._decoder.clear()

        if self._pending:
            pending, self._pending = self._pending, {}
            for request in pending.values():
                request.fail(ConnectionClosedError())

        self._state.reset()
        if reason is not None:
            self._state.last_error = str(reason)

        if was_open:
            logger.info(f"连接已关闭: {self.endpoint}")
            self._notify_closed()

    def _notify_closed(self) -> None:
        if self.on_closed is None:
            return
        try:
            result = self.on_closed(self)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._on_callback_done)
        except Exception as e:
            logger.error(f"关闭回调执行异常: {e}")

    def _on_callback_done(self, task: asyncio.Future) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"关闭回调执行异常: {exc}")
