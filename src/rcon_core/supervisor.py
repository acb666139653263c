# File: src/rcon_core/supervisor.py
"""
RCON 连接监管器 (Supervisor)

职责：
1. 注册表：每个服务器 id 至多持有一个 RconClient。
2. 边界操作：connect / disconnect / send_command / send_to_all / is_connected，
   全部以结构化结果返回，永不向上抛出。
3. 自愈：周期巡检清理已失效的连接，并合并推送一次状态变更。
"""

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

from .client import RconClient
from .config import RconSettings, ServerRecord
from .exceptions import ErrorKind, RconError, UnknownServerError
from .state import ServerStatus

logger = logging.getLogger(__name__)

# 状态变更回调类型别名：支持同步或异步函数
StatusCallback = Callable[[list[ServerStatus]], Any | Awaitable[Any]]
ClientFactory = Callable[..., RconClient]

MSG_CONNECTION_LOST = "连接已丢失，请重新连接服务器"


@dataclass(frozen=True)
class OperationResult:
    """单次边界操作的结果。

    Attributes:
        success: 是否成功。
        message: 结果描述或失败原因。
        response: 命令响应 (仅 send_command 成功时有值)。
        error_kind: 失败类型。
    """

    success: bool
    message: str = ""
    response: str | None = None
    error_kind: ErrorKind | None = None


@dataclass(frozen=True)
class ServerOutcome:
    """send_to_all 中单台服务器的结果。"""

    server_id: str
    server_name: str
    success: bool
    response: str | None = None
    message: str = ""


@dataclass(frozen=True)
class BroadcastResult:
    """send_to_all 的汇总结果。"""

    success: bool
    message: str
    success_count: int = 0
    results: list[ServerOutcome] = field(default_factory=list)


def _failure(exc: RconError, message: str | None = None) -> OperationResult:
    return OperationResult(False, message or str(exc), error_kind=exc.kind)


class ConnectionSupervisor:
    """为每台远程服务器监管一个 RconClient (Async)。

    生命周期由持有者管理：start() 启动巡检，stop() 停止巡检并断开全部连接。
    也可以作为异步上下文管理器使用。
    """

    def __init__(
        self,
        settings: RconSettings | None = None,
        status_callback: StatusCallback | None = None,
        client_factory: ClientFactory = RconClient,
    ) -> None:
        """初始化监管器。

        Args:
            settings: 传递给每个客户端的运行参数，同时决定巡检间隔。
            status_callback: 初始状态回调。也可以使用 add_listener 注册。
            client_factory: 客户端构造器，签名同 RconClient。
        """
        self.settings = settings or RconSettings()
        self._client_factory = client_factory

        self._servers: dict[str, ServerRecord] = {}
        self._clients: dict[str, RconClient] = {}
        self._locks: dict[str, asyncio.Lock] = {}

        self._listeners: list[StatusCallback] = []
        if status_callback:
            self.add_listener(status_callback)

        self._stop_event = asyncio.Event()
        self._sweep_task: asyncio.Task | None = None

    # =========================================================================
    # 监听器 & 服务器登记
    # =========================================================================

    def add_listener(self, callback: StatusCallback) -> None:
        """注册连接状态变更监听器。"""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: StatusCallback) -> None:
        """移除连接状态变更监听器。"""
        if callback in self._listeners:
            self._listeners.remove(callback)

    @property
    def servers(self) -> list[ServerRecord]:
        """已登记的服务器 (按登记顺序)。"""
        return list(self._servers.values())

    def register_server(self, record: ServerRecord) -> None:
        """登记 (或更新) 一台服务器。不会建立连接。"""
        self._servers[record.id] = record

    async def unregister_server(self, server_id: str) -> bool:
        """断开并移除一台服务器的登记。

        Returns:
            bool: 该服务器此前是否已登记。
        """
        await self.disconnect(server_id)
        self._locks.pop(server_id, None)
        return self._servers.pop(server_id, None) is not None

    # =========================================================================
    # 边界操作
    # =========================================================================

    async def connect(
        self, server_id: str, host: str, port: int, password: str
    ) -> OperationResult:
        """连接并认证一台服务器。已有连接会先被断开。

        无论成功与否都会推送一次状态变更。
        """
        existing = self._servers.get(server_id)
        if existing is None:
            self.register_server(ServerRecord(server_id, server_id, host, port, password))
        elif (existing.host, existing.port, existing.password) != (host, port, password):
            # 状态快照以登记信息为准，连接参数变化时同步更新
            self.register_server(
                replace(existing, host=host, port=port, password=password)
            )

        async with self._lock_for(server_id):
            previous = self._clients.pop(server_id, None)
            if previous is not None:
                logger.info(f"服务器 {server_id} 已有连接，先断开旧连接")
                await previous.disconnect()

            client = self._client_factory(
                host,
                port,
                password,
                settings=self.settings,
                on_closed=lambda c, sid=server_id: self._on_client_closed(sid, c),
            )

            logger.info(f"正在连接服务器 {server_id} ({host}:{port})...")
            try:
                await client.connect()
            except RconError as e:
                logger.error(f"连接服务器 {server_id} 失败: {e}")
                result = _failure(e)
            except Exception as e:
                logger.exception(f"连接服务器 {server_id} 时发生意外错误: {e}")
                await client.disconnect()
                result = OperationResult(False, f"连接时发生意外错误: {e}")
            else:
                self._clients[server_id] = client
                logger.info(f"服务器 {server_id} 连接成功")
                result = OperationResult(True, "连接成功")

        self._emit_status()
        return result

    async def connect_server(self, record: ServerRecord) -> OperationResult:
        """按登记信息连接服务器。"""
        self.register_server(record)
        return await self.connect(record.id, record.host, record.port, record.password)

    async def disconnect(self, server_id: str) -> OperationResult:
        """断开一台服务器。未连接时直接返回成功，不推送状态。"""
        async with self._lock_for(server_id):
            client = self._clients.pop(server_id, None)
            if client is None:
                return OperationResult(True, "服务器已处于断开状态")

            await client.disconnect()
            logger.info(f"已断开服务器 {server_id}")

        self._emit_status()
        return OperationResult(True, "已断开连接")

    async def send_command(self, server_id: str, command: str) -> OperationResult:
        """向一台服务器发送命令。

        连接不可用类的失败会清理注册表条目；一次性的写入错误则保留条目以便重试。
        """
        client = self._clients.get(server_id)
        if client is None:
            return _failure(UnknownServerError())

        if not self._check_alive(server_id, emit=True):
            return OperationResult(
                False, MSG_CONNECTION_LOST, error_kind=ErrorKind.CONNECTION_CLOSED
            )

        try:
            response = await client.send_command(command)
        except RconError as e:
            logger.error(f"向服务器 {server_id} 发送命令失败: {e}")
            if e.kind.connection_lost:
                # 连接关闭时条目可能已由关闭回调移除并推送过状态
                if self._clients.get(server_id) is client:
                    logger.warning(f"移除已失效的连接: {server_id}")
                    del self._clients[server_id]
                    client.close()
                    self._emit_status()
                return _failure(e, MSG_CONNECTION_LOST)
            return _failure(e)

        return OperationResult(True, "命令执行成功", response=response)

    async def send_to_all(self, command: str) -> BroadcastResult:
        """向所有已登记的服务器依次发送同一条命令。

        每台服务器的结果独立收集，一台失败不会中断其余服务器。
        """
        targets = self.servers
        if not any(self._check_alive(s.id, emit=True) for s in targets):
            return BroadcastResult(False, "当前没有已连接的服务器")

        results: list[ServerOutcome] = []
        for record in targets:
            result = await self.send_command(record.id, command)
            results.append(
                ServerOutcome(
                    server_id=record.id,
                    server_name=record.name,
                    success=result.success,
                    response=result.response,
                    message=result.message,
                )
            )

        success_count = sum(1 for r in results if r.success)
        return BroadcastResult(
            success=True,
            message=f"命令已发送至 {success_count}/{len(results)} 台服务器",
            success_count=success_count,
            results=results,
        )

    def is_connected(self, server_id: str) -> bool:
        """判断服务器是否在线。失效的条目会被清理并推送状态变更。"""
        return self._check_alive(server_id, emit=True)

    def refresh_status(self) -> bool:
        """执行一次完整巡检。

        Returns:
            bool: 本轮是否有条目被清理 (有则已合并推送一次状态变更)。
        """
        changed = False
        for server_id in list(self._clients):
            if not self._check_alive(server_id, emit=False):
                changed = True

        if changed:
            self._emit_status()
        return changed

    def status_snapshot(self) -> list[ServerStatus]:
        """返回每台已知服务器的当前连接状态。"""
        snapshot = [
            ServerStatus(r.id, r.name, r.host, r.port, self._alive(r.id))
            for r in self._servers.values()
        ]
        for server_id, client in self._clients.items():
            if server_id not in self._servers:
                snapshot.append(
                    ServerStatus(
                        server_id, server_id, client.host, client.port, client.is_alive
                    )
                )
        return snapshot

    # =========================================================================
    # 生命周期
    # =========================================================================

    async def start(self) -> None:
        """启动后台巡检任务。"""
        if self._sweep_task and not self._sweep_task.done():
            return

        self._stop_event.clear()
        self._sweep_task = asyncio.create_task(
            self._sweep_loop(), name="RconSupervisorSweep"
        )

    async def stop(self) -> None:
        """停止巡检并断开所有连接。"""
        self._stop_event.set()

        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            finally:
                self._sweep_task = None

        clients, self._clients = self._clients, {}
        for server_id, client in clients.items():
            try:
                await client.disconnect()
            except Exception as e:
                logger.warning(f"断开服务器 {server_id} 时异常: {e}")

        if clients:
            self._emit_status()
        logger.info("Supervisor 已停止")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def _sweep_loop(self) -> None:
        """[Internal] 周期巡检循环。"""
        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self.settings.sweep_interval
                    )
                except asyncio.TimeoutError:
                    self.refresh_status()
        except asyncio.CancelledError:
            logger.debug("巡检任务被取消")
            raise

    # =========================================================================
    # 内部实现
    # =========================================================================

    def _lock_for(self, server_id: str) -> asyncio.Lock:
        lock = self._locks.get(server_id)
        if lock is None:
            lock = self._locks[server_id] = asyncio.Lock()
        return lock

    def _alive(self, server_id: str) -> bool:
        client = self._clients.get(server_id)
        return client is not None and client.is_alive

    def _check_alive(self, server_id: str, emit: bool) -> bool:
        client = self._clients.get(server_id)
        if client is None:
            return False
        if client.is_alive:
            return True

        logger.warning(f"服务器 {server_id} 连接已失效，移除")
        del self._clients[server_id]
        client.close()
        if emit:
            self._emit_status()
        return False

    def _on_client_closed(self, server_id: str, client: RconClient) -> None:
        # 仅处理仍在注册表中的同一个客户端 (主动断开时条目已被先行移除)
        if self._clients.get(server_id) is not client:
            return
        logger.warning(f"服务器 {server_id} 连接被关闭，移除")
        del self._clients[server_id]
        self._emit_status()

    def _emit_status(self) -> None:
        """计算状态快照并异步触发所有回调。"""
        snapshot = self.status_snapshot()
        online = sum(1 for s in snapshot if s.connected)
        logger.info(f"连接状态变更: {online}/{len(snapshot)} 在线")

        for callback in self._listeners:
            try:
                if inspect.iscoroutinefunction(callback):
                    asyncio.create_task(callback(snapshot))  # type: ignore
                else:
                    loop = asyncio.get_running_loop()
                    loop.call_soon(callback, snapshot)
            except RuntimeError:
                # 应对 loop 尚未运行或已关闭的边缘情况
                pass
            except Exception as e:
                logger.error(f"回调执行异常: {e}")
