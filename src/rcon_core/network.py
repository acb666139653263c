# src/rcon_core/network.py
"""
RCON 核心库 - 网络模块 (Network) [Asyncio Edition]

封装 TCP 连接的创建、写入、空闲超时与关闭逻辑。
该模块屏蔽了底层 Transport 的复杂性，向客户端层提供纯粹的 bytes 收发接口。
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Optional, cast

from .exceptions import (
    ConnectRefusedError,
    ConnectTimeoutError,
    NetworkError,
    SocketError,
)

logger = logging.getLogger(__name__)

DataCallback = Callable[[bytes], None]
LostCallback = Callable[[Optional[Exception]], None]


class RconTcpProtocol(asyncio.Protocol):
    """
    asyncio TCP 协议适配器。
    将 data_received / connection_lost 回调转发给上层，并维护空闲超时定时器。
    """

    def __init__(
        self,
        on_data: DataCallback,
        on_lost: LostCallback,
        idle_timeout: float,
    ):
        self.transport: Optional[asyncio.Transport] = None
        self._on_data = on_data
        self._on_lost = on_lost
        self._idle_timeout = idle_timeout
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self.idle_expired = False

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = cast(asyncio.Transport, transport)
        self.reset_idle_timer()
        logger.debug("TCP Transport 已建立")

    def data_received(self, data: bytes) -> None:
        # 每收到一个字节都重置空闲计时
        self.reset_idle_timer()
        self._on_data(data)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._cancel_idle_timer()
        self.transport = None
        if exc:
            logger.warning(f"TCP 连接断开: {exc}")
        elif self.idle_expired:
            exc = NetworkError(f"连接空闲超时 ({self._idle_timeout}s)")
        else:
            logger.debug("TCP 连接已关闭")
        self._on_lost(exc)

    def reset_idle_timer(self) -> None:
        self._cancel_idle_timer()
        if self.transport is None:
            return
        loop = asyncio.get_running_loop()
        self._idle_handle = loop.call_later(self._idle_timeout, self._on_idle)

    def _cancel_idle_timer(self) -> None:
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None

    def _on_idle(self) -> None:
        self._idle_handle = None
        if self.transport is not None:
            logger.warning(f"连接空闲超过 {self._idle_timeout}s，主动断开")
            self.idle_expired = True
            self.transport.abort()


class NetworkClient:
    """
    封装 asyncio TCP 操作的客户端。一个实例只对应一个远端。
    """

    def __init__(
        self,
        host: str,
        port: int,
        on_data: DataCallback,
        on_lost: LostCallback,
        idle_timeout: float = 30.0,
    ):
        self.host = host
        self.port = port
        self.idle_timeout = idle_timeout
        self._on_data = on_data
        self._on_lost = on_lost
        self.protocol: Optional[RconTcpProtocol] = None
        self.transport: Optional[asyncio.Transport] = None

    @property
    def is_open(self) -> bool:
        """Transport 是否存在且未处于关闭流程。"""
        return self.transport is not None and not self.transport.is_closing()

    async def connect(self, timeout: float) -> None:
        """
        建立 TCP 连接。

        Raises:
            ConnectTimeoutError: 建连超时。
            ConnectRefusedError: 远端拒绝连接。
            SocketError: 其他 Socket 错误 (如 DNS 解析失败)。
        """
        loop = asyncio.get_running_loop()
        target = f"{self.host}:{self.port}"

        try:
            transport, protocol = await asyncio.wait_for(
                loop.create_connection(
                    lambda: RconTcpProtocol(
                        self._on_data, self._on_lost, self.idle_timeout
                    ),
                    self.host,
                    self.port,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise ConnectTimeoutError(f"连接 {target} 超时 ({timeout}s)") from None
        except ConnectionRefusedError as e:
            raise ConnectRefusedError(f"连接 {target} 被拒绝: {e}") from e
        except OSError as e:
            raise SocketError(f"连接 {target} 失败: {e}") from e

        self.transport = cast(asyncio.Transport, transport)
        self.protocol = cast(RconTcpProtocol, protocol)
        logger.debug(f"TCP 连接成功: {target}")

    def send(self, data: bytes) -> None:
        """
        写入数据。write 是同步非阻塞的，数据由事件循环异步刷出。

        Raises:
            SocketError: Transport 不可用或写入失败。
        """
        if not self.is_open:
            raise SocketError("Transport 已关闭")

        assert self.transport is not None

        try:
            self.transport.write(data)
        except Exception as e:
            raise SocketError(f"发送失败: {e}") from e

    def reset_idle_timer(self) -> None:
        if self.protocol is not None:
            self.protocol.reset_idle_timer()

    def close(self) -> None:
        """关闭 Transport"""
        if self.transport:
            self.transport.close()
            self.transport = None
            logger.debug("TCP Transport 已关闭")
