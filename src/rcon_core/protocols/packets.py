# File: src/rcon_core/protocols/packets.py
"""
RCON 协议封包构建与流式解析 (Packets)

负责将 Python 数据结构转换为符合协议规范的二进制字节流 (bytes)，
以及把 TCP 字节流切分还原为数据包。
本模块不包含任何 socket 操作，解析完全由已缓冲的字节决定，永不阻塞。
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from ..exceptions import ProtocolError
from . import constants
from .constants import PacketType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Packet:
    """RCON 数据包 (不可变)。

    Attributes:
        request_id: 请求标识 (int32)。认证失败响应为 -1。
        type: 包类型，见 PacketType。
        payload: 文本负载。
    """

    request_id: int
    type: int
    payload: str = ""

    def encode(self, encoding: str = "utf-8") -> bytes:
        """序列化为线上格式。

        结构: Size(<I) + RequestID(<i) + Type(<I) + Payload + 0x00 0x00
        """
        body = self.payload.encode(encoding)
        size = constants.MIN_PACKET_SIZE + len(body)
        return (
            constants.SIZE_FIELD.pack(size)
            + constants.HEADER.pack(self.request_id, self.type)
            + body
            + constants.TERMINATOR
        )


# =========================================================================
# 构建 (Build)
# =========================================================================


def build_auth_packet(request_id: int, password: str) -> Packet:
    """构建认证请求包 (Type 3)。"""
    return Packet(request_id, PacketType.AUTH, password)


def build_command_packet(request_id: int, command: str) -> Packet:
    """构建命令请求包 (Type 2)。"""
    return Packet(request_id, PacketType.EXEC_COMMAND, command)


# =========================================================================
# 解析 (Parse)
# =========================================================================


def decode_packet(data: bytes, encoding: str = "utf-8") -> Packet:
    """解析一个完整的数据包 (含 size 字段)。

    Args:
        data: 恰好一个数据包的字节。

    Returns:
        Packet: 解析后的数据包。

    Raises:
        ProtocolError: 长度与 size 字段不符或 size 非法。
    """
    if len(data) < constants.SIZE_FIELD_LEN:
        raise ProtocolError(f"数据包过短: {len(data)} 字节")

    (size,) = constants.SIZE_FIELD.unpack_from(data, 0)
    if size < constants.MIN_PACKET_SIZE:
        raise ProtocolError(f"非法的包长度字段: {size}")
    if len(data) != constants.SIZE_FIELD_LEN + size:
        raise ProtocolError(
            f"包长度不匹配: size={size}, 实际={len(data) - constants.SIZE_FIELD_LEN}"
        )

    request_id, packet_type = constants.HEADER.unpack_from(
        data, constants.SIZE_FIELD_LEN
    )
    start = constants.SIZE_FIELD_LEN + constants.HEADER_LEN
    end = len(data) - len(constants.TERMINATOR)

    if data[end:] != constants.TERMINATOR:
        logger.debug(f"数据包 {request_id} 结束符异常: {data[end:].hex()}")

    payload = data[start:end].decode(encoding, errors="replace")
    return Packet(request_id, packet_type, payload)


class PacketDecoder:
    """TCP 流式解码器。

    收到的字节追加到接收缓冲区，每次从头部切出完整的数据包；
    剩余不足一个包的字节保留到下一次 feed。
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        """缓冲区中尚未组成完整包的字节数。"""
        return len(self._buffer)

    def feed(self, data: bytes) -> list[Packet]:
        """追加字节并返回本次可以解析出的全部完整数据包。

        Raises:
            ProtocolError: 遇到非法的 size 字段 (流已无法继续同步)。
        """
        return list(self.iter_packets(data))

    def iter_packets(self, data: bytes) -> Iterator[Packet]:
        """追加字节并逐个产出完整数据包。

        非法 size 字段之前已完整到达的包会先被产出，随后才抛出 ProtocolError。
        """
        self._buffer.extend(data)

        while len(self._buffer) >= constants.SIZE_FIELD_LEN:
            (size,) = constants.SIZE_FIELD.unpack_from(self._buffer, 0)
            if size < constants.MIN_PACKET_SIZE:
                raise ProtocolError(f"非法的包长度字段: {size}")

            total = constants.SIZE_FIELD_LEN + size
            if len(self._buffer) < total:
                # 半包，等待后续数据
                break

            chunk = bytes(self._buffer[:total])
            del self._buffer[:total]
            yield decode_packet(chunk, self.encoding)

    def clear(self) -> None:
        self._buffer.clear()
