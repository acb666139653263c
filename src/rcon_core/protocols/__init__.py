# src/rcon_core/protocols/__init__.py
"""
RCON 协议层 (Protocol Layer)

本包负责协议数据包的纯粹构建 (Build) 与解析 (Parse)。

- 不包含任何 socket 操作或网络 I/O。
- 不包含任何状态管理 (State)。
- 不依赖于 client 或 network 层。
"""

from . import constants
from .constants import AUTH_FAILED_ID, PacketType
from .packets import (
    Packet,
    PacketDecoder,
    build_auth_packet,
    build_command_packet,
    decode_packet,
)

# 公共 API
__all__ = [
    "constants",
    "AUTH_FAILED_ID",
    "PacketType",
    "Packet",
    "PacketDecoder",
    "build_auth_packet",
    "build_command_packet",
    "decode_packet",
]
