"""
RCON 协议常量表 (Constants)

仅定义协议的结构性常量（如包类型、包头长度）。
不包含任何策略值（如超时、保活间隔），这些应由 Settings 注入。
"""

import struct


# =========================================================================
# 包类型 (Packet Types)
# =========================================================================
class PacketType:
    """协议包头部的 Type 字段定义。

    注意：请求与响应的类型码并不对称，
    EXEC 请求与 AUTH 响应共用 2，必须结合请求种类区分。
    """

    RESPONSE_VALUE = 0  # 命令响应 (Server -> Client)
    EXEC_COMMAND = 2  # 执行命令 (Client -> Server)
    AUTH_RESPONSE = 2  # 认证结果 (Server -> Client)
    AUTH = 3  # 认证请求 (Client -> Server)


# 认证失败时服务器回送的 request_id
AUTH_FAILED_ID = -1

# =========================================================================
# 结构定义 (Structure)
# =========================================================================
# size 字段: <I (不计入 size 本身)
SIZE_FIELD = struct.Struct("<I")
# request_id (<i, 有符号) + type (<I)
HEADER = struct.Struct("<iI")

SIZE_FIELD_LEN = SIZE_FIELD.size  # 4
HEADER_LEN = HEADER.size  # 8
TERMINATOR = b"\x00\x00"

# size 的最小值: request_id + type + 两字节结束符
MIN_PACKET_SIZE = HEADER_LEN + len(TERMINATOR)  # 10

# request_id 取值上限 (int32)
MAX_REQUEST_ID = 0x7FFFFFFF
