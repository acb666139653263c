# File: src/rcon_core/exceptions.py
"""
RCON 核心库 - 异常体系 (Exceptions)

定义库内统一使用的异常类，以便上层应用（如 Web/CLI）能进行精细的错误处理。
每个异常都携带一个 ErrorKind，供 Supervisor 判断是否需要清理连接。
"""

from enum import Enum


class ErrorKind(Enum):
    """RCON 失败类型枚举。"""

    CONFIG = "config"
    CONNECT_TIMEOUT = "connect_timeout"
    CONNECT_REFUSED = "connect_refused"
    SOCKET_ERROR = "socket_error"
    PROTOCOL = "protocol"
    AUTH_REJECTED = "auth_rejected"
    AUTH_TIMEOUT = "auth_timeout"
    NOT_AUTHENTICATED = "not_authenticated"
    COMMAND_TIMEOUT = "command_timeout"
    CONNECTION_CLOSED = "connection_closed"
    UNKNOWN_SERVER = "unknown_server"

    @property
    def description(self) -> str:
        """获取失败类型对应的人类可读中文描述。"""
        _DESC_MAP = {
            "config": "配置错误",
            "connect_timeout": "连接超时",
            "connect_refused": "连接被拒绝 (请检查地址与端口)",
            "socket_error": "Socket 错误",
            "protocol": "协议数据异常",
            "auth_rejected": "认证失败 (RCON 密码错误)",
            "auth_timeout": "认证超时",
            "not_authenticated": "连接未就绪 (未连接或未认证)",
            "command_timeout": "命令响应超时",
            "connection_closed": "连接已关闭",
            "unknown_server": "服务器未连接",
        }
        return _DESC_MAP[self.value]

    @property
    def connection_lost(self) -> bool:
        """该类失败是否意味着底层连接已不可用。

        为 True 时 Supervisor 会将对应条目从注册表中移除。
        """
        return self in (
            ErrorKind.CONNECTION_CLOSED,
            ErrorKind.COMMAND_TIMEOUT,
            ErrorKind.NOT_AUTHENTICATED,
        )


class RconError(Exception):
    """RCON 核心库的所有内部异常的基类。

    上层应用可以通过捕获此异常来处理所有由 rcon-core 抛出的已知错误。
    """

    kind: ErrorKind = ErrorKind.SOCKET_ERROR

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.kind.description)


class ConfigError(RconError):
    """配置加载或校验失败。

    触发场景:
    1. 缺少必要字段 (如 host/password)。
    2. 字段格式错误 (如端口越界、超时非正数)。
    3. 找不到配置文件或环境变量。
    """

    kind = ErrorKind.CONFIG


class NetworkError(RconError):
    """网络层面的错误 (I/O 级别)。

    注意: 此类错误通常是暂时的，上层逻辑可以尝试重连。
    """

    kind = ErrorKind.SOCKET_ERROR


class ConnectTimeoutError(NetworkError):
    """TCP 连接建立超时。"""

    kind = ErrorKind.CONNECT_TIMEOUT


class ConnectRefusedError(NetworkError):
    """远端拒绝连接 (端口未监听或被防火墙拦截)。"""

    kind = ErrorKind.CONNECT_REFUSED


class SocketError(NetworkError):
    """Socket 读写失败。"""

    kind = ErrorKind.SOCKET_ERROR


class ProtocolError(RconError):
    """协议交互错误 (逻辑级别)。

    触发场景:
    1. 数据包 size 字段小于最小包长。
    2. 数据包结构损坏。
    """

    kind = ErrorKind.PROTOCOL


class AuthError(RconError):
    """认证阶段失败的基类。"""

    kind = ErrorKind.AUTH_REJECTED


class AuthRejectedError(AuthError):
    """认证被服务器拒绝 (收到 request_id 为 -1 的 AUTH_RESPONSE)。

    这通常意味着密码错误，需要用户干预，重试没有意义。
    """

    kind = ErrorKind.AUTH_REJECTED


class AuthTimeoutError(AuthError):
    """在限定时间内未收到认证响应。"""

    kind = ErrorKind.AUTH_TIMEOUT


class NotAuthenticatedError(RconError):
    """在未连接或未认证的客户端上发送命令。"""

    kind = ErrorKind.NOT_AUTHENTICATED


class CommandTimeoutError(RconError):
    """命令在限定时间内没有收到匹配的响应。"""

    kind = ErrorKind.COMMAND_TIMEOUT


class ConnectionClosedError(RconError):
    """请求尚未完成时连接已被关闭。"""

    kind = ErrorKind.CONNECTION_CLOSED


class UnknownServerError(RconError):
    """Supervisor 中不存在该服务器的连接。"""

    kind = ErrorKind.UNKNOWN_SERVER
