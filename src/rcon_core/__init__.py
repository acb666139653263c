# src/rcon_core/__init__.py
"""
RCON-Core v1.0.0
异步的 RCON 远程控制台协议客户端与多服务器连接监管库。
"""

# 暴露客户端与配置
from .client import RconClient
from .config import (
    RconSettings,
    ServerRecord,
    create_server_from_dict,
    create_settings_from_dict,
    load_servers_from_toml,
    load_settings_from_env,
    load_settings_from_toml,
)

# 暴露异常体系 (方便上层 try-except)
from .exceptions import (
    AuthError,
    AuthRejectedError,
    AuthTimeoutError,
    CommandTimeoutError,
    ConfigError,
    ConnectionClosedError,
    ConnectRefusedError,
    ConnectTimeoutError,
    ErrorKind,
    NetworkError,
    NotAuthenticatedError,
    ProtocolError,
    RconError,
    SocketError,
    UnknownServerError,
)
from .state import ClientState, ClientStatus, ServerStatus
from .supervisor import (
    BroadcastResult,
    ConnectionSupervisor,
    OperationResult,
    ServerOutcome,
)

__version__ = "1.0.0"

__all__ = [
    "RconClient",
    "ConnectionSupervisor",
    "RconSettings",
    "ServerRecord",
    "ClientState",
    "ClientStatus",
    "ServerStatus",
    "OperationResult",
    "ServerOutcome",
    "BroadcastResult",
    "create_settings_from_dict",
    "create_server_from_dict",
    "load_settings_from_env",
    "load_settings_from_toml",
    "load_servers_from_toml",
    "ErrorKind",
    "RconError",
    "ConfigError",
    "NetworkError",
    "ConnectTimeoutError",
    "ConnectRefusedError",
    "SocketError",
    "ProtocolError",
    "AuthError",
    "AuthRejectedError",
    "AuthTimeoutError",
    "NotAuthenticatedError",
    "CommandTimeoutError",
    "ConnectionClosedError",
    "UnknownServerError",
]
