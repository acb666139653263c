"""
RCON 核心库 - 配置模块

负责配置的加载、解析与强类型转换。
支持从 TOML 文件、环境变量 (含 .env 文件) 或字典中加载配置。
"""

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from .exceptions import ConfigError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RconSettings:
    """RconClient 与 ConnectionSupervisor 共用的运行参数。

    所有字段均为只读 (frozen=True)，确保配置在运行时不可变。

    Attributes:
        connect_timeout: TCP 建连超时 (秒)。
        idle_timeout: 空闲超时 (秒)。每收到一个字节或发出保活包时重置。
        auth_timeout: 认证响应超时 (秒)。
        command_timeout: 单条命令响应超时 (秒)。
        keep_alive_interval: 保活包发送间隔 (秒)。
        keep_alive_command: 保活包的命令内容 (应为无副作用的命令)。
        sweep_interval: Supervisor 存活巡检间隔 (秒)。
        encoding: 负载文本编码。
    """

    connect_timeout: float = 30.0
    idle_timeout: float = 30.0
    auth_timeout: float = 15.0
    command_timeout: float = 15.0
    keep_alive_interval: float = 20.0
    keep_alive_command: str = "ping"
    sweep_interval: float = 5.0
    encoding: str = "utf-8"


@dataclass(frozen=True)
class ServerRecord:
    """一台远程服务器的登记信息 (由上层 CRUD 持有，核心库不做持久化)。

    Attributes:
        id: 服务器逻辑标识。
        name: 显示名称。
        host: 服务器地址。
        port: RCON 端口。
        password: RCON 密码。
    """

    id: str
    name: str
    host: str
    port: int
    password: str

    def __repr__(self) -> str:
        """
        覆盖默认的 repr，隐藏密码字段，防止日志泄露敏感信息。
        """
        return (
            f"<{self.__class__.__name__} "
            f"id='{self.id}', name='{self.name}', "
            f"server={self.host}:{self.port}, "
            f"password='******'>"
        )


def _to_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"端口格式无效: {value}")
    if not 0 < port < 65536:
        raise ConfigError(f"端口超出范围: {port}")
    return port


def create_settings_from_dict(raw_data: dict[str, Any]) -> RconSettings:
    """通用工厂：将字典转换为强类型运行参数对象。

    未提供的字段使用 RconSettings 的默认值。

    Args:
        raw_data: 原始配置字典 (来自 TOML 或 Env)。

    Returns:
        RconSettings: 验证并转换后的配置对象。

    Raises:
        ConfigError: 当字段格式错误时抛出。
    """
    defaults = RconSettings()

    def _seconds(key: str) -> float:
        """获取正数秒值，缺失则使用默认值"""
        val = raw_data.get(key, getattr(defaults, key))
        try:
            seconds = float(val)
        except (TypeError, ValueError):
            raise ConfigError(f"时间格式无效 '{key}': {val}")
        if seconds <= 0:
            raise ConfigError(f"'{key}' 必须为正数: {val}")
        return seconds

    try:
        encoding = str(raw_data.get("encoding", defaults.encoding))
        "".encode(encoding)
    except LookupError:
        raise ConfigError(f"未知的文本编码: {raw_data.get('encoding')}")

    return RconSettings(
        connect_timeout=_seconds("connect_timeout"),
        idle_timeout=_seconds("idle_timeout"),
        auth_timeout=_seconds("auth_timeout"),
        command_timeout=_seconds("command_timeout"),
        keep_alive_interval=_seconds("keep_alive_interval"),
        keep_alive_command=str(
            raw_data.get("keep_alive_command", defaults.keep_alive_command)
        ),
        sweep_interval=_seconds("sweep_interval"),
        encoding=encoding,
    )


def create_server_from_dict(raw_data: dict[str, Any]) -> ServerRecord:
    """将字典转换为 ServerRecord。

    Raises:
        ConfigError: 当必要字段缺失或格式错误时抛出。
    """

    def _req(key: str) -> Any:
        """获取必要字段，缺失则报错"""
        if key not in raw_data or raw_data[key] in (None, ""):
            raise ConfigError(f"服务器配置缺失: 缺少必要字段 '{key}'")
        return raw_data[key]

    host = str(_req("host"))
    port = _to_port(_req("port"))
    server_id = str(raw_data.get("id") or f"{host}:{port}")

    return ServerRecord(
        id=server_id,
        name=str(raw_data.get("name") or server_id),
        host=host,
        port=port,
        password=str(_req("password")),
    )


def _read_toml(file_path: Path) -> dict[str, Any]:
    if not file_path.exists():
        raise ConfigError(f"配置文件未找到: {file_path}")

    try:
        with open(file_path, "rb") as f:
            return tomllib.load(f)
    except Exception as e:
        raise ConfigError(f"读取 TOML 失败: {e}") from e


def load_settings_from_toml(file_path: Path, profile: str = "default") -> RconSettings:
    """从 TOML 文件加载运行参数。

    支持多层级查找策略:
    1. [profile.xxx]: 优先查找指定的 profile 块。
    2. [rcon]: 通用配置块。
    3. Root: 兼容根目录直接配置。

    Args:
        file_path: TOML 文件路径。
        profile: 配置预设名。默认为 "default"。

    Raises:
        ConfigError: 文件读取失败或 Profile 不存在。
    """
    data = _read_toml(file_path)
    raw_config: dict[str, Any] = {}

    if "profile" in data:
        if profile not in data["profile"]:
            if profile != "default":
                raise ConfigError(f"未找到预设: [profile.{profile}]")
        else:
            raw_config = data["profile"][profile]
    elif "rcon" in data:
        if profile != "default":
            logger.warning(f"配置仅包含 [rcon] 节，忽略 profile='{profile}'。")
        raw_config = data["rcon"]
    else:
        raw_config = {k: v for k, v in data.items() if not isinstance(v, (dict, list))}

    return create_settings_from_dict(raw_config)


def load_servers_from_toml(file_path: Path) -> list[ServerRecord]:
    """从 TOML 文件的 [[servers]] 数组加载服务器列表。

    Raises:
        ConfigError: 文件读取失败、条目格式错误或 id 重复。
    """
    data = _read_toml(file_path)
    entries = data.get("servers", [])
    if not isinstance(entries, list):
        raise ConfigError("'servers' 必须是数组 ([[servers]])")

    records: list[ServerRecord] = []
    seen: set[str] = set()
    for entry in entries:
        record = create_server_from_dict(entry)
        if record.id in seen:
            raise ConfigError(f"服务器 id 重复: {record.id}")
        seen.add(record.id)
        records.append(record)

    logger.debug(f"已加载 {len(records)} 台服务器配置")
    return records


def load_settings_from_env(env_file: Path | None = None) -> RconSettings:
    """从环境变量加载运行参数 (Docker/Cloud Friendly)。

    自动读取所有以 `RCON_` 开头的环境变量，并映射到配置字段。
    例如: `RCON_COMMAND_TIMEOUT` -> `command_timeout`。
    若提供 env_file，会先将其加载到环境变量中 (不覆盖已有变量)。

    Raises:
        ConfigError: .env 文件不存在。
    """
    if env_file is not None:
        if not env_file.exists():
            raise ConfigError(f".env 文件未找到: {env_file}")
        load_dotenv(dotenv_path=env_file, override=False)

    env_map = {
        "connect_timeout": "CONNECT_TIMEOUT",
        "idle_timeout": "IDLE_TIMEOUT",
        "auth_timeout": "AUTH_TIMEOUT",
        "command_timeout": "COMMAND_TIMEOUT",
        "keep_alive_interval": "KEEP_ALIVE_INTERVAL",
        "keep_alive_command": "KEEP_ALIVE_COMMAND",
        "sweep_interval": "SWEEP_INTERVAL",
        "encoding": "ENCODING",
    }

    raw_data = {}
    for cfg_key, env_suffix in env_map.items():
        val = os.environ.get(f"RCON_{env_suffix}")
        if val is not None:
            raw_data[cfg_key] = val

    return create_settings_from_dict(raw_data)
