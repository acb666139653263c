#!/usr/bin/env python
# run.py
# 功能：加载本地 config.toml，连接全部服务器，并向所有服务器发送一条命令
# 用法：python run.py "listplayers" [config.toml]

import asyncio
import logging
import sys
from pathlib import Path

# --- 0. 环境准备 ---
PROJECT_ROOT = Path(__file__).resolve().parent
SRC_PATH = PROJECT_ROOT / "src"

if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

try:
    from rcon_core import (
        ConfigError,
        ConnectionSupervisor,
        ServerStatus,
        __version__,
        load_servers_from_toml,
        load_settings_from_toml,
    )
except ImportError as e:
    print(f"❌ 无法导入 rcon_core: {e}")
    sys.exit(1)

# --- 1. 配置日志 ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("RconRunner")


# --- 2. 状态回调 ---
def on_status_change(servers: list[ServerStatus]) -> None:
    for s in servers:
        icon = "✅" if s.connected else "🔌"
        print(f">>> [UI Callback] {icon} {s.name} ({s.host}:{s.port})")


# --- 3. 主程序 ---
async def main(command: str, config_path: Path) -> int:
    print("==========================================")
    print(f"   RCON-Core v{__version__} Runner")
    print("==========================================")

    try:
        settings = load_settings_from_toml(config_path)
        records = load_servers_from_toml(config_path)
    except ConfigError as ce:
        logger.error(f"🔧 配置错误: {ce}")
        return 1

    if not records:
        logger.error("配置文件中没有 [[servers]] 条目")
        return 1

    async with ConnectionSupervisor(settings, status_callback=on_status_change) as sup:
        for record in records:
            result = await sup.connect_server(record)
            if not result.success:
                logger.warning(f"⚠️ {record.name}: {result.message}")

        outcome = await sup.send_to_all(command)
        logger.info(outcome.message)
        for r in outcome.results:
            text = r.response if r.success else r.message
            print(f"[{'OK' if r.success else 'FAIL'}] {r.server_name}: {text}")

    return 0 if outcome.success else 2


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(f"用法: {sys.argv[0]} <command> [config.toml]")
        sys.exit(1)

    path = Path(sys.argv[2]) if len(sys.argv) > 2 else PROJECT_ROOT / "config.toml"
    try:
        sys.exit(asyncio.run(main(sys.argv[1], path)))
    except KeyboardInterrupt:
        print("\n🛑 收到中断信号，已退出。")
