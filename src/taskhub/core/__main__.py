"""CLI 入口模块 -- python -m taskhub.core <command>

支持的命令：
  list-snapshots   列出本地完成快照
  prune-snapshots  按 TASKHUB_SNAPSHOT_RETENTION_DAYS 清理过期快照
"""

import asyncio
import sys

from .config import (
    get_db_path,
    get_json_store_path,
    get_snapshot_retention_days,
    get_store_backend,
)

_USAGE = """用法: python -m taskhub.core <command>
命令:
  list-snapshots   列出本地完成快照
  prune-snapshots  按保留策略清理过期快照"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "list-snapshots":
        asyncio.run(list_snapshots())
    elif command == "prune-snapshots":
        asyncio.run(prune_snapshots())
    else:
        print(f"未知命令: {command}")
        print("可用命令: list-snapshots, prune-snapshots")
        sys.exit(1)


async def _open_store_group():
    from .store import create_store_group

    backend = get_store_backend()
    db_path = get_db_path()
    print(f"存储介质: {backend}")
    print(f"数据库路径: {db_path}")
    if backend == "json":
        print(f"快照文件: {get_json_store_path()}")
    return await create_store_group(db_path, backend=backend, json_path=get_json_store_path())


async def list_snapshots() -> None:
    """打印全部完成快照"""
    store_group = await _open_store_group()
    try:
        snapshots = await store_group.completion_store.get_all()
        for snapshot in snapshots:
            completed_at = snapshot.completed_at.isoformat() if snapshot.completed_at else "-"
            print(
                f"{snapshot.source}::{snapshot.original_id}\t{completed_at}\t"
                f"{snapshot.title or ''}"
            )
        print(f"共 {len(snapshots)} 条快照")
    finally:
        await store_group.close()


async def prune_snapshots() -> None:
    """按保留策略清理快照"""
    from .store import policy_from_days

    days = get_snapshot_retention_days()
    policy = policy_from_days(days)
    print(f"保留策略: {policy!r}")

    store_group = await _open_store_group()
    try:
        removed = await store_group.completion_store.prune(policy)
        print(f"清理完成，删除 {len(removed)} 条快照")
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
