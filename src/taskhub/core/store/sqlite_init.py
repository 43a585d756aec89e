"""SQLite 数据库初始化

PRAGMA 配置 + 两张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# completed_tasks 表 DDL
# seq 记录首次插入顺序，upsert 更新时不变，保证 get_all 顺序稳定
_COMPLETED_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS completed_tasks (
    seq           INTEGER PRIMARY KEY AUTOINCREMENT,
    task_key      TEXT NOT NULL UNIQUE,
    source        TEXT NOT NULL,
    original_id   TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL,
    completed_at  TEXT NOT NULL,
    payload       TEXT NOT NULL DEFAULT '{}'
);
"""

_COMPLETED_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_completed_tasks_source ON completed_tasks(source);",
    (
        "CREATE INDEX IF NOT EXISTS idx_completed_tasks_completed_at "
        "ON completed_tasks(completed_at DESC);"
    ),
]

# task_priorities 表 DDL
_TASK_PRIORITIES_DDL = """
CREATE TABLE IF NOT EXISTS task_priorities (
    task_key     TEXT PRIMARY KEY,
    source       TEXT NOT NULL,
    original_id  TEXT NOT NULL,
    priority     TEXT NOT NULL,
    updated_at   TEXT NOT NULL
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA synchronous = FULL;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_COMPLETED_TASKS_DDL)
    await conn.execute(_TASK_PRIORITIES_DDL)

    # 创建索引
    for idx_sql in _COMPLETED_TASKS_INDEXES:
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
