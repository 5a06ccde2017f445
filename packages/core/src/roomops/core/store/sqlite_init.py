"""SQLite 数据库初始化

PRAGMA 配置 + 三张表 DDL + 索引创建。
准入约束由部分唯一索引在存储层强制执行（跨进程同样生效）：
- idx_tasks_open_room_date: 独占房间同日仅一个开放任务
- idx_tasks_running_worker: 每个员工仅一个 RUNNING 任务
使用 aiosqlite 异步操作。
"""

import aiosqlite

# tasks 表 DDL（CHECK 约束对应模型不变量）
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id             TEXT PRIMARY KEY,
    room_id             TEXT NOT NULL,
    room_group          TEXT NOT NULL DEFAULT 'OTHER',
    room_exclusive      INTEGER NOT NULL DEFAULT 1,
    scheduled_date      TEXT NOT NULL,
    kind                TEXT NOT NULL,
    capacity_code       TEXT NOT NULL,
    time_limit_minutes  INTEGER,
    assigned_worker_id  TEXT,
    status              TEXT NOT NULL DEFAULT 'QUEUED',
    started_at          TEXT,
    pause_started_at    TEXT,
    last_pause_ended_at TEXT,
    total_pause_minutes INTEGER NOT NULL DEFAULT 0,
    finished_at         TEXT,
    actual_minutes      INTEGER,
    difference_minutes  INTEGER,
    issue_flag          INTEGER NOT NULL DEFAULT 0,
    issue_ref           TEXT,
    front_desk_notes    TEXT,
    worker_notes        TEXT,
    version             INTEGER NOT NULL DEFAULT 1,
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL,
    idempotency_key     TEXT,

    CHECK (total_pause_minutes >= 0),
    CHECK ((status = 'PAUSED') = (pause_started_at IS NOT NULL)),
    CHECK ((status = 'FINISHED') = (actual_minutes IS NOT NULL))
);
"""

_TASKS_INDEXES = [
    # 独占房间：同一 (room_id, scheduled_date) 仅一个未完成任务
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_open_room_date "
        "ON tasks(room_id, scheduled_date) "
        "WHERE status <> 'FINISHED' AND room_exclusive = 1;"
    ),
    # 每个员工同一时刻仅一个 RUNNING 任务
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_running_worker "
        "ON tasks(assigned_worker_id) "
        "WHERE status = 'RUNNING' AND assigned_worker_id IS NOT NULL;"
    ),
    # 创建幂等键唯一约束（仅对非 NULL 值生效）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_idempotency_key "
        "ON tasks(idempotency_key) WHERE idempotency_key IS NOT NULL;"
    ),
    "CREATE INDEX IF NOT EXISTS idx_tasks_date ON tasks(scheduled_date);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_worker ON tasks(assigned_worker_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_room_date ON tasks(room_id, scheduled_date);",
]

# task_changes 表 DDL（append-only 快照日志）
_CHANGES_DDL = """
CREATE TABLE IF NOT EXISTS task_changes (
    change_id   TEXT PRIMARY KEY,
    task_id     TEXT NOT NULL,
    version     INTEGER NOT NULL,
    ts          TEXT NOT NULL,
    operation   TEXT NOT NULL,
    actor_id    TEXT NOT NULL,
    actor_type  TEXT NOT NULL,
    snapshot    TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_CHANGES_INDEXES = [
    # 任务内版本号唯一约束（确保 version 严格单调递增）
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_task_changes_version ON task_changes(task_id, version);",
]

# time_limits 表 DDL（外部配置：房间分组 + 清扫类型 + 入住配置 -> 分钟）
_TIME_LIMITS_DDL = """
CREATE TABLE IF NOT EXISTS time_limits (
    room_group     TEXT NOT NULL,
    kind           TEXT NOT NULL,
    capacity_code  TEXT NOT NULL,
    minutes        INTEGER NOT NULL CHECK (minutes >= 0),

    PRIMARY KEY (room_group, kind, capacity_code)
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    await conn.execute(_TASKS_DDL)
    await conn.execute(_CHANGES_DDL)
    await conn.execute(_TIME_LIMITS_DDL)

    # 创建索引
    for idx_sql in _TASKS_INDEXES + _CHANGES_INDEXES:
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
