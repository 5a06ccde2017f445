"""CLI 入口模块 -- python -m roomops.core <command>

支持的命令：
  init-db                                   创建数据库表和索引
  set-limit GROUP KIND CAPACITY MINUTES     写入时间限额配置
  list-limits                               列出时间限额配置
  rebuild-tasks                             从 task_changes 表重建 tasks 表
  audit                                     检查快照、变更日志和准入规则的一致性
"""

import asyncio
import sys

from .config import get_db_path
from .models.enums import CapacityCode, RoomGroup, TaskKind

_USAGE = """用法: python -m roomops.core <command>
命令:
  init-db                                   创建数据库表和索引
  set-limit GROUP KIND CAPACITY MINUTES     写入时间限额配置
  list-limits                               列出时间限额配置
  rebuild-tasks                             从 task_changes 表重建 tasks 表
  audit                                     检查快照、变更日志和准入规则的一致性"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]
    args = sys.argv[2:]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "set-limit":
        if len(args) != 4:
            print("用法: python -m roomops.core set-limit GROUP KIND CAPACITY MINUTES")
            sys.exit(1)
        try:
            room_group = RoomGroup(args[0])
            kind = TaskKind(args[1])
            capacity_code = CapacityCode(args[2])
            minutes = int(args[3])
        except ValueError as e:
            print(f"参数错误: {e}")
            sys.exit(1)
        if minutes < 0:
            print("参数错误: MINUTES 不能为负数")
            sys.exit(1)
        asyncio.run(set_limit(room_group, kind, capacity_code, minutes))
    elif command == "list-limits":
        asyncio.run(list_limits())
    elif command == "rebuild-tasks":
        asyncio.run(rebuild_tasks())
    elif command == "audit":
        ok = asyncio.run(audit())
        if not ok:
            sys.exit(2)
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, set-limit, list-limits, rebuild-tasks, audit")
        sys.exit(1)


async def init_database() -> None:
    """创建数据库（表和索引已存在时不做修改）"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)
    await store_group.conn.close()
    print("初始化完成")


async def set_limit(
    room_group: RoomGroup,
    kind: TaskKind,
    capacity_code: CapacityCode,
    minutes: int,
) -> None:
    """写入时间限额（只影响之后创建或编辑的任务）"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        await store_group.limit_store.set_time_limit(
            room_group, kind, capacity_code, minutes
        )
        print(f"{room_group} / {kind} / {capacity_code} -> {minutes} 分钟")
    finally:
        await store_group.conn.close()


async def list_limits() -> None:
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        limits = await store_group.limit_store.list_time_limits()
        if not limits:
            print("尚未配置时间限额")
        for room_group, kind, capacity_code, minutes in limits:
            print(f"{room_group}\t{kind}\t{capacity_code}\t{minutes}")
    finally:
        await store_group.conn.close()


async def rebuild_tasks() -> None:
    """执行 tasks 表重建"""
    from .projection import rebuild_tasks as rebuild
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    print("开始重建 tasks 表...")

    store_group = await create_store_group(db_path)

    try:
        change_count = await rebuild(
            store_group.conn,
            store_group.change_store,
            store_group.task_store,
        )
        print(f"重建完成，处理 {change_count} 条变更")
    finally:
        await store_group.conn.close()


async def audit() -> bool:
    """执行一致性审计

    Returns:
        True 如果没有发现问题
    """
    from .projection import audit_tasks
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        report = await audit_tasks(store_group.change_store, store_group.task_store)
    finally:
        await store_group.conn.close()

    print(f"任务数: {report.task_count}，变更数: {report.change_count}")
    if report.ok:
        print("未发现问题")
        return True
    for problem in report.problems:
        print(f"  - {problem}")
    print(f"发现 {len(report.problems)} 个问题")
    return False


if __name__ == "__main__":
    main()
