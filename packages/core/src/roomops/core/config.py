"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、SSE 心跳、订阅队列大小、问题上报策略、共享房间列表等可配置项。
"""

import os
from pathlib import Path

ISSUE_POLICY_KEEP_STATUS = "keep_status"
ISSUE_POLICY_FORCE_REPAIR = "force_repair"


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("ROOMOPS_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "ROOMOPS_DB_PATH",
        str(_get_base_dir() / "sqlite" / "roomops.db"),
    )


def get_issue_policy() -> str:
    """上报问题时是否强制进入 NEEDS_REPAIR

    - "keep_status" (默认): 仅记录 issue_flag / issue_ref
    - "force_repair": 同时将任务置为 NEEDS_REPAIR
    """
    policy = os.environ.get("ROOMOPS_ISSUE_POLICY", ISSUE_POLICY_KEEP_STATUS).lower()
    if policy not in (ISSUE_POLICY_KEEP_STATUS, ISSUE_POLICY_FORCE_REPAIR):
        raise ValueError(f"Unknown ROOMOPS_ISSUE_POLICY: {policy}")
    return policy


def get_shared_rooms() -> frozenset[str]:
    """允许同日多个开放任务的房间（洗衣房、早餐服务等）"""
    raw = os.environ.get("ROOMOPS_SHARED_ROOMS", "")
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


# SSE 心跳间隔（秒）
SSE_HEARTBEAT_INTERVAL: int = int(
    os.environ.get("ROOMOPS_SSE_HEARTBEAT_INTERVAL", "15")
)

# 每个订阅者的队列长度，溢出后关闭该订阅，由客户端重连并全量拉取
CHANGE_QUEUE_SIZE: int = int(os.environ.get("ROOMOPS_CHANGE_QUEUE_SIZE", "100"))

# 版本冲突（CAS 失败）时的最大重试次数
CAS_MAX_RETRIES: int = int(os.environ.get("ROOMOPS_CAS_RETRIES", "3"))

# 备注最大长度（前台/员工各自独立）
NOTE_MAX_LENGTH: int = 2000

# 外部问题记录引用的最大长度
ISSUE_REF_MAX_LENGTH: int = 200
