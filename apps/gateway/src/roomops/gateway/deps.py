"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store / Service 实例

实例通过 app.state 管理，在 lifespan 中初始化/清理。
TaskService 必须是进程内单例：task 级别锁保存在实例上。
"""

from fastapi import Header, Request
from roomops.core.models import Actor, ActorType
from roomops.core.store import StoreGroup

from .services.change_hub import ChangeHub
from .services.task_service import TaskService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_change_hub(request: Request) -> ChangeHub:
    """从 app.state 获取 ChangeHub 实例"""
    return request.app.state.change_hub


def get_task_service(request: Request) -> TaskService:
    """从 app.state 获取 TaskService 实例"""
    return request.app.state.task_service


def get_actor(
    x_actor_id: str = Header(min_length=1, description="调用方标识（已由外部鉴权）"),
    x_actor_type: ActorType = Header(default=ActorType.WORKER, description="调用方类型"),
) -> Actor:
    """从请求头构造调用方身份，变更类请求必须携带"""
    return Actor(actor_id=x_actor_id, actor_type=x_actor_type)
