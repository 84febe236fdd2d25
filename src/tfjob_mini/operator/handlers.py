"""Operator事件处理器

该模块把Kubernetes事件接入TFJob生命周期核心，包括：
1. TFJob创建时接纳任务
2. Pod状态变化时投递副本状态上报
3. TFJob删除时退役任务
4. 任务状态变化时回写status子资源和状态存储
"""

import asyncio
import logging
from typing import Dict, Optional, Tuple

import kopf
from pydantic import ValidationError

from ..config import config
from ..core import InvalidSpecError, JobAlreadyExistsError, JobController, JobNotFoundError
from ..db import save_status
from ..models import TFJobSpec, TFJobStatus
from .utils import (
    ResourceNotFoundError,
    observation_from_pod,
    patch_tfjob_status,
)

# 配置日志
logger = logging.getLogger(__name__)

API_CONFIG = config.get_api_config()
LABELS = config.get_label_config()

# runtimeID -> (namespace, name)
_job_refs: Dict[str, Tuple[str, str]] = {}


def _persist(runtime_id: str, ref: Optional[Tuple[str, str]], status: Dict) -> None:
    namespace, name = ref if ref else (None, None)
    if config.get_db_config().get('enabled'):
        save_status(runtime_id, status, namespace=namespace, name=name)
    if ref is None:
        return
    try:
        patch_tfjob_status(name, namespace, status)
    except ResourceNotFoundError:
        logger.warning(f"TFJob {namespace}/{name} no longer exists, status not written")


async def persist_status(runtime_id: str, status: TFJobStatus) -> None:
    """状态变化回调：记录到状态存储并回写TFJob的status子资源

    所有状态(包括接纳时的初始状态)都只经由此回调写出，写入顺序与任务状态更新顺序一致。
    """
    await asyncio.to_thread(_persist, runtime_id, _job_refs.get(runtime_id), status.to_dict())


controller = JobController(
    on_status_changed=persist_status,
    tolerated_failures=config.get_tolerated_failures(),
)


# ===================== TFJob 处理器 =====================

@kopf.on.create(API_CONFIG['group'], API_CONFIG['version'], API_CONFIG['plural'])
async def create_tfjob(spec, name, namespace, logger, **kwargs):
    """处理TFJob创建事件"""
    try:
        job_spec = TFJobSpec.model_validate(dict(spec))
    except ValidationError as e:
        raise kopf.PermanentError(f"Invalid TFJob spec: {e}")

    runtime_id = job_spec.runtime_id
    _job_refs[runtime_id] = (namespace, name)
    try:
        await controller.admit_job(job_spec)
    except InvalidSpecError as e:
        _job_refs.pop(runtime_id, None)
        logger.error(f"Rejected TFJob {namespace}/{name}: {e}")
        raise kopf.PermanentError(str(e))
    except JobAlreadyExistsError:
        logger.warning(f"TFJob {runtime_id} already admitted, skipping")
        return

    logger.info(f"Admitted TFJob {namespace}/{name} ({runtime_id})")


@kopf.on.delete(API_CONFIG['group'], API_CONFIG['version'], API_CONFIG['plural'])
async def delete_tfjob(spec, name, namespace, logger, **kwargs):
    """处理TFJob删除事件"""
    runtime_id = spec.get('runtimeID', '')
    try:
        await controller.retire(runtime_id)
    except JobNotFoundError:
        logger.info(f"TFJob {namespace}/{name} was not tracked, nothing to retire")
    finally:
        _job_refs.pop(runtime_id, None)


# ===================== Pod 处理器 =====================

@kopf.on.event('', 'v1', 'pods', labels={LABELS['runtime_id']: kopf.PRESENT})
async def pod_event(event, body, logger, **kwargs):
    """Pod状态变化时投递副本状态上报"""
    if event.get('type') == 'DELETED':
        return
    observation = observation_from_pod(body)
    if observation is None:
        return
    runtime_id, replica_type, index, state = observation
    controller.apply_replica_observation(runtime_id, replica_type, index, state)


@kopf.on.cleanup()
async def shutdown(logger, **kwargs):
    """Operator退出时停止所有任务"""
    await controller.shutdown()
    logger.info("All TFJob actors stopped")

