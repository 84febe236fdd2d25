"""Operator工具函数"""

import time
import logging
from functools import wraps
from typing import Any, Dict, Mapping, Optional, Tuple

from kubernetes import client
from kubernetes.client.rest import ApiException

from ..config import config
from ..core.errors import TFJobError
from ..models import TFReplicaState, TFReplicaType

# 配置日志
logger = logging.getLogger(__name__)

# Pod phase到副本状态的映射，其余phase视为Unknown
POD_PHASE_STATES = {
    'Pending': TFReplicaState.WAITING,
    'Running': TFReplicaState.RUNNING,
    'Succeeded': TFReplicaState.SUCCEEDED,
    'Failed': TFReplicaState.FAILED,
}


class ResourceConflictError(TFJobError):
    """资源冲突错误"""
    pass


class ResourceNotFoundError(TFJobError):
    """资源不存在错误"""
    pass


def retry_on_error(operation='default'):
    """重试装饰器

    Args:
        operation: 操作类型，用于获取对应的重试配置

    重试策略：
    1. 资源冲突(409): 按配置重试，最终抛出ResourceConflictError
    2. 资源不存在(404): 直接抛出ResourceNotFoundError
    3. 其他API异常: 直接抛出
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            retry_config = config.get_retry_config(operation)
            max_retries = retry_config.get('max_retries', 3)
            delay = retry_config.get('delay', 1)
            last_exception = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except ApiException as e:
                    last_exception = e
                    if e.status == 404:
                        raise ResourceNotFoundError(f"Resource not found: {e.reason}") from e
                    if e.status != 409:
                        raise
                    logger.warning(
                        f"Conflict on [{operation}], retry {attempt + 1}/{max_retries}"
                    )
                    time.sleep(delay * (attempt + 1))
            raise ResourceConflictError(
                f"Conflict persisted after {max_retries} retries: {last_exception}"
            )
        return wrapper
    return decorator


# ===================== Pod 状态转换 =====================

def replica_state_from_pod(pod: Mapping[str, Any]) -> TFReplicaState:
    """根据Pod phase得到副本状态"""
    phase = (pod.get('status') or {}).get('phase')
    return POD_PHASE_STATES.get(phase, TFReplicaState.UNKNOWN)


def observation_from_pod(pod: Mapping[str, Any]) -> Optional[Tuple[str, TFReplicaType, int, TFReplicaState]]:
    """从Pod标签和状态中解析一次副本状态上报

    Returns:
        (runtimeID, 副本类型, 序号, 状态)，标签缺失或格式错误时返回None
    """
    label_keys = config.get_label_config()
    labels = (pod.get('metadata') or {}).get('labels') or {}
    name = (pod.get('metadata') or {}).get('name')

    runtime_id = labels.get(label_keys['runtime_id'])
    raw_type = labels.get(label_keys['replica_type'])
    raw_index = labels.get(label_keys['replica_index'])
    if not runtime_id or raw_type is None or raw_index is None:
        logger.debug(f"Pod {name} is missing TFJob labels, ignored")
        return None

    replica_type = _parse_replica_type(raw_type)
    if replica_type is None:
        logger.warning(f"Pod {name} has unknown replica type {raw_type!r}, ignored")
        return None
    try:
        index = int(raw_index)
    except ValueError:
        logger.warning(f"Pod {name} has invalid replica index {raw_index!r}, ignored")
        return None

    return runtime_id, replica_type, index, replica_state_from_pod(pod)


def _parse_replica_type(value: str) -> Optional[TFReplicaType]:
    for replica_type in TFReplicaType:
        if replica_type.value.lower() == value.lower():
            return replica_type
    return None


# ===================== TFJob 状态 =====================

@retry_on_error(operation='patch')
def patch_tfjob_status(name: str, namespace: str, status: Dict[str, Any]) -> Dict[str, Any]:
    """更新TFJob的status子资源"""
    api_config = config.get_api_config()
    api = client.CustomObjectsApi()
    return api.patch_namespaced_custom_object_status(
        group=api_config['group'],
        version=api_config['version'],
        namespace=namespace,
        plural=api_config['plural'],
        name=name,
        body={'status': status}
    )
