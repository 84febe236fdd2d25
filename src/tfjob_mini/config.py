"""配置管理模块

该模块负责加载和管理tfjob-mini的配置信息，包括：
1. 加载配置文件
2. 提供配置访问接口
3. 与默认配置合并
"""

import os
import copy
import yaml
import logging
from typing import Dict, Any, List, Optional

DEFAULT_CONFIG: Dict[str, Any] = {
    'retry': {
        'default': {
            'max_retries': 3,
            'delay': 1
        },
        'operations': {
            'patch': {'max_retries': 5, 'delay': 1},
            'get': {'max_retries': 3, 'delay': 1}
        }
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    },
    'api': {
        'group': 'kubeflow.caicloud.io',
        'version': 'v1alpha1',
        'plural': 'tfjobs'
    },
    'labels': {
        'runtime_id': 'kubeflow.caicloud.io/runtime-id',
        'replica_type': 'kubeflow.caicloud.io/tf-replica-type',
        'replica_index': 'kubeflow.caicloud.io/tf-replica-index'
    },
    'lifecycle': {
        # 进程失败不会导致任务失败的副本类型
        'tolerated_failures': []
    },
    'db': {
        'enabled': False,
        'filename': 'tfjobs.sqlite'
    }
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """配置管理类"""

    def __init__(self):
        self._logger = logging.getLogger(__name__)
        self._load_default_config()

    def load(self, config_path: Optional[str] = None) -> None:
        """加载配置文件

        Args:
            config_path: 配置文件路径，如果为None则使用默认路径

        Raises:
            yaml.YAMLError: 配置文件格式错误
        """
        if config_path is None:
            config_path = os.environ.get(
                'TFJOB_MINI_CONFIG',
                os.path.join(os.path.dirname(__file__), '../../config/config.yaml')
            )

        try:
            with open(config_path, 'r') as f:
                loaded = yaml.safe_load(f) or {}
            self._config = _merge(DEFAULT_CONFIG, loaded)
            self._logger.info(f"Loaded configuration from {config_path}")
        except FileNotFoundError:
            self._logger.warning(f"Config file not found: {config_path}, using default configuration")
            self._load_default_config()
        except yaml.YAMLError as e:
            self._logger.error(f"Failed to parse config file: {e}")
            raise

    def _load_default_config(self) -> None:
        """加载默认配置"""
        self._config = copy.deepcopy(DEFAULT_CONFIG)

    def get_retry_config(self, operation: str = None) -> Dict[str, Any]:
        """获取重试配置

        Args:
            operation: 操作类型，如果为None则返回默认配置

        Returns:
            重试配置字典
        """
        retry_config = self._config.get('retry', {})
        if operation:
            return retry_config.get('operations', {}).get(
                operation,
                retry_config.get('default', {})
            )
        return retry_config.get('default', {})

    def get_logging_config(self) -> Dict[str, Any]:
        """获取日志配置"""
        return self._config.get('logging', {})

    def get_api_config(self) -> Dict[str, Any]:
        """获取API配置"""
        return self._config.get('api', {})

    def get_label_config(self) -> Dict[str, str]:
        """获取Pod标签配置"""
        return self._config.get('labels', {})

    def get_tolerated_failures(self) -> List[str]:
        """获取容忍失败的副本类型"""
        return list(self._config.get('lifecycle', {}).get('tolerated_failures') or [])

    def get_db_config(self) -> Dict[str, Any]:
        """获取状态存储配置"""
        return self._config.get('db', {})


# 全局配置实例
config = Config()
