"""主入口模块

该模块是tfjob-mini operator的入口点，负责：
1. 加载配置文件
2. 初始化日志系统
3. 初始化Kubernetes客户端
4. 启动operator
"""

import os
import sys
import logging
import kopf
from kubernetes import config as k8s_config, client
from kubernetes.config.config_exception import ConfigException
from .config import config
from .db import init_db


def init_kubernetes():
    """初始化Kubernetes客户端

    尝试以下方式加载配置：
    1. 集群内配置
    2. kubeconfig文件

    Returns:
        bool: 初始化是否成功
    """
    try:
        # 首先尝试集群内配置
        k8s_config.load_incluster_config()
        logging.info("Using in-cluster Kubernetes configuration")
        return True
    except ConfigException:
        try:
            # 然后尝试kubeconfig
            k8s_config.load_kube_config()
            logging.info("Using kubeconfig for Kubernetes configuration")
            return True
        except (ConfigException, OSError) as e:
            logging.error(f"Failed to initialize Kubernetes client: {e}")
            return False


def setup(config_path=None):
    """加载配置并配置日志和状态存储"""
    config.load(config_path or os.environ.get('TFJOB_MINI_CONFIG'))

    logging_config = config.get_logging_config()
    logging.basicConfig(
        level=logging_config.get('level', 'INFO'),
        format=logging_config.get('format')
    )

    db_config = config.get_db_config()
    if db_config.get('enabled'):
        init_db(db_config.get('filename', 'tfjobs.sqlite'))


def main(config_path=None):
    """主入口函数

    1. 加载配置文件
    2. 配置日志系统
    3. 初始化Kubernetes客户端
    4. 启动operator
    """
    setup(config_path)

    if not init_kubernetes():
        logging.error("Failed to initialize Kubernetes client")
        sys.exit(1)

    # 验证API访问权限
    try:
        version = client.VersionApi(client.ApiClient()).get_code()
        logging.info(f"Connected to Kubernetes {version.git_version}")
    except Exception as e:
        logging.error(f"Failed to connect to Kubernetes API: {e}")
        sys.exit(1)

    # 配置加载完成后再注册处理器，标签和API组来自配置
    from .operator import handlers  # noqa: F401

    logging.info("Starting tfjob-mini operator")
    kopf.run(clusterwide=True)


if __name__ == '__main__':
    main()
