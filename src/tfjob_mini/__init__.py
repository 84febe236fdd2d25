"""tfjob-mini: 分布式TensorFlow训练任务的生命周期管理"""

__version__ = "0.1.0"
