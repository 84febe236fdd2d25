"""TFJob异常定义"""


class TFJobError(Exception):
    """TFJob操作异常基类

    用于区分TFJob特定的错误和其他系统错误
    """
    pass


class InvalidSpecError(TFJobError):
    """无效的配置错误

    副本组为空、副本数为负、结束策略无法解析等情况下抛出，任务不会被创建
    """
    pass


class InconsistentObservationError(TFJobError):
    """副本状态与声明不一致

    上报的副本类型未声明或序号超出副本数时抛出
    """
    pass


class JobNotFoundError(TFJobError):
    """任务不存在错误"""
    pass


class JobAlreadyExistsError(TFJobError):
    """任务已存在错误

    同一个runtimeID被重复接纳时抛出
    """
    pass
