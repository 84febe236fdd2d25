"""TFJob CRD模型定义

字段的序列化名称与TFJob资源保持一致(camelCase)，Python属性使用snake_case。
"""

from enum import Enum
from datetime import datetime
from typing import Dict, Optional, Any, List
from pydantic import BaseModel, ConfigDict, Field, field_validator

# 状态中保留的最近条件数
MAX_CONDITIONS = 10


class TFReplicaType(str, Enum):
    """副本类型"""
    PS = "PS"
    WORKER = "Worker"
    LOCAL = "Local"


class TFJobPhase(str, Enum):
    """TFJob生命周期阶段"""
    NONE = ""
    UNKNOWN = "Unknown"
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


TERMINAL_PHASES = (TFJobPhase.SUCCEEDED, TFJobPhase.FAILED)


class TFReplicaState(str, Enum):
    """单个副本进程的状态"""
    UNKNOWN = "Unknown"
    WAITING = "Waiting"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


class TFJobConditionType(str, Enum):
    SCHEDULED = "Scheduled"
    READY = "Ready"
    RECOVERING = "Recovering"
    # 所有Worker成功结束后回收PS等剩余副本
    RECYCLING = "Recycling"


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


class ChiefSpec(_Model):
    """Chief进程，由副本类型名称和序号确定"""
    tf_replica_name: str = Field(..., alias="tfReplicaName", description="副本类型名称")
    tf_replica_index: int = Field(0, alias="tfReplicaIndex", description="副本序号")


class TerminationPolicySpec(_Model):
    """任务结束策略"""
    chief: Optional[ChiefSpec] = Field(None, description="等待Chief进程退出")


class TFReplicaSpec(_Model):
    """副本组规格"""
    replicas: Optional[int] = Field(None, description="副本数量，缺省为1")
    tf_replica_type: Optional[TFReplicaType] = Field(None, alias="tfReplicaType", description="PS、Worker或Local")
    template: Optional[Dict[str, Any]] = Field(None, description="Pod模板")
    termination_policy: Optional[TerminationPolicySpec] = Field(
        None, alias="terminationPolicy", description="结束策略"
    )

    @property
    def desired_replicas(self) -> int:
        return 1 if self.replicas is None else self.replicas


class TFJobSpec(_Model):
    """TFJob规格"""
    runtime_id: str = Field("", alias="runtimeID", description="运行时ID")
    data_dir: Optional[str] = Field(None, alias="dataDir", description="数据集路径")
    model_dir: Optional[str] = Field(None, alias="modelDir", description="checkpoint路径")
    log_dir: Optional[str] = Field(None, alias="logDir", description="tf.events路径")
    export_dir: Optional[str] = Field(None, alias="exportDir", description="导出模型路径")
    specs: List[TFReplicaSpec] = Field(default_factory=list, alias="tfReplicaSpec", description="副本组")

    def replica_spec(self, replica_type: TFReplicaType) -> Optional[TFReplicaSpec]:
        for spec in self.specs:
            if spec.tf_replica_type == replica_type:
                return spec
        return None


class TFJobCondition(_Model):
    """TFJob状态条件"""
    type: TFJobConditionType = Field(..., description="条件类型")
    status: ConditionStatus = Field(..., description="条件状态")
    reason: str = Field("", description="状态原因")
    last_transition_time: Optional[datetime] = Field(
        None, alias="lastTransitionTime", description="最后转换时间"
    )


class TFReplicaStatus(_Model):
    """某一副本类型的聚合状态"""
    type: TFReplicaType = Field(..., description="副本类型")
    state: TFReplicaState = Field(TFReplicaState.UNKNOWN, description="总体状态")
    tf_replicas_states: Dict[TFReplicaState, int] = Field(
        default_factory=dict, alias="tfReplicasStates", description="各状态副本数"
    )


class TFJobStatus(_Model):
    """TFJob状态"""
    phase: TFJobPhase = Field(TFJobPhase.NONE, description="当前阶段")
    reason: str = Field("", description="阶段原因")
    conditions: List[TFJobCondition] = Field(default_factory=list, description="最近的状态条件")
    tf_replica_statuses: Dict[TFReplicaType, TFReplicaStatus] = Field(
        default_factory=dict, alias="tfReplicaStatuses", description="各副本类型状态"
    )

    @field_validator("conditions")
    @classmethod
    def keep_recent_conditions(cls, v):
        return v[-MAX_CONDITIONS:]

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TFJobStatus":
        return cls.model_validate(data or {})


class TFJob(_Model):
    """TFJob CRD"""
    api_version: str = Field("kubeflow.caicloud.io/v1alpha1", alias="apiVersion", description="API版本")
    kind: str = Field("TFJob", description="资源类型")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="元数据")
    spec: TFJobSpec = Field(..., description="任务规格")
    status: TFJobStatus = Field(default_factory=TFJobStatus, description="任务状态")
