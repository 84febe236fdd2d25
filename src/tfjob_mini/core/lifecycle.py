"""TFJob生命周期

该模块负责根据副本聚合状态推导任务阶段，包括：
1. 校验任务规格和结束策略
2. 按结束策略判断任务成功或失败
3. 维护最近十条状态条件
4. 在阶段变化时更新Reason
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Tuple

from ..models import (
    MAX_CONDITIONS,
    ConditionStatus,
    TFJobCondition,
    TFJobConditionType,
    TFJobPhase,
    TFJobSpec,
    TFJobStatus,
    TFReplicaState,
    TFReplicaStatus,
    TFReplicaType,
)
from .errors import InvalidSpecError
from .replica import ACTIVE_STATES, ReplicaAggregation

logger = logging.getLogger(__name__)

Chief = Tuple[TFReplicaType, int]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def resolve_chief(spec: TFJobSpec) -> Optional[Chief]:
    """解析结束策略中的Chief进程

    tfReplicaName与副本类型按大小写不敏感的方式匹配。

    Returns:
        (副本类型, 序号)，未配置结束策略时返回None

    Raises:
        InvalidSpecError: 配置了多个不同的Chief，或Chief指向不存在的进程
    """
    chiefs = {
        (s.termination_policy.chief.tf_replica_name.lower(), s.termination_policy.chief.tf_replica_index)
        for s in spec.specs
        if s.termination_policy is not None and s.termination_policy.chief is not None
    }
    if not chiefs:
        return None
    if len(chiefs) > 1:
        raise InvalidSpecError(f"Conflicting chief definitions: {sorted(chiefs)}")

    name, index = chiefs.pop()
    for replica_spec in spec.specs:
        replica_type = replica_spec.tf_replica_type
        if replica_type is None or replica_type.value.lower() != name:
            continue
        if 0 <= index < replica_spec.desired_replicas:
            return replica_type, index
        raise InvalidSpecError(
            f"Chief index {index} out of range for {replica_type.value} "
            f"with {replica_spec.desired_replicas} replicas"
        )
    raise InvalidSpecError(f"Chief refers to undeclared replica type {name!r}")


def validate_job_spec(spec: TFJobSpec) -> Optional[Chief]:
    """校验任务规格

    Returns:
        解析出的Chief进程

    Raises:
        InvalidSpecError: 规格不满足约束
    """
    if not spec.runtime_id or not spec.runtime_id.strip():
        raise InvalidSpecError("runtimeID cannot be empty")
    if not spec.specs:
        raise InvalidSpecError("At least one TFReplicaSpec is required")

    seen = set()
    for replica_spec in spec.specs:
        replica_type = replica_spec.tf_replica_type
        if replica_type is None:
            raise InvalidSpecError("tfReplicaType is required for every TFReplicaSpec")
        if replica_type in seen:
            raise InvalidSpecError(f"Replica type {replica_type.value} declared more than once")
        seen.add(replica_type)
        if replica_spec.desired_replicas < 0:
            raise InvalidSpecError(
                f"Replica count for {replica_type.value} must be >= 0, got {replica_spec.replicas}"
            )
    return resolve_chief(spec)


class JobLifecycle:
    """单个TFJob的生命周期状态机

    状态只由本对象修改；调用方必须保证同一任务的更新是串行的。
    """

    def __init__(self, spec: TFJobSpec, status: Optional[TFJobStatus] = None,
                 tolerated_failures: Iterable[TFReplicaType] = (),
                 clock: Optional[Callable[[], datetime]] = None):
        self.spec = spec
        self.status = status if status is not None else TFJobStatus()
        self.clock = clock or _utcnow
        self.config_error: Optional[str] = None
        try:
            self.chief = resolve_chief(spec)
        except InvalidSpecError as e:
            self.chief = None
            self.config_error = str(e)
        self.replicas = ReplicaAggregation(spec, tolerated_failures, listener=self._on_replica_changed)
        self._started = self.status.phase in (TFJobPhase.RUNNING, TFJobPhase.SUCCEEDED, TFJobPhase.FAILED)

    @property
    def runtime_id(self) -> str:
        return self.spec.runtime_id

    @property
    def terminal(self) -> bool:
        return self.status.terminal

    def admit(self) -> TFJobStatus:
        """接纳任务: None -> Pending"""
        self.status.tf_replica_statuses = self.replicas.statuses()
        if self.config_error:
            self._transition(TFJobPhase.PENDING, "InvalidTerminationPolicy")
        else:
            self._transition(TFJobPhase.PENDING, "TFJobAdmitted")
        self._update_conditions()
        return self.status

    def apply(self, replica_type: TFReplicaType, index: int, state: TFReplicaState) -> bool:
        """应用一次进程状态上报

        Returns:
            任务状态是否发生变化
        """
        before = self.status.model_dump()
        self.replicas.apply(replica_type, index, state)
        return self.status.model_dump() != before

    def set_condition(self, condition_type: TFJobConditionType, status: ConditionStatus,
                      reason: str, force: bool = False) -> bool:
        """设置状态条件

        同类型最新条件状态相同时不做任何修改(force为True时仍追加)；否则追加新条件，超过上限时淘汰最旧的条件。
        """
        current = self.current_condition(condition_type)
        if not force and current is not None and current.status == status:
            return False
        self.status.conditions.append(TFJobCondition(
            type=condition_type,
            status=status,
            reason=reason,
            last_transition_time=self.clock(),
        ))
        del self.status.conditions[:-MAX_CONDITIONS]
        return True

    def current_condition(self, condition_type: TFJobConditionType) -> Optional[TFJobCondition]:
        for condition in reversed(self.status.conditions):
            if condition.type == condition_type:
                return condition
        return None

    def _on_replica_changed(self, replica_type: TFReplicaType, previous: TFReplicaState,
                            status: TFReplicaStatus) -> None:
        self.status.tf_replica_statuses[replica_type] = status
        self.evaluate()

    def evaluate(self) -> None:
        """重新评估任务阶段和状态条件"""
        if not self.terminal and not self.config_error:
            phase, reason = self._next_phase()
            if phase == TFJobPhase.RUNNING:
                self._started = True
            if phase != self.status.phase:
                self._transition(phase, reason)
        self._update_conditions()

    def _next_phase(self) -> Tuple[TFJobPhase, str]:
        if self.chief is not None:
            chief_type, chief_index = self.chief
            chief_state = self.replicas[chief_type].state_of(chief_index)
            if chief_state == TFReplicaState.SUCCEEDED:
                return TFJobPhase.SUCCEEDED, "ChiefSucceeded"
            if chief_state == TFReplicaState.FAILED:
                return TFJobPhase.FAILED, "ChiefFailed"

        for aggregator in self.replicas:
            if aggregator.overall_state() == TFReplicaState.FAILED:
                return TFJobPhase.FAILED, f"{aggregator.replica_type.value}ReplicaFailed"

        if self.chief is None and all(
            a.overall_state() == TFReplicaState.SUCCEEDED for a in self.replicas
        ):
            return TFJobPhase.SUCCEEDED, "AllReplicasSucceeded"

        states = self.replicas.all_states()
        if TFReplicaState.UNKNOWN in states:
            return TFJobPhase.UNKNOWN, "ReplicaStateUnknown"
        if self._has_started(states) or self._started:
            return TFJobPhase.RUNNING, "ReplicasRunning"
        return TFJobPhase.PENDING, "ReplicasWaiting"

    @staticmethod
    def _has_started(states) -> bool:
        return any(state != TFReplicaState.WAITING for state in states)

    def _transition(self, phase: TFJobPhase, reason: str) -> None:
        logger.info(
            f"TFJob {self.runtime_id} phase {self.status.phase.value or 'None'} -> {phase.value} ({reason})"
        )
        self.status.phase = phase
        self.status.reason = reason
        # 进入终止阶段时总是记录一条条件
        if self.terminal:
            self.set_condition(TFJobConditionType.READY, ConditionStatus.FALSE, f"TFJob{phase.value}", force=True)

    def _update_conditions(self) -> None:
        states = self.replicas.all_states()
        phase = self.status.phase

        if self._has_started(states) or self._started:
            self.set_condition(TFJobConditionType.SCHEDULED, ConditionStatus.TRUE, "ReplicasStarted")
        else:
            self.set_condition(TFJobConditionType.SCHEDULED, ConditionStatus.FALSE, "ReplicasWaiting")

        if phase == TFJobPhase.UNKNOWN:
            self.set_condition(TFJobConditionType.READY, ConditionStatus.UNKNOWN, "ReplicaStateUnknown")
        elif phase == TFJobPhase.RUNNING and states and all(s == TFReplicaState.RUNNING for s in states):
            self.set_condition(TFJobConditionType.READY, ConditionStatus.TRUE, "AllReplicasRunning")
        elif self.terminal:
            self.set_condition(TFJobConditionType.READY, ConditionStatus.FALSE, f"TFJob{phase.value}")
        else:
            self.set_condition(TFJobConditionType.READY, ConditionStatus.FALSE, "ReplicasNotReady")

        restarting = self.replicas.tolerated_failures()
        if restarting:
            reason = "".join(t.value for t in restarting) + "ReplicaRestarting"
            self.set_condition(TFJobConditionType.RECOVERING, ConditionStatus.TRUE, reason)
        else:
            self._clear_condition(TFJobConditionType.RECOVERING, "ReplicasRecovered")

        if self.terminal:
            if any(state in ACTIVE_STATES for state in states):
                self.set_condition(TFJobConditionType.RECYCLING, ConditionStatus.TRUE, "RecyclingReplicas")
            else:
                self._clear_condition(TFJobConditionType.RECYCLING, "ReplicasRecycled")

    def _clear_condition(self, condition_type: TFJobConditionType, reason: str) -> None:
        current = self.current_condition(condition_type)
        if current is not None and current.status == ConditionStatus.TRUE:
            self.set_condition(condition_type, ConditionStatus.FALSE, reason)
