"""副本状态聚合

该模块负责把平台上报的单个进程状态聚合为副本类型级别的状态，包括：
1. 按序号记录每个进程的最新状态
2. 统计各状态的进程数量
3. 按优先级推导副本类型的总体状态
4. 状态变化时通知任务生命周期模型
"""

import logging
from collections import Counter
from typing import Callable, Dict, Iterable, List, Optional

from ..models import TFJobSpec, TFReplicaState, TFReplicaStatus, TFReplicaType
from .errors import InconsistentObservationError

logger = logging.getLogger(__name__)

# 监听函数签名: (副本类型, 变化前的总体状态, 变化后的副本状态)
ReplicaListener = Callable[[TFReplicaType, TFReplicaState, TFReplicaStatus], None]

# 尚未结束的进程状态
ACTIVE_STATES = (TFReplicaState.UNKNOWN, TFReplicaState.WAITING, TFReplicaState.RUNNING)


class ReplicaAggregator:
    """单个副本类型的状态聚合"""

    def __init__(self, replica_type: TFReplicaType, replicas: int, tolerate_failures: bool = False):
        self.replica_type = replica_type
        self.replicas = replicas
        self.tolerate_failures = tolerate_failures
        # 每个序号一个槽位，接纳时所有进程都处于等待状态
        self._states: List[TFReplicaState] = [TFReplicaState.WAITING] * replicas

    def observe(self, index: int, state: TFReplicaState) -> bool:
        """记录某个进程的最新状态

        Args:
            index: 进程序号
            state: 进程状态

        Returns:
            槽位状态是否发生变化，重复上报同一状态返回False

        Raises:
            InconsistentObservationError: 序号超出声明的副本数
        """
        if not 0 <= index < self.replicas:
            raise InconsistentObservationError(
                f"{self.replica_type.value} index {index} out of range [0, {self.replicas})"
            )
        if self._states[index] == state:
            return False
        self._states[index] = state
        return True

    def state_of(self, index: int) -> Optional[TFReplicaState]:
        if 0 <= index < self.replicas:
            return self._states[index]
        return None

    def states(self) -> List[TFReplicaState]:
        return list(self._states)

    def counts(self) -> Dict[TFReplicaState, int]:
        """各状态的进程数量，数量为0的状态不出现"""
        return dict(Counter(self._states))

    def count(self, state: TFReplicaState) -> int:
        return self._states.count(state)

    def overall_state(self) -> TFReplicaState:
        """按 Failed > Running > Succeeded > Waiting > Unknown 的优先级推导总体状态

        容忍失败的副本类型不会因为进程失败而变为Failed；副本数为0时视为Succeeded。
        """
        if not self.tolerate_failures and TFReplicaState.FAILED in self._states:
            return TFReplicaState.FAILED
        if TFReplicaState.RUNNING in self._states:
            return TFReplicaState.RUNNING
        if all(state == TFReplicaState.SUCCEEDED for state in self._states):
            return TFReplicaState.SUCCEEDED
        if TFReplicaState.WAITING in self._states:
            return TFReplicaState.WAITING
        return TFReplicaState.UNKNOWN

    def to_status(self) -> TFReplicaStatus:
        return TFReplicaStatus(
            type=self.replica_type,
            state=self.overall_state(),
            tf_replicas_states=self.counts(),
        )


class ReplicaAggregation:
    """一个任务内所有副本类型的状态聚合

    每次计数变化都会推送给监听者，监听者负责重新评估任务阶段。
    """

    def __init__(self, spec: TFJobSpec, tolerated_failures: Iterable[TFReplicaType] = (),
                 listener: Optional[ReplicaListener] = None):
        tolerated = {TFReplicaType(t) for t in tolerated_failures}
        self.aggregators: Dict[TFReplicaType, ReplicaAggregator] = {}
        for replica_spec in spec.specs:
            replica_type = replica_spec.tf_replica_type
            self.aggregators[replica_type] = ReplicaAggregator(
                replica_type,
                replica_spec.desired_replicas,
                tolerate_failures=replica_type in tolerated,
            )
        self.listener = listener

    def __getitem__(self, replica_type: TFReplicaType) -> ReplicaAggregator:
        return self.aggregators[replica_type]

    def __iter__(self):
        return iter(self.aggregators.values())

    def apply(self, replica_type: TFReplicaType, index: int, state: TFReplicaState) -> bool:
        """应用一次进程状态上报

        未声明的副本类型或越界序号会被记录并丢弃，保留原有状态。

        Returns:
            计数是否发生变化
        """
        aggregator = self.aggregators.get(replica_type)
        if aggregator is None:
            logger.warning(f"Dropping observation for undeclared replica type {replica_type.value}")
            return False

        previous = aggregator.overall_state()
        try:
            changed = aggregator.observe(index, state)
        except InconsistentObservationError as e:
            logger.warning(f"Dropping inconsistent observation: {e}")
            return False
        if not changed:
            return False

        status = aggregator.to_status()
        if status.state != previous:
            logger.info(
                f"Replica type {replica_type.value} changed from "
                f"{previous.value} to {status.state.value}"
            )
        if self.listener:
            self.listener(replica_type, previous, status)
        return True

    def statuses(self) -> Dict[TFReplicaType, TFReplicaStatus]:
        return {t: a.to_status() for t, a in self.aggregators.items()}

    def all_states(self) -> List[TFReplicaState]:
        return [state for aggregator in self for state in aggregator.states()]

    def tolerated_failures(self) -> List[TFReplicaType]:
        """有失败进程但被容忍的副本类型"""
        return [
            a.replica_type for a in self
            if a.tolerate_failures and a.count(TFReplicaState.FAILED)
        ]
