"""TFJob控制器

每个runtimeID对应一个asyncio任务(actor)，串行消费该任务自己的状态上报队列。
不同任务之间没有共享的可变状态，可以完全并行处理。
"""

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from ..models import TFJobSpec, TFJobStatus, TFReplicaState, TFReplicaType
from .errors import InvalidSpecError, JobAlreadyExistsError, JobNotFoundError
from .lifecycle import JobLifecycle, validate_job_spec

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, TFJobStatus], Union[None, Awaitable[None]]]

# 停止消费的哨兵
_RETIRE = object()


class JobActor:
    """单个任务的串行处理单元"""

    def __init__(self, lifecycle: JobLifecycle, notify: Callable[[str, TFJobStatus], Awaitable[None]]):
        self.lifecycle = lifecycle
        self.notify = notify
        self.queue: asyncio.Queue = asyncio.Queue()
        self.retired = False
        self.task: Optional[asyncio.Task] = None

    @property
    def runtime_id(self) -> str:
        return self.lifecycle.runtime_id

    def start(self) -> None:
        self.task = asyncio.get_running_loop().create_task(
            self.run(), name=f"tfjob-{self.runtime_id}"
        )

    async def run(self) -> None:
        while True:
            item = await self.queue.get()
            try:
                if item is _RETIRE:
                    return
                if self.retired:
                    continue
                replica_type, index, state = item
                try:
                    changed = self.lifecycle.apply(replica_type, index, state)
                except Exception:
                    logger.exception(f"Failed to apply observation {item} to TFJob {self.runtime_id}")
                    continue
                if changed:
                    await self.notify(self.runtime_id, self.lifecycle.status)
            finally:
                self.queue.task_done()


class JobController:
    """TFJob控制器

    Args:
        on_status_changed: 状态变化回调，参数为(runtimeID, 状态副本)，可以是协程函数
        tolerated_failures: 允许进程失败的副本类型
        clock: 条件时间戳的时钟函数
    """

    def __init__(self, on_status_changed: Optional[StatusCallback] = None,
                 tolerated_failures: Optional[Iterable[Union[str, TFReplicaType]]] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.on_status_changed = on_status_changed
        self.tolerated_failures = [TFReplicaType(t) for t in (tolerated_failures or [])]
        self.clock = clock
        self._actors: Dict[str, JobActor] = {}

    async def admit_job(self, spec: Union[TFJobSpec, Mapping[str, Any]]) -> TFJobStatus:
        """接纳新任务

        Returns:
            任务初始状态(Pending)

        Raises:
            InvalidSpecError: 规格无效，任务不会被创建
            JobAlreadyExistsError: runtimeID已存在
        """
        if not isinstance(spec, TFJobSpec):
            try:
                spec = TFJobSpec.model_validate(spec)
            except ValidationError as e:
                raise InvalidSpecError(f"Invalid TFJob spec: {e}") from e
        validate_job_spec(spec)

        runtime_id = spec.runtime_id
        if runtime_id in self._actors:
            raise JobAlreadyExistsError(f"TFJob {runtime_id} already exists")

        lifecycle = JobLifecycle(spec, tolerated_failures=self.tolerated_failures, clock=self.clock)
        status = lifecycle.admit()
        actor = JobActor(lifecycle, self._notify)
        self._actors[runtime_id] = actor
        logger.info(f"Admitted TFJob {runtime_id} with {len(spec.specs)} replica specs")

        # 初始状态送达后才开始消费队列，期间到达的上报先排队
        await self._notify(runtime_id, status)
        if not actor.retired:
            actor.start()
        return status.model_copy(deep=True)

    def apply_replica_observation(self, runtime_id: str, replica_type: Union[str, TFReplicaType],
                                  index: int, state: Union[str, TFReplicaState]) -> bool:
        """投递一次进程状态上报，不会阻塞

        Returns:
            是否已投递；任务不存在或已退役时返回False
        """
        actor = self._actors.get(runtime_id)
        if actor is None or actor.retired:
            logger.warning(f"Discarding observation for unknown or retired TFJob {runtime_id}")
            return False
        try:
            observation = (TFReplicaType(replica_type), int(index), TFReplicaState(state))
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed observation for TFJob {runtime_id}: {e}")
            return False
        actor.queue.put_nowait(observation)
        return True

    async def retire(self, runtime_id: str) -> TFJobStatus:
        """退役任务，丢弃尚未处理的状态上报

        Raises:
            JobNotFoundError: 任务不存在
        """
        actor = self._actors.pop(runtime_id, None)
        if actor is None:
            raise JobNotFoundError(f"TFJob {runtime_id} not found")
        actor.retired = True
        actor.queue.put_nowait(_RETIRE)
        if actor.task is not None:
            await actor.task
        logger.info(f"Retired TFJob {runtime_id}")
        return actor.lifecycle.status.model_copy(deep=True)

    async def drain(self, runtime_id: Optional[str] = None) -> None:
        """等待队列中的状态上报处理完成"""
        if runtime_id is not None:
            actor = self._actors.get(runtime_id)
            if actor is None:
                raise JobNotFoundError(f"TFJob {runtime_id} not found")
            await actor.queue.join()
            return
        await asyncio.gather(*(a.queue.join() for a in list(self._actors.values())))

    def get_status(self, runtime_id: str) -> TFJobStatus:
        actor = self._actors.get(runtime_id)
        if actor is None:
            raise JobNotFoundError(f"TFJob {runtime_id} not found")
        return actor.lifecycle.status.model_copy(deep=True)

    def runtime_ids(self) -> List[str]:
        return list(self._actors)

    async def shutdown(self) -> None:
        for runtime_id in list(self._actors):
            await self.retire(runtime_id)

    async def _notify(self, runtime_id: str, status: TFJobStatus) -> None:
        if self.on_status_changed is None:
            return
        try:
            result = self.on_status_changed(runtime_id, status.model_copy(deep=True))
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Status callback failed for TFJob {runtime_id}")
