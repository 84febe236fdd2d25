"""Tests for the TFJob lifecycle state machine."""

import pytest

from tfjob_mini.core import InvalidSpecError, JobLifecycle, resolve_chief, validate_job_spec
from tfjob_mini.models import (
    MAX_CONDITIONS,
    ConditionStatus,
    TFJobConditionType,
    TFJobPhase,
    TFJobSpec,
    TFReplicaState,
    TFReplicaType,
)

W = TFReplicaType.WORKER
PS = TFReplicaType.PS
S = TFReplicaState
C = TFJobConditionType


def admitted(spec, **kwargs):
    lifecycle = JobLifecycle(spec, **kwargs)
    lifecycle.admit()
    return lifecycle


def current(lifecycle, condition_type):
    condition = lifecycle.current_condition(condition_type)
    return condition.status if condition else None


class TestValidation:
    """Tests for spec validation and chief resolution."""

    def test_empty_specs_rejected(self):
        """A job without replica groups cannot be admitted."""
        with pytest.raises(InvalidSpecError):
            validate_job_spec(TFJobSpec(runtime_id="job-1"))

    def test_empty_runtime_id_rejected(self, make_spec):
        with pytest.raises(InvalidSpecError):
            validate_job_spec(make_spec(runtime_id=" ", Worker=1))

    def test_negative_replicas_rejected(self, make_spec):
        with pytest.raises(InvalidSpecError):
            validate_job_spec(make_spec(Worker=-1))

    def test_missing_replica_type_rejected(self):
        spec = TFJobSpec.model_validate({"runtimeID": "job-1", "tfReplicaSpec": [{"replicas": 1}]})
        with pytest.raises(InvalidSpecError):
            validate_job_spec(spec)

    def test_duplicate_replica_type_rejected(self):
        spec = TFJobSpec.model_validate({
            "runtimeID": "job-1",
            "tfReplicaSpec": [{"tfReplicaType": "Worker"}, {"tfReplicaType": "Worker"}],
        })
        with pytest.raises(InvalidSpecError):
            validate_job_spec(spec)

    def test_chief_resolved_case_insensitively(self, make_spec):
        """The chief name matches the replica type regardless of case."""
        spec = make_spec(chief=("worker", 1), Worker=2, PS=1)
        assert validate_job_spec(spec) == (W, 1)

    def test_chief_index_out_of_range(self, make_spec):
        with pytest.raises(InvalidSpecError):
            resolve_chief(make_spec(chief=("Worker", 2), Worker=2))

    def test_chief_unknown_type(self, make_spec):
        with pytest.raises(InvalidSpecError):
            resolve_chief(make_spec(chief=("Master", 0), Worker=1))

    def test_conflicting_chiefs(self):
        policy = lambda i: {"chief": {"tfReplicaName": "Worker", "tfReplicaIndex": i}}
        spec = TFJobSpec.model_validate({
            "runtimeID": "job-1",
            "tfReplicaSpec": [
                {"tfReplicaType": "Worker", "replicas": 2, "terminationPolicy": policy(0)},
                {"tfReplicaType": "PS", "replicas": 1, "terminationPolicy": policy(1)},
            ],
        })
        with pytest.raises(InvalidSpecError):
            resolve_chief(spec)

    def test_no_policy(self, make_spec):
        assert resolve_chief(make_spec(Worker=1)) is None

    def test_zero_replicas_valid(self, make_spec):
        """A ghost role with zero replicas is a valid declaration."""
        assert validate_job_spec(make_spec(Worker=1, PS=0)) is None


class TestPhaseTransitions:
    """Tests for phase derivation."""

    def test_single_worker_scenario(self, make_spec):
        """Pending -> Running -> Succeeded for a single worker job."""
        lifecycle = admitted(make_spec(Worker=1))
        assert lifecycle.status.phase == TFJobPhase.PENDING
        assert lifecycle.status.reason == "TFJobAdmitted"

        lifecycle.apply(W, 0, S.RUNNING)
        assert lifecycle.status.phase == TFJobPhase.RUNNING

        lifecycle.apply(W, 0, S.SUCCEEDED)
        status = lifecycle.status
        assert status.phase == TFJobPhase.SUCCEEDED
        assert status.reason == "AllReplicasSucceeded"
        assert status.tf_replica_statuses[W].state == S.SUCCEEDED
        assert status.tf_replica_statuses[W].tf_replicas_states == {S.SUCCEEDED: 1}

    def test_chief_success_ignores_running_ps(self, make_spec):
        """The job succeeds as soon as the chief succeeds, with PS still running."""
        lifecycle = admitted(make_spec(chief=("Worker", 0), Worker=2, PS=1))
        lifecycle.apply(PS, 0, S.RUNNING)
        lifecycle.apply(W, 0, S.RUNNING)
        lifecycle.apply(W, 1, S.RUNNING)
        lifecycle.apply(W, 0, S.SUCCEEDED)
        assert lifecycle.status.phase == TFJobPhase.SUCCEEDED
        assert lifecycle.status.reason == "ChiefSucceeded"
        assert lifecycle.status.tf_replica_statuses[PS].state == S.RUNNING

    def test_default_policy_waits_for_all_workers(self, make_spec):
        """Without a policy, every worker must succeed."""
        lifecycle = admitted(make_spec(Worker=2))
        lifecycle.apply(W, 0, S.SUCCEEDED)
        assert lifecycle.status.phase == TFJobPhase.RUNNING
        lifecycle.apply(W, 1, S.SUCCEEDED)
        assert lifecycle.status.phase == TFJobPhase.SUCCEEDED

    def test_worker_failure_fails_job(self, make_spec):
        lifecycle = admitted(make_spec(Worker=2, PS=1))
        lifecycle.apply(W, 0, S.RUNNING)
        lifecycle.apply(W, 1, S.FAILED)
        assert lifecycle.status.phase == TFJobPhase.FAILED
        assert lifecycle.status.reason == "WorkerReplicaFailed"

    def test_chief_failure_fails_job(self, make_spec):
        lifecycle = admitted(make_spec(chief=("Worker", 0), Worker=1))
        lifecycle.apply(W, 0, S.FAILED)
        assert lifecycle.status.phase == TFJobPhase.FAILED
        assert lifecycle.status.reason == "ChiefFailed"

    def test_terminal_phase_is_sticky(self, make_spec):
        """A PS failure after the chief succeeded does not flip the phase."""
        lifecycle = admitted(make_spec(chief=("Worker", 0), Worker=1, PS=1))
        lifecycle.apply(PS, 0, S.RUNNING)
        lifecycle.apply(W, 0, S.SUCCEEDED)
        lifecycle.apply(PS, 0, S.FAILED)
        assert lifecycle.status.phase == TFJobPhase.SUCCEEDED
        assert lifecycle.status.tf_replica_statuses[PS].state == S.FAILED

    def test_idempotent_observation(self, make_spec):
        """Re-applying the same observation changes nothing."""
        lifecycle = admitted(make_spec(Worker=2))
        assert lifecycle.apply(W, 0, S.RUNNING) is True
        before = lifecycle.status.model_copy(deep=True)
        assert lifecycle.apply(W, 0, S.RUNNING) is False
        assert lifecycle.status == before

    def test_unknown_is_transient(self, make_spec):
        """An unreachable process moves the job to Unknown until it reports again."""
        lifecycle = admitted(make_spec(Worker=1))
        lifecycle.apply(W, 0, S.RUNNING)
        lifecycle.apply(W, 0, S.UNKNOWN)
        assert lifecycle.status.phase == TFJobPhase.UNKNOWN
        assert current(lifecycle, C.READY) == ConditionStatus.UNKNOWN
        lifecycle.apply(W, 0, S.RUNNING)
        assert lifecycle.status.phase == TFJobPhase.RUNNING
        assert current(lifecycle, C.READY) == ConditionStatus.TRUE

    def test_running_does_not_fall_back_to_pending(self, make_spec):
        """A restarted process going back to Waiting keeps the job Running."""
        lifecycle = admitted(make_spec(Worker=1))
        lifecycle.apply(W, 0, S.RUNNING)
        lifecycle.apply(W, 0, S.WAITING)
        assert lifecycle.status.phase == TFJobPhase.RUNNING

    def test_tally_sum_matches_replicas(self, make_spec):
        lifecycle = admitted(make_spec(Worker=3, PS=2))
        lifecycle.apply(W, 0, S.RUNNING)
        lifecycle.apply(W, 2, S.FAILED)
        lifecycle.apply(PS, 1, S.RUNNING)
        statuses = lifecycle.status.tf_replica_statuses
        assert sum(statuses[W].tf_replicas_states.values()) == 3
        assert sum(statuses[PS].tf_replicas_states.values()) == 2

    def test_unresolvable_chief_stays_pending(self, make_spec):
        """A job restored with a broken termination policy never starts."""
        lifecycle = admitted(make_spec(chief=("Worker", 3), Worker=1))
        assert lifecycle.status.phase == TFJobPhase.PENDING
        assert lifecycle.status.reason == "InvalidTerminationPolicy"
        lifecycle.apply(W, 0, S.RUNNING)
        lifecycle.apply(W, 0, S.SUCCEEDED)
        assert lifecycle.status.phase == TFJobPhase.PENDING


class TestConditions:
    """Tests for condition history bookkeeping."""

    def test_admission_conditions(self, make_spec, clock):
        lifecycle = admitted(make_spec(Worker=1), clock=clock)
        conditions = lifecycle.status.conditions
        assert [(c.type, c.status) for c in conditions] == [
            (C.SCHEDULED, ConditionStatus.FALSE),
            (C.READY, ConditionStatus.FALSE),
        ]
        assert conditions[0].last_transition_time < conditions[1].last_transition_time

    def test_same_status_is_noop(self, make_spec):
        lifecycle = admitted(make_spec(Worker=1))
        length = len(lifecycle.status.conditions)
        assert lifecycle.set_condition(C.READY, ConditionStatus.FALSE, "Again") is False
        assert len(lifecycle.status.conditions) == length

    def test_history_capped_at_ten(self, make_spec):
        """The eleventh condition evicts the oldest."""
        lifecycle = admitted(make_spec(Worker=1))
        for i in range(12):
            status = ConditionStatus.TRUE if i % 2 == 0 else ConditionStatus.FALSE
            assert lifecycle.set_condition(C.READY, status, f"Toggle{i}") is True
        conditions = lifecycle.status.conditions
        assert len(conditions) == MAX_CONDITIONS
        assert all(c.type == C.READY for c in conditions)
        assert conditions[-1].reason == "Toggle11"
        assert conditions[0].reason == "Toggle2"

    def test_every_phase_transition_records_a_condition(self, make_spec):
        lifecycle = admitted(make_spec(Worker=2))
        lifecycle.apply(W, 0, S.RUNNING)
        lifecycle.apply(W, 1, S.RUNNING)
        lifecycle.apply(W, 0, S.SUCCEEDED)
        assert lifecycle.status.phase == TFJobPhase.RUNNING
        before = len(lifecycle.status.conditions)

        lifecycle.apply(W, 1, S.SUCCEEDED)
        assert lifecycle.status.phase == TFJobPhase.SUCCEEDED
        assert len(lifecycle.status.conditions) == before + 1
        latest = lifecycle.status.conditions[-1]
        assert (latest.type, latest.status, latest.reason) == (C.READY, ConditionStatus.FALSE, "TFJobSucceeded")

    def test_failure_after_not_ready_records_a_condition(self, make_spec):
        lifecycle = admitted(make_spec(Worker=2))
        lifecycle.apply(W, 0, S.RUNNING)
        assert current(lifecycle, C.READY) == ConditionStatus.FALSE
        before = len(lifecycle.status.conditions)

        lifecycle.apply(W, 0, S.FAILED)
        assert lifecycle.status.phase == TFJobPhase.FAILED
        added = [(c.type, c.reason) for c in lifecycle.status.conditions[before:]]
        assert added == [(C.READY, "TFJobFailed"), (C.RECYCLING, "RecyclingReplicas")]

    def test_ready_when_all_running(self, make_spec):
        lifecycle = admitted(make_spec(Worker=2))
        lifecycle.apply(W, 0, S.RUNNING)
        assert current(lifecycle, C.SCHEDULED) == ConditionStatus.TRUE
        assert current(lifecycle, C.READY) == ConditionStatus.FALSE
        lifecycle.apply(W, 1, S.RUNNING)
        assert current(lifecycle, C.READY) == ConditionStatus.TRUE

    def test_recycling_after_chief_success(self, make_spec):
        """Remaining PS processes are tracked by the Recycling condition."""
        lifecycle = admitted(make_spec(chief=("Worker", 0), Worker=1, PS=1))
        lifecycle.apply(PS, 0, S.RUNNING)
        lifecycle.apply(W, 0, S.SUCCEEDED)
        assert current(lifecycle, C.RECYCLING) == ConditionStatus.TRUE
        assert current(lifecycle, C.READY) == ConditionStatus.FALSE

        lifecycle.apply(PS, 0, S.SUCCEEDED)
        recycling = lifecycle.current_condition(C.RECYCLING)
        assert recycling.status == ConditionStatus.FALSE
        assert recycling.reason == "ReplicasRecycled"
        assert lifecycle.status.phase == TFJobPhase.SUCCEEDED

    def test_recovering_for_tolerated_failures(self, make_spec):
        """Failures of a tolerated type mark the job Recovering instead of Failed."""
        lifecycle = admitted(make_spec(Worker=1, PS=1), tolerated_failures=[PS])
        lifecycle.apply(W, 0, S.RUNNING)
        lifecycle.apply(PS, 0, S.RUNNING)
        lifecycle.apply(PS, 0, S.FAILED)
        assert lifecycle.status.phase == TFJobPhase.RUNNING
        assert current(lifecycle, C.RECOVERING) == ConditionStatus.TRUE
        assert lifecycle.current_condition(C.RECOVERING).reason == "PSReplicaRestarting"

        lifecycle.apply(PS, 0, S.RUNNING)
        assert current(lifecycle, C.RECOVERING) == ConditionStatus.FALSE
        assert current(lifecycle, C.READY) == ConditionStatus.TRUE

    def test_no_recovering_without_failures(self, make_spec):
        lifecycle = admitted(make_spec(Worker=1))
        lifecycle.apply(W, 0, S.RUNNING)
        assert lifecycle.current_condition(C.RECOVERING) is None
