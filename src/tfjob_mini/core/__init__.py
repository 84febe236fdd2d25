"""TFJob生命周期核心"""
from .errors import (
    TFJobError,
    InvalidSpecError,
    InconsistentObservationError,
    JobNotFoundError,
    JobAlreadyExistsError,
)
from .replica import ReplicaAggregator, ReplicaAggregation
from .lifecycle import JobLifecycle, resolve_chief, validate_job_spec
from .controller import JobController
