"""Shared fixtures for tfjob-mini tests."""

from datetime import datetime, timedelta, timezone
from itertools import count

import pytest
from pony.orm import db_session

from tfjob_mini.db import TFJobRecord, init_db
from tfjob_mini.models import TFJobSpec


@pytest.fixture
def clock():
    """Deterministic clock advancing one second per call."""
    ticks = count()
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _now():
        return start + timedelta(seconds=next(ticks))

    return _now


@pytest.fixture
def make_spec():
    """Build a TFJobSpec from replica counts, e.g. make_spec(Worker=2, PS=1)."""

    def _make(runtime_id="job-1", chief=None, **replicas):
        specs = [
            {"tfReplicaType": replica_type, "replicas": count_}
            for replica_type, count_ in replicas.items()
        ]
        if chief is not None:
            specs[0]["terminationPolicy"] = {
                "chief": {"tfReplicaName": chief[0], "tfReplicaIndex": chief[1]}
            }
        return TFJobSpec.model_validate({"runtimeID": runtime_id, "tfReplicaSpec": specs})

    return _make


@pytest.fixture
def status_db():
    """In-memory status store, emptied after each test."""
    init_db(":memory:")
    yield
    with db_session:
        TFJobRecord.select().delete(bulk=True)
