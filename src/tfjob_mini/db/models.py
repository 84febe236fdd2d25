"""状态存储模型定义"""
from datetime import datetime
from pony.orm import Database, PrimaryKey, Required, Optional, Json

db = Database()

class TFJobRecord(db.Entity):
    """TFJob状态记录"""
    _table_ = 'tfjob_statuses'

    runtime_id = PrimaryKey(str)
    namespace = Optional(str)
    name = Optional(str)
    phase = Required(str)  # Pending, Running, Succeeded, Failed, Unknown
    reason = Optional(str)
    status = Required(Json)
    created_at = Required(datetime)
    updated_at = Required(datetime)
    completed_at = Optional(datetime)
