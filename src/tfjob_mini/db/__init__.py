"""状态存储模块"""
from .models import TFJobRecord, db
from .operations import (
    save_status,
    get_status_record,
    list_status_records,
    delete_status_record,
    init_db,
)
