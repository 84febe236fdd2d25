"""状态存储操作函数"""
import os
from datetime import datetime
from pony.orm import db_session, select
from .models import TFJobRecord, db

TERMINAL_PHASES = ('Succeeded', 'Failed')

@db_session
def save_status(runtime_id, status, namespace=None, name=None):
    """保存任务状态，不存在时创建记录

    Args:
        runtime_id: 任务运行时ID
        status: 序列化后的TFJobStatus
        namespace: 命名空间
        name: 资源名称
    """
    now = datetime.now()
    phase = status.get('phase') or 'Unknown'
    record = TFJobRecord.get(runtime_id=runtime_id)
    if record is None:
        record = TFJobRecord(
            runtime_id=runtime_id,
            namespace=namespace or '',
            name=name or '',
            phase=phase,
            reason=status.get('reason', ''),
            status=status,
            created_at=now,
            updated_at=now
        )
    else:
        record.phase = phase
        record.reason = status.get('reason', '')
        record.status = status
        record.updated_at = now
        if namespace:
            record.namespace = namespace
        if name:
            record.name = name
    if phase in TERMINAL_PHASES and record.completed_at is None:
        record.completed_at = now
    return record.to_dict()

@db_session
def get_status_record(runtime_id):
    """获取任务状态记录"""
    record = TFJobRecord.get(runtime_id=runtime_id)
    return record.to_dict() if record else None

@db_session
def list_status_records(phase=None):
    """列出任务状态记录"""
    query = select(r for r in TFJobRecord)
    if phase:
        query = query.filter(lambda r: r.phase == phase)
    return [r.to_dict() for r in query.order_by(TFJobRecord.created_at, TFJobRecord.runtime_id)]

@db_session
def delete_status_record(runtime_id):
    """删除任务状态记录"""
    record = TFJobRecord.get(runtime_id=runtime_id)
    if record:
        record.delete()
        return True
    return False

def init_db(filename='tfjobs.sqlite'):
    """初始化数据库，同一进程内只绑定一次"""
    if db.provider is None:
        if filename == ':memory:':
            db.bind(provider='sqlite', filename=filename)
        else:
            # pony按调用模块所在目录解析相对路径
            db.bind(provider='sqlite', filename=os.path.abspath(filename), create_db=True)
    if db.schema is None:
        db.generate_mapping(create_tables=True)
