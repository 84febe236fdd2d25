"""CLI命令"""
import asyncio
import click
import yaml
from tabulate import tabulate
from ..config import config
from ..core import InvalidSpecError, JobController
from ..db import init_db, list_status_records, get_status_record
from ..models import TFJob, TFJobSpec, TFJobStatus


def load_job_spec(path):
    """从YAML文件加载TFJob，支持完整资源或仅spec部分"""
    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}
    if 'spec' in data:
        return TFJob.model_validate(data).spec
    return TFJobSpec.model_validate(data)


def load_events(path):
    """从YAML文件加载副本状态上报列表"""
    with open(path, 'r') as f:
        events = yaml.safe_load(f) or []
    if not isinstance(events, list):
        raise click.BadParameter('事件文件必须是列表')
    return events


async def replay(spec, events):
    """接纳任务并依次应用状态上报，返回最终状态"""
    controller = JobController(tolerated_failures=config.get_tolerated_failures())
    await controller.admit_job(spec)
    for event in events:
        controller.apply_replica_observation(
            spec.runtime_id,
            event.get('type'),
            event.get('index'),
            event.get('state')
        )
    await controller.drain(spec.runtime_id)
    return await controller.retire(spec.runtime_id)


def print_status(runtime_id, status: TFJobStatus):
    """以表格形式打印任务状态"""
    print(f"\n任务: {runtime_id}")
    print(f"阶段: {status.phase.value or 'None'}")
    print(f"原因: {status.reason}")

    rows = []
    for replica_type, replica_status in status.tf_replica_statuses.items():
        counts = ', '.join(
            f"{state.value}={count}" for state, count in replica_status.tf_replicas_states.items()
        )
        rows.append([replica_type.value, replica_status.state.value, counts or '-'])
    if rows:
        print("\n副本状态:")
        print(tabulate(rows, headers=['副本类型', '总体状态', '各状态数量'], tablefmt='grid'))

    rows = [
        [
            c.type.value,
            c.status.value,
            c.reason,
            c.last_transition_time.isoformat() if c.last_transition_time else ''
        ]
        for c in status.conditions
    ]
    if rows:
        print("\n状态历史:")
        print(tabulate(rows, headers=['类型', '状态', '原因', '时间'], tablefmt='grid'))


def _emit(spec, status, output):
    if output == 'yaml':
        print(yaml.safe_dump(status.to_dict(), sort_keys=False, allow_unicode=True))
    else:
        print_status(spec.runtime_id, status)


@click.group()
@click.option('--config', 'config_path', type=click.Path(), help='配置文件路径')
def cli(config_path=None):
    """TFJob生命周期管理工具"""
    config.load(config_path)


@cli.command()
@click.argument('job_file', type=click.Path(exists=True))
@click.option('--output', '-o', type=click.Choice(['table', 'yaml']), default='table', help='输出格式')
def validate(job_file, output):
    """校验TFJob并输出初始状态"""
    try:
        spec = load_job_spec(job_file)
        status = asyncio.run(replay(spec, []))
    except (InvalidSpecError, ValueError, yaml.YAMLError) as e:
        print(f"配置错误: {e}")
        raise SystemExit(1)
    _emit(spec, status, output)


@cli.command()
@click.argument('job_file', type=click.Path(exists=True))
@click.argument('events_file', type=click.Path(exists=True))
@click.option('--output', '-o', type=click.Choice(['table', 'yaml']), default='table', help='输出格式')
def simulate(job_file, events_file, output):
    """回放副本状态上报并输出最终状态"""
    try:
        spec = load_job_spec(job_file)
        events = load_events(events_file)
        status = asyncio.run(replay(spec, events))
    except (InvalidSpecError, ValueError, yaml.YAMLError) as e:
        print(f"配置错误: {e}")
        raise SystemExit(1)
    _emit(spec, status, output)


@cli.command(name='list')
@click.option('--phase', help='筛选指定阶段的任务')
def list_jobs(phase=None):
    """列出状态存储中的任务"""
    init_db(config.get_db_config().get('filename', 'tfjobs.sqlite'))
    records = list_status_records(phase)

    headers = ['运行时ID', '命名空间', '名称', '阶段', '原因', '更新时间']
    rows = [
        [
            r['runtime_id'],
            r['namespace'],
            r['name'],
            r['phase'],
            r['reason'],
            r['updated_at'].strftime('%Y-%m-%d %H:%M:%S')
        ]
        for r in records
    ]

    if rows:
        print(tabulate(rows, headers=headers, tablefmt='grid'))
    else:
        print("没有找到任何任务")


@cli.command()
@click.argument('runtime_id')
def status(runtime_id):
    """查看指定任务的详细状态"""
    init_db(config.get_db_config().get('filename', 'tfjobs.sqlite'))
    record = get_status_record(runtime_id)
    if record is None:
        print(f"未找到任务: {runtime_id}")
        raise SystemExit(1)

    if record['namespace'] or record['name']:
        print(f"资源: {record['namespace']}/{record['name']}")
    print(f"创建时间: {record['created_at'].strftime('%Y-%m-%d %H:%M:%S')}")
    if record['completed_at']:
        print(f"完成时间: {record['completed_at'].strftime('%Y-%m-%d %H:%M:%S')}")
    print_status(runtime_id, TFJobStatus.from_dict(record['status']))


@cli.command()
@click.pass_context
def run(ctx):
    """启动operator"""
    from ..__main__ import main as operator_main
    operator_main(ctx.parent.params.get('config_path'))
