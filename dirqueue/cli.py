"""
CLI interface for dirqueue using Click
Main entry point for all commands
"""
import click
import json
import multiprocessing
import os
import sys
from tabulate import tabulate

from .config import Config, get_config
from .exceptions import QueueError
from .log import setup_logging
from .models import JobState
from .queue import Queue
from .workers import start_worker

CONFIG_KEYS = {
    'queue-root': 'queue_root',
    'worker-poll-interval': 'worker_poll_interval',
    'rescue-interval': 'rescue_interval',
    'job-timeout': 'job_timeout',
    'command-property': 'command_property',
    'log-level': 'log_level',
    'log-format': 'log_format',
}

STATE_COLORS = {
    'staging': 'white',
    'submittable': 'yellow',
    'owned': 'blue',
    'completed': 'green',
    'failed': 'red',
}


def _abort(message):
    click.echo(click.style(f"Error: {message}", fg='red'), err=True)
    sys.exit(1)


def _open_queue(ctx) -> Queue:
    try:
        return Queue.open(ctx.obj['root'], owner_id=ctx.obj['owner'])
    except (OSError, ValueError) as e:
        _abort(f"Could not open queue at {ctx.obj['root']}: {e}")


def _find_owned(queue, job_id):
    job = queue.find_job(job_id, JobState.OWNED)
    if job.owner != queue.owner_id:
        raise QueueError(f"Job '{job_id}' is owned by {job.owner}, not {queue.owner_id}")
    return job


def _parse_assignment(text):
    key, sep, value = text.partition('=')
    if not sep or not key:
        raise click.BadParameter(f"Expected KEY=VALUE, got '{text}'")
    return key, value


@click.group()
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Path to config file')
@click.option('--root', help='Queue root directory (overrides config)')
@click.option('--owner', help='Owner id for take/finish/fail (defaults to the calling shell pid)')
@click.pass_context
def cli(ctx, config_path, root, owner):
    """
    dirqueue - A crash-tolerant job queue kept in a directory tree

    Submit jobs, let workers claim them and rescue jobs from dead workers.
    """
    cfg = Config(config_path) if config_path else get_config()
    setup_logging(cfg.log_level, cfg.log_format)
    ctx.obj = {
        'config': cfg,
        'config_path': config_path,
        'root': os.path.expanduser(root) if root else cfg.queue_root,
        # The CLI process is gone after each command; the shell that runs
        # it is the process that holds jobs across take/finish.
        'owner': owner or str(os.getppid()),
    }


@cli.command()
@click.pass_context
def init(ctx):
    """Create the queue directory layout."""
    root = ctx.obj['root']
    try:
        os.makedirs(root, exist_ok=True)
    except OSError as e:
        _abort(f"Could not create {root}: {e}")
    _open_queue(ctx)
    click.echo(click.style(f"[OK] Queue ready at {root}", fg='green'))


@cli.command()
@click.argument('command', required=False)
@click.option('--prefix', '-p', default='job', help='Prefix for the job id')
@click.option('--set', '-s', 'assignments', multiple=True, help='Property to set, as KEY=VALUE')
@click.pass_context
def submit(ctx, command, prefix, assignments):
    """
    Create and submit a new job, printing its id.

    COMMAND: shell command for workers to run (optional)

    Example:
        dirqueue submit "echo Hello"
        dirqueue submit --prefix build --set target=all "make all"
    """
    properties = [_parse_assignment(a) for a in assignments]
    queue = _open_queue(ctx)
    try:
        job = queue.create_job(prefix)
        for key, value in properties:
            job.set(key, value)
        if command is not None:
            job.set(ctx.obj['config'].command_property, command)
        job.submit()
    except (QueueError, ValueError) as e:
        _abort(str(e))
    click.echo(job.id)


@cli.command()
@click.pass_context
def take(ctx):
    """
    Claim one submittable job and print its id.

    Exits with status 2 when no job is available.
    """
    queue = _open_queue(ctx)
    try:
        job = queue.take()
    except QueueError as e:
        _abort(str(e))
    if job is None:
        click.echo(click.style("No jobs available", fg='yellow'), err=True)
        sys.exit(2)
    click.echo(job.id)


@cli.command()
@click.argument('job_id')
@click.pass_context
def finish(ctx, job_id):
    """
    Move an owned job to completed.

    JOB_ID: ID of the job to finish
    """
    queue = _open_queue(ctx)
    try:
        _find_owned(queue, job_id).finish()
    except (QueueError, ValueError) as e:
        _abort(str(e))
    click.echo(click.style(f"Job {job_id} completed", fg='green'))


@cli.command()
@click.argument('job_id')
@click.pass_context
def fail(ctx, job_id):
    """
    Move an owned job to failed.

    JOB_ID: ID of the job to fail
    """
    queue = _open_queue(ctx)
    try:
        _find_owned(queue, job_id).fail()
    except (QueueError, ValueError) as e:
        _abort(str(e))
    click.echo(click.style(f"Job {job_id} failed", fg='red'))


@cli.command(name='get')
@click.argument('job_id')
@click.argument('key')
@click.pass_context
def get_property(ctx, job_id, key):
    """
    Print a job property.

    Example:
        dirqueue get job1a2b3c stdout
    """
    queue = _open_queue(ctx)
    try:
        data = queue.find_job(job_id).get(key)
    except (QueueError, ValueError) as e:
        _abort(str(e))
    click.echo(data, nl=False)


@cli.command(name='set')
@click.argument('job_id')
@click.argument('key')
@click.argument('value')
@click.pass_context
def set_property(ctx, job_id, key, value):
    """
    Set a job property.

    Example:
        dirqueue set job1a2b3c progress 50
    """
    queue = _open_queue(ctx)
    try:
        queue.find_job(job_id).set(key, value)
    except (QueueError, ValueError) as e:
        _abort(str(e))
    click.echo(click.style(f"[OK] {job_id}: {key} set", fg='green'))


@cli.command()
@click.pass_context
def rescue(ctx):
    """Return jobs held by dead workers to the queue."""
    queue = _open_queue(ctx)
    try:
        rescued = queue.rescue_dead_jobs()
    except QueueError as e:
        _abort(str(e))
    if not rescued:
        click.echo(click.style("No jobs to rescue", fg='green'))
        return
    for job_id in rescued:
        click.echo(job_id)
    click.echo(click.style(f"[OK] Rescued {len(rescued)} job(s)", fg='green'), err=True)


@cli.command()
@click.pass_context
def status(ctx):
    """
    Show queue status summary.

    Displays job counts by state and the number of owner slots.
    """
    queue = _open_queue(ctx)
    try:
        status_info = queue.status()
    except QueueError as e:
        _abort(str(e))

    click.echo(click.style("\n=== Queue Status ===", fg='cyan', bold=True))
    click.echo(f"\nRoot: {queue.root}")
    click.echo(f"Total Jobs: {status_info['total_jobs']}")
    click.echo(f"Owner Slots: {status_info['owners']}")

    click.echo("\nJobs by State:")
    for state, count in status_info['jobs'].items():
        color = STATE_COLORS.get(state, 'white')
        click.echo(f"  {state.capitalize()}: {click.style(str(count), fg=color)}")

    click.echo()


@cli.command(name='list')
@click.option('--state', '-s', type=click.Choice([s.value for s in JobState]), help='Filter by state')
@click.option('--format', '-f', 'fmt', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def list_jobs(ctx, state, fmt):
    """
    List jobs, optionally filtered by state.

    Example:
        dirqueue list --state submittable
        dirqueue list --format json
    """
    queue = _open_queue(ctx)
    try:
        jobs = queue.list_jobs(state)
        rows = [(job, job.keys()) for job in jobs]
    except QueueError as e:
        _abort(str(e))

    if not jobs:
        msg = "No jobs found" + (f" with state '{state}'" if state else "")
        click.echo(click.style(msg, fg='yellow'))
        return

    if fmt == 'json':
        jobs_data = [dict(job.to_dict(), properties=keys) for job, keys in rows]
        click.echo(json.dumps(jobs_data, indent=2))
    else:
        headers = ['ID', 'State', 'Owner', 'Properties']
        table = []
        for job, keys in rows:
            props = ', '.join(keys)
            props = props if len(props) <= 40 else props[:37] + "..."
            table.append([job.id, job.state.value, job.owner or '-', props])

        click.echo(f"\n{len(jobs)} job(s) found:\n")
        click.echo(tabulate(table, headers=headers, tablefmt='grid'))
        click.echo()


@cli.group()
def worker():
    """Manage worker processes"""
    pass


def _spawn_workers(root, count, config_path):
    """Start `count` worker processes; each owns the slot named after its pid"""
    workers = {}
    for n in range(1, count + 1):
        name = f"worker-{n}"
        proc = multiprocessing.Process(target=start_worker, args=(root, name, config_path), name=name)
        proc.start()
        workers[name] = proc
        click.echo(f"Started {name} (PID: {proc.pid})")
    return workers


def _stop_workers(workers, grace=5.0):
    """SIGTERM every worker, then SIGKILL the ones still running after `grace` seconds"""
    for proc in workers.values():
        proc.terminate()
    stubborn = []
    for name, proc in workers.items():
        proc.join(timeout=grace)
        if proc.is_alive():
            proc.kill()
            stubborn.append(name)
    return stubborn


@worker.command()
@click.option('--count', '-c', default=1, help='Number of workers to start')
@click.pass_context
def start(ctx, count):
    """
    Start one or more worker processes.

    Example:
        dirqueue worker start --count 3
    """
    if count < 1:
        _abort("Worker count must be at least 1")

    root = ctx.obj['root']
    if not os.path.isdir(root):
        _abort(f"Queue root {root} does not exist (run 'dirqueue init')")

    workers = _spawn_workers(root, count, ctx.obj['config_path'])
    click.echo(click.style(f"[OK] {len(workers)} worker(s) running on {root}, Ctrl+C to stop", fg='green'))

    try:
        for proc in workers.values():
            proc.join()
    except KeyboardInterrupt:
        click.echo("\nStopping workers...")
        killed = _stop_workers(workers)
        if killed:
            click.echo(click.style(f"Killed unresponsive worker(s): {', '.join(killed)}", fg='yellow'))
        click.echo(click.style("[OK] All workers stopped", fg='green'))


@cli.group()
def config():
    """Manage configuration settings"""
    pass


def _convert(value):
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        return value


@config.command(name='set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def config_set(ctx, key, value):
    """
    Set a configuration value.

    Available keys: queue-root, worker-poll-interval, rescue-interval,
    job-timeout, command-property, log-level, log-format

    Example:
        dirqueue config set worker-poll-interval 2
        dirqueue config set queue-root /srv/jobs
    """
    internal_key = CONFIG_KEYS.get(key)
    if not internal_key:
        click.echo(f"Available keys: {', '.join(CONFIG_KEYS.keys())}", err=True)
        _abort(f"Unknown config key '{key}'")

    if internal_key not in ('queue_root', 'command_property', 'log_level', 'log_format'):
        value = _convert(value)

    ctx.obj['config'].set(internal_key, value)
    click.echo(click.style(f"[OK] Config updated: {key} = {value}", fg='green'))


@config.command(name='get')
@click.argument('key', required=False)
@click.pass_context
def config_get(ctx, key):
    """
    Get configuration value(s).

    Example:
        dirqueue config get queue-root
        dirqueue config get
    """
    cfg = ctx.obj['config']

    if key:
        internal_key = CONFIG_KEYS.get(key)
        if not internal_key:
            _abort(f"Unknown config key '{key}'")
        click.echo(f"{key}: {cfg.get(internal_key)}")
    else:
        click.echo(click.style("\n=== Configuration ===", fg='cyan', bold=True))
        for k, v in cfg.get_all().items():
            click.echo(f"  {k}: {v}")
        click.echo()


def main():
    """Main entry point"""
    cli()


if __name__ == '__main__':
    main()
