"""
Tests for the dirqueue command line interface
"""
import json
import multiprocessing
import os
import time

import pytest
from click.testing import CliRunner

from dirqueue.cli import _stop_workers, cli
from dirqueue.models import JobState
from dirqueue.queue import Queue


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def invoke(runner, tmp_path, queue_root):
    """Run a CLI command against the test queue as owner 4242"""
    config_path = str(tmp_path / "config.json")

    def run(*args, owner="4242"):
        base = ["--config", config_path, "--root", queue_root, "--owner", owner]
        return runner.invoke(cli, base + list(args))

    return run


def test_cli_help(runner):
    """Test --help works without errors"""
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "submit" in result.output


def test_init_creates_root(runner, tmp_path):
    """init creates a missing root and its layout"""
    root = tmp_path / "new-root"
    result = runner.invoke(cli, ["--config", str(tmp_path / "c.json"), "--root", str(root), "init"])

    assert result.exit_code == 0
    assert (root / "submittable").is_dir()


def test_submit_take_finish(invoke, queue_root):
    """A job goes through submit, take and finish from the command line"""
    result = invoke("submit", "--prefix", "build", "--set", "target=all", "make all")
    assert result.exit_code == 0
    job_id = result.output.strip()
    assert job_id.startswith("build")

    queue = Queue(queue_root)
    job = queue.find_job(job_id)
    assert job.state == JobState.SUBMITTABLE
    assert job.get("command") == b"make all"
    assert job.get("target") == b"all"

    result = invoke("take")
    assert result.exit_code == 0
    assert result.output.strip() == job_id
    assert os.path.isdir(os.path.join(queue_root, "owned", "4242", job_id))

    result = invoke("finish", job_id)
    assert result.exit_code == 0
    assert os.path.isdir(os.path.join(queue_root, "completed", job_id))


def test_take_empty(invoke):
    """take exits with status 2 when nothing is submittable"""
    result = invoke("take")
    assert result.exit_code == 2


def test_fail_requires_ownership(invoke):
    """Only the owner can fail a job"""
    job_id = invoke("submit", "true").output.strip()
    invoke("take", owner="1111")

    result = invoke("fail", job_id, owner="2222")
    assert result.exit_code == 1

    result = invoke("fail", job_id, owner="1111")
    assert result.exit_code == 0


def test_get_set(invoke):
    """Properties can be set and read back"""
    job_id = invoke("submit").output.strip()

    assert invoke("set", job_id, "progress", "50").exit_code == 0
    result = invoke("get", job_id, "progress")
    assert result.exit_code == 0
    assert result.output == "50"

    result = invoke("get", job_id, "missing")
    assert result.exit_code == 1


def test_get_unknown_job(invoke):
    """Unknown job ids are an error"""
    result = invoke("get", "nope", "key")
    assert result.exit_code == 1


def test_submit_bad_assignment(invoke):
    """--set needs KEY=VALUE"""
    result = invoke("submit", "--set", "novalue")
    assert result.exit_code != 0


def test_rescue(invoke, queue_root, dead_pid):
    """rescue lists the jobs moved back to submittable"""
    Queue.open(queue_root)
    os.makedirs(os.path.join(queue_root, "owned", str(dead_pid), "orphan"))

    result = invoke("rescue", owner=str(os.getpid()))

    assert result.exit_code == 0
    assert "orphan" in result.output
    assert os.path.isdir(os.path.join(queue_root, "submittable", "orphan"))


def test_status_and_list(invoke):
    """status counts jobs and list shows them"""
    invoke("submit", "true")
    invoke("submit", "false")

    result = invoke("status")
    assert result.exit_code == 0
    assert "Submittable: 2" in result.output

    result = invoke("list", "--state", "submittable", "--format", "json")
    assert result.exit_code == 0
    jobs = json.loads(result.output)
    assert len(jobs) == 2
    assert jobs[0]["properties"] == ["command"]

    result = invoke("list")
    assert result.exit_code == 0
    assert "2 job(s) found" in result.output


def test_list_empty(invoke):
    """Listing an empty queue says so"""
    result = invoke("list", "--state", "failed")
    assert result.exit_code == 0
    assert "No jobs found" in result.output


def test_config_set_get(invoke):
    """Config values are converted and persisted"""
    result = invoke("config", "set", "worker-poll-interval", "2.5")
    assert result.exit_code == 0

    result = invoke("config", "get", "worker-poll-interval")
    assert result.output.strip() == "worker-poll-interval: 2.5"

    result = invoke("config", "set", "nonsense", "1")
    assert result.exit_code == 1


def test_worker_start_rejects_zero(invoke):
    """worker start needs at least one worker"""
    result = invoke("worker", "start", "--count", "0")
    assert result.exit_code == 1
    assert "at least 1" in result.output


def test_worker_start_missing_root(runner, tmp_path):
    """worker start refuses a root that was never initialised"""
    missing = str(tmp_path / "nowhere")
    result = runner.invoke(cli, ["--config", str(tmp_path / "c.json"), "--root", missing, "worker", "start"])
    assert result.exit_code == 1
    assert "does not exist" in result.output


def test_stop_workers():
    """Stopping terminates every worker process"""
    procs = {f"worker-{n}": multiprocessing.Process(target=time.sleep, args=(30,)) for n in (1, 2)}
    for proc in procs.values():
        proc.start()

    assert _stop_workers(procs, grace=5.0) == []
    assert not any(proc.is_alive() for proc in procs.values())
