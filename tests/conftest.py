"""
Shared fixtures for dirqueue tests
"""
import logging
import subprocess
import sys

import pytest
import structlog

from dirqueue import config as config_module
from dirqueue.config import Config
from dirqueue.queue import Queue


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep config files out of the real home and undo logging setup"""
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    (tmp_path / "home").mkdir()
    monkeypatch.setattr(config_module, "_config_instance", None)
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
    logging.getLogger().handlers = []


@pytest.fixture
def queue_root(tmp_path):
    """An existing, empty queue root directory"""
    root = tmp_path / "queue"
    root.mkdir()
    return str(root)


@pytest.fixture
def queue(queue_root):
    """An opened queue owned by the test process"""
    return Queue.open(queue_root)


@pytest.fixture
def config(tmp_path):
    """A Config stored in the test directory with fast worker timings"""
    cfg = Config(str(tmp_path / "config.json"))
    cfg.set("worker_poll_interval", 0.05)
    cfg.set("rescue_interval", 0)
    cfg.set("job_timeout", 10)
    return cfg


@pytest.fixture
def dead_pid():
    """Pid of a process that has already exited and been reaped"""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid
