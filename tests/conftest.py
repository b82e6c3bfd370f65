"""Shared pytest fixtures for all tests."""

import io
import os
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest

from docstore.database import Database
from gridstore.bucket import Bucket

PROJECT_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def database(tmp_path):
    """
    Create a document database in a temporary directory.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Database stored in tmp_path/gridstore_test.db
    """
    return Database(tmp_path / 'gridstore_test.db')


@pytest.fixture
def bucket(database):
    """
    Create a bucket with default options.

    Args:
        database: Temporary database fixture

    Returns:
        Bucket named "fs"
    """
    return Bucket(database)


@pytest.fixture
def files_collection(bucket):
    return bucket.files_collection


@pytest.fixture
def chunks_collection(bucket):
    return bucket.chunks_collection


@pytest.fixture
def upload(bucket):
    """
    Upload bytes to the bucket fixture.

    Returns:
        Callable (filename, data, **options) -> file_id
    """
    def _upload(filename, data, **options):
        return bucket.upload_from_stream(filename, io.BytesIO(data), **options)

    return _upload


@pytest.fixture
def run_script(database):
    """
    Run Python code in a fresh interpreter.

    The code sees the database fixture's file path as sys.argv[1].

    Returns:
        Callable (code) -> subprocess.CompletedProcess
    """
    def _run(code):
        env = dict(os.environ)
        env['PYTHONPATH'] = os.pathsep.join(filter(None, [str(PROJECT_ROOT), env.get('PYTHONPATH')]))
        return subprocess.run(
            [sys.executable, '-c', textwrap.dedent(code), str(database.path)],
            env=env,
            capture_output=True,
            text=True,
            timeout=60,
        )

    return _run
