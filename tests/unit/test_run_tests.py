"""
Test runner script: stage selection stays in step with the test tree
"""

import argparse
import importlib.util
from pathlib import Path

import pytest

pytestmark = pytest.mark.unit

ROOT = Path(__file__).resolve().parents[2]


@pytest.fixture(scope="module")
def runner():
    spec = importlib.util.spec_from_file_location(
        "run_tests", ROOT / "scripts" / "run_tests.py"
    )
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_stage_modules_exist(runner):
    for modules in runner.STAGES.values():
        for module in modules:
            assert (ROOT / module).is_file(), module


def test_every_test_module_belongs_to_a_stage(runner):
    listed = {m for modules in runner.STAGES.values() for m in modules}
    on_disk = {
        path.relative_to(ROOT).as_posix()
        for path in (ROOT / "tests").glob("*/test_*.py")
    }

    assert on_disk <= listed


def test_pytest_options(runner):
    args = argparse.Namespace(verbose=True, fail_fast=False, keyword="depeg")

    assert runner.pytest_options(args) == ["-v", "-k", "depeg"]


def test_coverage_options(runner):
    assert runner.coverage_options(0) == [
        "--cov=stableguard",
        "--cov=service",
        "--cov-report=term-missing",
        "--cov-report=html:htmlcov",
    ]
    assert runner.coverage_options(80)[-1] == "--cov-fail-under=80"
