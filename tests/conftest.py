"""
Shared fixtures for the SPL interpreter tests.

- outputs: list that receives every value the program emits
- interpreter: Interpreter wired to the capturing runtime
- run(): run a program given as lines, return its output value
- source_file(): write a program to a temporary .spl file
"""

import pytest

from splinterp.spl import Interpreter
from splinterp.runtime import createRuntimeCapture


def program(*lines: str) -> str:
    return "\n".join(lines) + "\n"


@pytest.fixture
def outputs():
    return []


@pytest.fixture
def interpreter(outputs):
    return Interpreter(runtime=createRuntimeCapture(outputs))


@pytest.fixture
def run(outputs):
    def _run(*lines, **options):
        interp = Interpreter(runtime=createRuntimeCapture(outputs), **options)
        return interp.run_source(program(*lines))
    return _run


@pytest.fixture
def source_file(tmp_path):
    def _write(*lines, name="prog.spl"):
        path = tmp_path / name
        path.write_text(program(*lines), encoding="utf-8")
        return str(path)
    return _write
