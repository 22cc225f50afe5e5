"""
Pytest configuration for the Calysto C6461 test suite.

    pytest              # everything under tests/
    pytest -k cache     # one area
"""

import pytest

from calysto_c6461.assembler import assemble
from calysto_c6461.machine import Machine


def check_invariants(machine):
    """Properties that must hold between any two steps."""
    cache = machine.cache
    valid = [index for index, line in enumerate(cache.cache_lines) if line.valid]
    for index in valid:
        line = cache.cache_lines[index]
        assert machine.memory.read(line.tag) == line.data, \
            "line %d is stale for address %d" % (index, line.tag)
    assert sorted(cache.fifo) == valid
    assert len(set(cache.fifo)) == len(cache.fifo)
    tags = [cache.cache_lines[index].tag for index in valid]
    assert len(set(tags)) == len(tags)
    if not machine.mfr:
        assert 0 <= machine.pc <= 2048
    assert 0 <= machine.ir <= 0xFFFF
    assert 0 <= machine.mar < 2048
    assert 0 <= machine.mbr <= 0xFFFF
    assert 0 <= machine.mfr <= 0b1111
    assert 0 <= machine.cc <= 0b1111
    for value in machine.gpr + machine.ixr:
        assert 0 <= value <= 0xFFFF


@pytest.fixture
def machine():
    return Machine()


@pytest.fixture
def load_program(machine):
    """Assemble source into the machine fixture; returns the Assembly."""
    def load(source):
        assembly = assemble(source)
        machine.load_assembly(assembly)
        return assembly
    return load


@pytest.fixture
def run_program(machine, load_program):
    """Assemble, load and step to completion, checking invariants as it goes."""
    def run(source, max_steps=10000):
        load_program(source)
        for i in range(max_steps):
            ok = machine.step()
            check_invariants(machine)
            if not ok:
                break
        return machine
    return run
