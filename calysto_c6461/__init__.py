"""Calysto C6461: assembler, simulator and Jupyter kernel for the CSCI 6461 machine."""

from ._version import __version__
from .assembler import Assembler, AssemblyError, assemble, parse_load
from .machine import Machine
from .memory import Cache, IllegalAddress, MachineFault, Memory
