"""
Main memory and the FIFO cache that sits between it and the CPU.

The cache owns its sixteen lines and its fill queue; the memory it
fronts is handed to every call, so neither object points back at the
machine.
"""

from array import array
from collections import deque

from .words import MEMORY_SIZE, c_bin, c_oct

FAULT_ILLEGAL_ADDRESS = 1
FAULT_ILLEGAL_TRAP = 2
FAULT_TRAP = 3
FAULT_ILLEGAL_OPCODE = 4

FAULT_NAMES = {
    FAULT_ILLEGAL_ADDRESS: "Illegal Memory Address",
    FAULT_ILLEGAL_TRAP: "Illegal TRAP code",
    FAULT_TRAP: "TRAP executed",
    FAULT_ILLEGAL_OPCODE: "Illegal Operation Code",
}

class MachineFault(Exception):
    """
    Raised inside an instruction; the machine turns it into a
    machine fault (MFR, saved PC, fault vector).
    """
    def __init__(self, code, message=None):
        self.code = code
        if message is None:
            message = FAULT_NAMES.get(code, "Machine fault %d" % code)
        super(MachineFault, self).__init__(message)

class IllegalAddress(MachineFault):
    def __init__(self, address):
        self.address = address
        super(IllegalAddress, self).__init__(
            FAULT_ILLEGAL_ADDRESS,
            "Illegal Memory Address: %s" % address)

class Memory(object):
    """
    The 2048-word backing store.
    """
    def __init__(self, size=MEMORY_SIZE):
        self.size = size
        self.reset()

    def reset(self):
        self.words = array('i', [0] * self.size)

    def check(self, address):
        if not (0 <= address < self.size):
            raise IllegalAddress(address)

    def read(self, address):
        self.check(address)
        return self.words[address]

    def write(self, address, value):
        self.check(address)
        self.words[address] = c_bin(value)

    def __len__(self):
        return self.size

    def __getitem__(self, address):
        return self.read(address)

    def __setitem__(self, address, value):
        self.write(address, value)

class CacheLine(object):
    __slots__ = ("valid", "tag", "data")

    def __init__(self):
        self.invalidate()

    def invalidate(self):
        self.valid = False
        self.tag = -1
        self.data = 0

    def __repr__(self):
        if self.valid:
            return "CacheLine(tag=%s, data=%s)" % (c_oct(self.tag, 4), c_oct(self.data))
        return "CacheLine(invalid)"

class Cache(object):
    """
    Sixteen fully associative lines, write-through, write-allocate,
    first-in first-out replacement.
    """
    size = 16

    def __init__(self, size=None):
        if size is not None:
            self.size = size
        self.cache_lines = [CacheLine() for i in range(self.size)]
        self.fifo = deque()
        self.hits = 0
        self.misses = 0

    def reset(self):
        for line in self.cache_lines:
            line.invalidate()
        self.fifo.clear()
        self.hits = 0
        self.misses = 0

    def find(self, address):
        """ Index of the valid line holding address, or None """
        for index, line in enumerate(self.cache_lines):
            if line.valid and line.tag == address:
                return index
        return None

    def read(self, memory, address):
        index = self.find(address)
        if index is not None:
            self.hits += 1
            return self.cache_lines[index].data
        self.misses += 1
        data = memory.read(address)
        self.install(address, data)
        return data

    def write(self, memory, address, value):
        value = c_bin(value)
        memory.write(address, value)
        index = self.find(address)
        if index is not None:
            self.cache_lines[index].data = value
        else:
            self.install(address, value)

    def refresh(self, address, value):
        """
        Keep a cached copy current after memory was changed behind the
        cache's back (operator deposits, IPL). Never allocates.
        """
        index = self.find(address)
        if index is not None:
            self.cache_lines[index].data = c_bin(value)

    def install(self, address, data):
        for index, line in enumerate(self.cache_lines):
            if not line.valid:
                line.valid = True
                line.tag = address
                line.data = data
                self.fifo.append(index)
                return index
        index = self.fifo.popleft()
        line = self.cache_lines[index]
        line.tag = address
        line.data = data
        self.fifo.append(index)
        return index

    def lines(self):
        """ (index, valid, tag, data) for every line, in index order """
        return [(index, line.valid, line.tag, line.data)
                for index, line in enumerate(self.cache_lines)]

    def tags(self):
        return set(line.tag for line in self.cache_lines if line.valid)

    def format(self):
        rows = ["Index | Valid | Tag (Oct) | Data (Oct)",
                "--------------------------------------"]
        for index, valid, tag, data in self.lines():
            if valid:
                rows.append("  %02d  |   1   |  %s   |  %s" % (
                    index, c_oct(tag, 4), c_oct(data)))
            else:
                rows.append("  %02d  |   0   |   ----   |  ------" % index)
        rows.append("hits: %d misses: %d" % (self.hits, self.misses))
        return "\n".join(rows)
