"""
Opcode table and instruction decoding.

The opcode lives in bits 15..10. Every opcode belongs to a format
class that says how the remaining ten bits are split:

    MEMORY     OP | R  | IX | I | ADDR
    XMEMORY    OP | 00 | IX | I | ADDR
    IMMEDIATE  OP | R  | 000    | IMM
    REGREG     OP | Rx | Ry | 000000
    SHIFT      OP | R  | AL | LR | 00 | COUNT
    IO         OP | R  | 000    | DEV
    TRAP       OP | 000000      | CODE
"""

from .words import c_int, c_oct, sext

MEMORY = "memory"
XMEMORY = "xmemory"
IMMEDIATE = "immediate"
REGREG = "regreg"
REG = "reg"
SHIFT = "shift"
IO = "io"
TRAP = "trap"
RETURN = "return"
NONE = "none"

# opcode (octal): (mnemonic, format class)
opcodes = {
    0o00: ("HLT", NONE),
    0o01: ("LDR", MEMORY),
    0o02: ("STR", MEMORY),
    0o03: ("LDA", MEMORY),
    0o04: ("AMR", MEMORY),
    0o05: ("SMR", MEMORY),
    0o06: ("AIR", IMMEDIATE),
    0o07: ("SIR", IMMEDIATE),
    0o10: ("JZ", MEMORY),
    0o11: ("JNE", MEMORY),
    0o12: ("JCC", MEMORY),
    0o13: ("JMA", MEMORY),
    0o14: ("JSR", MEMORY),
    0o15: ("RFS", RETURN),
    0o16: ("SOB", MEMORY),
    0o17: ("JGE", MEMORY),
    0o20: ("MLT", REGREG),
    0o21: ("DVD", REGREG),
    0o22: ("TRR", REGREG),
    0o23: ("AND", REGREG),
    0o24: ("ORR", REGREG),
    0o25: ("NOT", REG),
    0o30: ("TRAP", TRAP),
    0o31: ("SRC", SHIFT),
    0o32: ("RRC", SHIFT),
    0o41: ("LDX", XMEMORY),
    0o42: ("STX", XMEMORY),
    0o61: ("IN", IO),
    0o62: ("OUT", IO),
    0o63: ("CHK", IO),
}

mnemonic = dict((op, name) for op, (name, fmt) in opcodes.items())
opcode = dict((name, op) for op, (name, fmt) in opcodes.items())
format_class = dict((name, fmt) for op, (name, fmt) in opcodes.items())

CC_NAMES = ["OVERFLOW", "UNDERFLOW", "DIVZERO", "EQUAL"]

def get_opcode(word):
    return (word >> 10) & 0b111111

class Instruction(object):
    """
    Decoded view of an instruction word. Only the fields belonging to
    the word's format class are meaningful; the rest stay zero.
    """
    def __init__(self, word):
        self.word = word
        self.opcode = get_opcode(word)
        self.mnemonic, self.fmt = opcodes.get(self.opcode, (None, None))
        self.r = self.rx = (word & 0b0000001100000000) >> 8
        self.ix = self.ry = (word & 0b0000000011000000) >> 6
        self.i = (word & 0b0000000000100000) >> 5
        self.address = word & 0b0000000000011111
        self.al = (word & 0b0000000010000000) >> 7
        self.lr = (word & 0b0000000001000000) >> 6
        self.count = word & 0b0000000000001111
        self.dev = word & 0b0000000000011111
        self.code = word & 0b0000000000001111
        self.immed = c_int(sext(word & 0b0000000000011111, 5))

    @property
    def legal(self):
        return self.mnemonic is not None

    def __repr__(self):
        return "Instruction(%s: %s)" % (c_oct(self.word), format_instruction(self.word))

def decode(word):
    return Instruction(word)

def encode(name, r=0, ix=0, i=0, address=0, rx=None, ry=None, al=0, lr=0,
           count=0, dev=0, immed=0, code=0):
    """
    Build an instruction word from fields; the inverse of decode.
    Fields are masked to their widths.
    """
    op = opcode[name]
    fmt = format_class[name]
    word = op << 10
    if rx is not None:
        r = rx
    if ry is not None:
        ix = ry
    if fmt == MEMORY:
        word |= (r & 0b11) << 8 | (ix & 0b11) << 6 | (i & 1) << 5 | (address & 0b11111)
    elif fmt == XMEMORY:
        word |= (ix & 0b11) << 6 | (i & 1) << 5 | (address & 0b11111)
    elif fmt == IMMEDIATE:
        word |= (r & 0b11) << 8 | (immed & 0b11111)
    elif fmt in (REGREG, REG):
        word |= (r & 0b11) << 8 | (ix & 0b11) << 6
    elif fmt == SHIFT:
        word |= (r & 0b11) << 8 | (al & 1) << 7 | (lr & 1) << 6 | (count & 0b1111)
    elif fmt == IO:
        word |= (r & 0b11) << 8 | (dev & 0b11111)
    elif fmt == TRAP:
        word |= code & 0b1111
    elif fmt == RETURN:
        word |= address & 0b11111
    return word

def format_instruction(word, lookup=None):
    """
    Disassemble one word into assembler syntax. lookup, if given, maps
    an address to a label name (or returns the address unchanged).
    """
    inst = Instruction(word)
    if not inst.legal:
        return ";; ILLEGAL %s" % c_oct(word)
    name = inst.mnemonic
    fmt = inst.fmt
    if fmt == NONE:
        if word != 0:
            return "DATA %d" % word
        return name
    elif fmt == MEMORY:
        address = inst.address
        if lookup is not None and not inst.ix and not inst.i:
            address = lookup(address)
        text = "%s %d,%d,%s" % (name, inst.r, inst.ix, address)
        if inst.i:
            text += ",1"
        return text
    elif fmt == XMEMORY:
        text = "%s %d,%d" % (name, inst.ix, inst.address)
        if inst.i:
            text += ",1"
        return text
    elif fmt == IMMEDIATE:
        return "%s %d,%d" % (name, inst.r, inst.immed)
    elif fmt == REGREG:
        return "%s %d,%d" % (name, inst.rx, inst.ry)
    elif fmt == REG:
        return "%s %d" % (name, inst.rx)
    elif fmt == SHIFT:
        return "%s %d,%d,%d,%d" % (name, inst.r, inst.count, inst.lr, inst.al)
    elif fmt == IO:
        return "%s %d,%d" % (name, inst.r, inst.dev)
    elif fmt == TRAP:
        return "%s %d" % (name, inst.code)
    elif fmt == RETURN:
        if inst.address:
            return "%s %d" % (name, inst.address)
        return name
