"""
The C6461 computer: register file, memory behind a FIFO cache, three
I/O devices, and the fetch/decode/execute loop.

A Machine is UI-free. An operator console (the Jupyter kernel, a test,
a script) drives it through reset, step, run, halt, load, inspect,
cache_view, submit_keyboard, take_printer and preload_file, and reads
state() to observe it. execute() interprets the console's % magics.
"""

import sys
import time

from .assembler import AssemblyError, assemble, parse_load
from .decoder import CC_NAMES, decode, format_instruction
from .devices import Devices
from .memory import (FAULT_ILLEGAL_ADDRESS, FAULT_ILLEGAL_OPCODE, FAULT_NAMES,
                     Cache, MachineFault, Memory)
from .words import (MEMORY_SIZE, ascii_str, c_addr, c_bin, c_int, c_oct,
                    in_range, parse_octal, to_binary)

OVERFLOW = 0
UNDERFLOW = 1
DIVZERO = 2
EQUAL = 3

TRAP_VECTOR = 0
FAULT_VECTOR = 1
SAVED_PC = 2

class Machine(object):
    """
    The C6461 computer. This object can load, dump, and execute
    C6461 programs.
    """
    def __init__(self, kernel=None):
        self.kernel = kernel
        self.memory = Memory()
        self.cache = Cache()
        self.devices = Devices()
        self.breakpoints = {}
        # Functions for interpreting instructions:
        self.apply = {
            0o00: self.HLT,
            0o01: self.LDR,
            0o02: self.STR,
            0o03: self.LDA,
            0o04: self.AMR,
            0o05: self.SMR,
            0o06: self.AIR,
            0o07: self.SIR,
            0o10: self.JZ,
            0o11: self.JNE,
            0o12: self.JCC,
            0o13: self.JMA,
            0o14: self.JSR,
            0o15: self.RFS,
            0o16: self.SOB,
            0o17: self.JGE,
            0o20: self.MLT,
            0o21: self.DVD,
            0o22: self.TRR,
            0o23: self.AND,
            0o24: self.ORR,
            0o25: self.NOT,
            0o30: self.TRAP,
            0o31: self.SRC,
            0o32: self.RRC,
            0o41: self.LDX,
            0o42: self.STX,
            0o61: self.IN,
            0o62: self.OUT,
            0o63: self.CHK,
        }
        self.initialize()

    def initialize(self):
        self.filename = ""
        self.debug = False
        self.warn = True
        self.delay = 0.0
        self.max_steps = None
        self.labels = {}
        self.source = {}
        self.orig = 0
        self.breakpoints = {}
        self.reset()

    def reset(self):
        """
        Power-on reset: every register, memory word and device queue
        goes to zero and every cache line is invalidated.
        """
        debug = self.debug
        self.debug = False
        self.pc = 0
        self.ir = 0
        self.mar = 0
        self.mbr = 0
        self.mfr = 0
        self.cc = 0
        self.gpr = [0, 0, 0, 0]
        self.ixr = [0, 0, 0, 0]  # index 0 is "no indexing"
        self.memory.reset()
        self.cache.reset()
        self.devices.reset()
        self.halted = False
        self.running = False
        self.suspended = False
        self.waiting_for_input = False
        self.trap_code = None
        self.instruction_count = 0
        self.debug = debug

    #### Register file

    def get_pc(self):
        return self.pc

    def set_pc(self, value):
        self.pc = value
        if self.debug:
            self.Print("    PC <= %s" % c_oct(value, 4))

    def increment_pc(self, value=1):
        self.set_pc(self.get_pc() + value)

    def get_register(self, position):
        return self.gpr[position]

    def set_register(self, position, value):
        self.gpr[position] = c_bin(value)
        if self.debug:
            self.Print("    R%d <= %s" % (position, c_oct(value)))

    def get_index(self, position):
        return self.ixr[position]

    def set_index(self, position, value):
        if position == 0:
            return
        self.ixr[position] = c_bin(value)
        if self.debug:
            self.Print("    X%d <= %s" % (position, c_oct(value)))

    def get_cc(self, bit):
        return (self.cc >> bit) & 1

    def set_cc(self, bit, flag):
        if flag:
            self.cc |= 1 << bit
        else:
            self.cc &= ~(1 << bit) & 0b1111
        if self.debug:
            self.Print("    CC.%s <= %d" % (CC_NAMES[bit], int(bool(flag))))

    #### CPU-side memory access, always through the cache

    def read_memory(self, address):
        self.memory.check(address)
        self.mar = address
        value = self.cache.read(self.memory, address)
        self.mbr = value
        if self.debug:
            self.Print("    memory[%s] => %s" % (c_oct(address, 4), c_oct(value)))
        return value

    def write_memory(self, address, value):
        self.memory.check(address)
        self.mar = address
        self.cache.write(self.memory, address, value)
        self.mbr = c_bin(value)
        if self.debug:
            self.Print("    memory[%s] <= %s" % (c_oct(address, 4), c_oct(value)))

    def effective_address(self, inst, ix=None):
        """
        ADDR, plus the index register named by IX (0 means none), then
        one level of indirection when I is set.
        """
        if ix is None:
            ix = inst.ix
        ea = inst.address
        if ix:
            ea = c_bin(ea + self.get_index(ix))
        if inst.i:
            ea = self.read_memory(ea)
        return c_addr(ea)

    #### Faults and the execution loop

    def fault(self, code, message=None):
        self.mfr = code
        pc = self.get_pc()
        self.write_memory(SAVED_PC, pc)
        self.set_pc(FAULT_VECTOR)
        self.Error("Machine fault %d (%s) at PC %s\n" % (
            code, message or FAULT_NAMES.get(code, "unknown"), c_oct(pc, 4)))

    def step(self):
        """
        Execute one instruction. Returns False after HLT, after a fault,
        when waiting for keyboard input, or when the machine refuses to
        run because a fault or halt is latched.
        """
        if self.mfr or self.halted:
            return False
        pc = self.get_pc()
        if not (0 <= pc < MEMORY_SIZE):
            self.fault(FAULT_ILLEGAL_ADDRESS)
            return False
        try:
            self.ir = self.read_memory(pc)
            self.increment_pc()
            self.instruction_count += 1
            inst = decode(self.ir)
            if self.debug:
                line = self.source.get(pc, -1)
                line_str = (" [line %s]" % line) if (line != -1) else ""
                self.Print("(%s) %s%s (PC*: %s, IR: %s)" % (
                    self.instruction_count,
                    format_instruction(self.ir, self.lookup),
                    line_str,
                    c_oct(self.get_pc(), 4),
                    c_oct(self.ir)))
            if inst.opcode not in self.apply:
                raise MachineFault(FAULT_ILLEGAL_OPCODE,
                                   "Illegal Operation Code %s" % c_oct(inst.opcode, 2))
            self.apply[inst.opcode](inst)
        except MachineFault as exc:
            self.fault(exc.code, str(exc))
            return False
        return not (self.halted or self.waiting_for_input)

    def run(self, max_steps=None):
        """
        Step until HLT, a fault, a breakpoint, input starvation, the
        step limit, or halt(). Returns the number of instructions run.
        """
        if max_steps is None:
            max_steps = self.max_steps
        self.running = True
        self.suspended = False
        count = 0
        try:
            while self.running:
                if self.mfr or self.halted:
                    break
                ok = self.step()
                count += 1
                if not ok:
                    break
                if self.get_pc() in self.breakpoints:
                    self.suspended = True
                    self.Print("...breakpoint hit at", c_oct(self.get_pc(), 4))
                    break
                if max_steps is not None and count >= max_steps:
                    self.suspended = True
                    break
                if self.delay:
                    time.sleep(self.delay)
        finally:
            self.running = False
        return count

    def halt(self):
        self.running = False

    #### Console interface

    def load(self, address, value):
        """ Operator deposit; bypasses the cache but keeps it coherent """
        self.memory.write(address, value)
        self.cache.refresh(address, value)

    def inspect(self, address):
        """ Read memory without disturbing MAR, MBR or the cache """
        return self.memory.read(address)

    def cache_view(self):
        return self.cache.lines()

    def submit_keyboard(self, data):
        value = self.devices.keyboard.submit(data)
        self.waiting_for_input = False
        return value

    def take_printer(self):
        return self.devices.printer.take()

    def preload_file(self, words):
        self.devices.file_reader.preload(words)

    def ipl(self, records, labels=None, source=None):
        """
        Initial program load: reset, deposit every (address, word)
        record, and point PC at the first one.
        """
        self.reset()
        self.labels = labels or {}
        self.source = source or {}
        first = None
        for address, word in records:
            self.load(address, word)
            if first is None:
                first = address
        self.orig = first if first is not None else 0
        self.set_pc(self.orig)
        return len(records)

    def ipl_file(self, filename):
        with open(filename, encoding="utf-8") as fp:
            text = fp.read()
        self.filename = filename
        return self.ipl(parse_load(text))

    def load_assembly(self, assembly):
        return self.ipl(assembly.records, assembly.labels, assembly.source)

    def state(self):
        return {
            "PC": self.pc,
            "IR": self.ir,
            "MAR": self.mar,
            "MBR": self.mbr,
            "MFR": self.mfr,
            "CC": self.cc,
            "GPR": list(self.gpr),
            "IXR": list(self.ixr[1:]),
            "waitingForInput": self.waiting_for_input,
            "running": self.running,
        }

    #### Instructions

    def HLT(self, inst):
        self.halted = True

    def LDR(self, inst):
        ea = self.effective_address(inst)
        self.set_register(inst.r, self.read_memory(ea))

    def STR(self, inst):
        ea = self.effective_address(inst)
        self.write_memory(ea, self.get_register(inst.r))

    def LDA(self, inst):
        self.set_register(inst.r, self.effective_address(inst))

    def AMR(self, inst):
        ea = self.effective_address(inst)
        result = c_int(self.get_register(inst.r)) + c_int(self.read_memory(ea))
        self.set_cc(OVERFLOW, not in_range(result, 16))
        self.set_register(inst.r, result)

    def SMR(self, inst):
        ea = self.effective_address(inst)
        result = c_int(self.get_register(inst.r)) - c_int(self.read_memory(ea))
        self.set_cc(UNDERFLOW, result < -32768)
        self.set_cc(OVERFLOW, result > 32767)
        self.set_register(inst.r, result)

    def AIR(self, inst):
        result = c_int(self.get_register(inst.r)) + inst.immed
        self.set_cc(OVERFLOW, not in_range(result, 16))
        self.set_register(inst.r, result)

    def SIR(self, inst):
        result = c_int(self.get_register(inst.r)) - inst.immed
        self.set_cc(UNDERFLOW, result < -32768)
        self.set_cc(OVERFLOW, result > 32767)
        self.set_register(inst.r, result)

    def JZ(self, inst):
        ea = self.effective_address(inst)
        if self.get_register(inst.r) == 0:
            self.set_pc(ea)

    def JNE(self, inst):
        ea = self.effective_address(inst)
        if self.get_register(inst.r) != 0:
            self.set_pc(ea)

    def JCC(self, inst):
        ea = self.effective_address(inst)
        if self.get_cc(inst.r):
            self.set_pc(ea)

    def JMA(self, inst):
        self.set_pc(self.effective_address(inst))

    def JSR(self, inst):
        ea = self.effective_address(inst)
        self.set_register(3, self.get_pc())
        self.set_pc(ea)

    def RFS(self, inst):
        self.set_register(0, inst.address)
        self.set_pc(c_addr(self.get_register(3)))

    def SOB(self, inst):
        ea = self.effective_address(inst)
        self.set_register(inst.r, self.get_register(inst.r) - 1)
        if c_int(self.get_register(inst.r)) > 0:
            self.set_pc(ea)

    def JGE(self, inst):
        ea = self.effective_address(inst)
        if c_int(self.get_register(inst.r)) >= 0:
            self.set_pc(ea)

    def check_pair(self, inst):
        if inst.rx not in (0, 2):
            raise MachineFault(FAULT_ILLEGAL_OPCODE,
                               "%s needs R0 or R2, not R%d" % (inst.mnemonic, inst.rx))

    def MLT(self, inst):
        self.check_pair(inst)
        product = c_int(self.get_register(inst.rx)) * c_int(self.get_register(inst.ry))
        self.set_cc(OVERFLOW, not in_range(product, 32))
        self.set_register(inst.rx, product >> 16)
        self.set_register(inst.rx + 1, product)

    def DVD(self, inst):
        self.check_pair(inst)
        dividend = c_int(self.get_register(inst.rx))
        divisor = c_int(self.get_register(inst.ry))
        if divisor == 0:
            self.set_cc(DIVZERO, True)
            return
        self.set_cc(DIVZERO, False)
        quotient = abs(dividend) // abs(divisor)
        if (dividend < 0) != (divisor < 0):
            quotient = -quotient
        remainder = dividend - quotient * divisor
        self.set_register(inst.rx, quotient)
        self.set_register(inst.rx + 1, remainder)

    def TRR(self, inst):
        self.set_cc(EQUAL, self.get_register(inst.rx) == self.get_register(inst.ry))

    def AND(self, inst):
        self.set_register(inst.rx, self.get_register(inst.rx) & self.get_register(inst.ry))

    def ORR(self, inst):
        self.set_register(inst.rx, self.get_register(inst.rx) | self.get_register(inst.ry))

    def NOT(self, inst):
        self.set_register(inst.rx, ~self.get_register(inst.rx))

    def TRAP(self, inst):
        self.trap_code = inst.code
        self.write_memory(SAVED_PC, self.get_pc())
        self.set_pc(c_addr(self.read_memory(TRAP_VECTOR)))

    def SRC(self, inst):
        value = self.get_register(inst.r)
        if inst.lr:
            value = value << inst.count
        elif inst.al:
            value = c_int(value) >> inst.count
        else:
            value = value >> inst.count
        self.set_register(inst.r, value)

    def RRC(self, inst):
        value = self.get_register(inst.r)
        count = inst.count % 16
        if inst.lr:
            value = (value << count) | (value >> (16 - count))
        else:
            value = (value >> count) | (value << (16 - count))
        self.set_register(inst.r, value)

    def LDX(self, inst):
        ea = self.effective_address(inst, ix=0)
        self.set_index(inst.ix, self.read_memory(ea))

    def STX(self, inst):
        ea = self.effective_address(inst, ix=0)
        self.write_memory(ea, self.get_index(inst.ix))

    def IN(self, inst):
        if not self.devices.input_ready(inst.dev):
            # re-execute this IN once the operator supplies a value
            self.waiting_for_input = True
            self.increment_pc(-1)
            return
        self.waiting_for_input = False
        self.set_register(inst.r, self.devices.read(inst.dev))

    def OUT(self, inst):
        self.devices.write(inst.dev, self.get_register(inst.r))

    def CHK(self, inst):
        self.set_register(inst.r, self.devices.status(inst.dev))

    #### Display

    def Print(self, *args, **kwargs):
        print(*args, **kwargs)

    def Error(self, string):
        if self.kernel:
            self.kernel.Error(string)
        else:
            sys.stderr.write(string)

    def lookup(self, location, default=None):
        for label in self.labels:
            if self.labels[label] == location:
                return label
        if default is None:
            return location
        else:
            return default

    def flush_printer(self):
        text = self.take_printer()
        if text:
            self.Print(text, end="" if text.endswith("\n") else "\n")

    def dump_registers(self):
        self.Print()
        self.Print("=" * 60)
        self.Print("Registers:")
        self.Print("=" * 60)
        self.Print("PC: %s IR: %s MAR: %s MBR: %s" % (
            c_oct(self.pc, 4), c_oct(self.ir), c_oct(self.mar, 4), c_oct(self.mbr)))
        flags = " ".join(name for bit, name in enumerate(CC_NAMES) if self.get_cc(bit))
        self.Print("MFR: %o CC: %s %s" % (self.mfr, to_binary(self.cc, 4),
                                          ("(%s)" % flags) if flags else ""))
        self.Print(" ".join("R%d: %s" % (r, c_oct(self.gpr[r])) for r in range(4)))
        self.Print(" ".join("X%d: %s" % (x, c_oct(self.ixr[x])) for x in range(1, 4)))
        if self.waiting_for_input:
            self.Print("Waiting for keyboard input")

    def dump(self, orig_start=None, orig_stop=None, raw=False, header=True):
        if orig_start is None:
            start = self.orig
        else:
            start = orig_start
        if orig_stop is None:
            if self.source:
                stop = max(self.source.keys()) + 1
            else:
                stop = start + 10
        else:
            stop = orig_stop + 1
        if stop <= start:
            stop = start + 10
        if stop - start > 100:
            stop = start + 100
        stop = min(stop, MEMORY_SIZE)
        if header:
            self.Print("=" * 60)
            self.Print("Memory dump:" if raw else "Memory disassembled:")
            self.Print("=" * 60)
        for memory in range(start, stop):
            word = self.inspect(memory)
            label = self.lookup(memory, "")
            if label:
                label = label + ":"
            if raw:
                self.Print("%-10s %s: %s" % (label, c_oct(memory, 4), c_oct(word)))
                continue
            line = self.source.get(memory, "")
            if line or decode(word).legal and word != 0:
                self.Print("%-10s %s: %s  %-24s %s" % (
                    label, c_oct(memory, 4), c_oct(word),
                    format_instruction(word, self.lookup),
                    ("[line: %s]" % line) if line else ""))
            else:
                self.Print("%-10s %s: %s - %s %s" % (
                    label, c_oct(memory, 4), c_oct(word), c_int(word), ascii_str(word)))

    def report(self):
        self.flush_printer()
        if self.mfr:
            self.Print("=" * 60)
            self.Print("Computation FAULTED: %s" % FAULT_NAMES.get(self.mfr, self.mfr))
            self.Print("=" * 60)
        elif self.waiting_for_input:
            self.Print("=" * 60)
            self.Print("Computation WAITING for keyboard input; use %in VALUE then %run")
            self.Print("=" * 60)
        elif self.suspended:
            self.Print("=" * 60)
            self.Print("Computation SUSPENDED")
            self.Print("=" * 60)
        else:
            self.Print("=" * 60)
            self.Print("Computation completed")
            self.Print("=" * 60)
        self.Print("Instructions:", self.instruction_count)
        self.dump_registers()

    #### Console

    def run_console(self):
        """
        Run, answering keyboard starvation through the kernel's
        raw_input when one is attached.
        """
        while True:
            self.run()
            if self.waiting_for_input and self.kernel is not None:
                self.flush_printer()
                self.submit_keyboard(self.kernel.raw_input("Keyboard: "))
                continue
            break
        self.report()

    def execute_file(self, filename):
        with open(filename, encoding="utf-8") as fp:
            text = fp.read()
        self.filename = filename
        if self.assemble_text(text):
            self.run_console()

    def assemble_text(self, text):
        try:
            assembly = assemble(text, warn=self.warn)
        except AssemblyError as exc:
            self.Error("\nAssemble error\n    %s\n" % exc)
            return False
        self.load_assembly(assembly)
        return True

    def execute(self, text):
        words = [word.strip() for word in text.split()]
        if not words:
            return True
        if words[0].startswith("%"):
            try:
                return self.magic(words)
            except (ValueError, IndexError, OSError, MachineFault) as exc:
                self.Error("%s: %s\nHint: %%help %s\n" % (words[0], exc, words[0]))
                return False
        ### Else, must be code to assemble:
        if self.assemble_text(text):
            self.Print("Assembled! Use %dis or %dump to examine; use %run to run.")
            return True
        return False

    def magic(self, words):
        command = words[0]
        if command == "%dump":
            self.dump(*[parse_octal(word) for word in words[1:3]], raw=True)
        elif command == "%dis":
            self.dump(*[parse_octal(word) for word in words[1:3]])
        elif command == "%regs":
            self.dump_registers()
        elif command == "%d":
            self.debug = not self.debug
            self.Print("Debug is now %s" % ["off", "on"][int(self.debug)])
        elif command == "%warn":
            self.warn = bool(int(words[1]))
        elif command == "%pc":
            self.set_pc(c_addr(parse_octal(words[1])))
            self.halted = False
            self.dump_registers()
        elif command == "%labels":
            self.Print("Label", "Location")
            for key in sorted(self.labels, key=self.labels.get):
                self.Print(key + ":", c_oct(self.labels[key], 4))
        elif command == "%mem":
            location = parse_octal(words[1])
            self.load(location, parse_octal(words[2]))
            self.dump(location, location, raw=True)
        elif command == "%reg":
            self.set_named_register(words[1], parse_octal(words[2]))
            self.dump_registers()
        elif command == "%reset":
            self.reset()
            self.dump_registers()
        elif command == "%step":
            orig_debug = self.debug
            self.debug = True
            try:
                self.step()
            finally:
                self.debug = orig_debug
            self.flush_printer()
            self.dump_registers()
        elif command == "%run" or command == "%exe":
            self.run_console()
            return not self.mfr
        elif command == "%in":
            value = self.submit_keyboard(" ".join(words[1:]))
            self.Print("Keyboard <= %s" % c_oct(value))
        elif command == "%ipl":
            count = self.ipl_file(words[1])
            self.Print("Loaded %d words from %s; PC = %s" % (count, words[1], c_oct(self.pc, 4)))
        elif command == "%file":
            count = self.devices.file_reader.load(words[1])
            self.Print("File reader preloaded with %d characters" % count)
        elif command == "%cache":
            if self.kernel is not None:
                self.kernel.display_cache(self.cache_view(), self.cache.hits, self.cache.misses)
            else:
                self.Print(self.cache.format())
        elif command == "%bp":
            if len(words) > 1:
                if words[1] == "clear":
                    self.breakpoints = {}
                    self.Print("All breakpoints cleared")
                    return True
                self.breakpoints[parse_octal(words[1])] = True
            if self.breakpoints:
                self.Print("=" * 60)
                self.Print("Breakpoints")
                self.Print("=" * 60)
                for count, memory in enumerate(sorted(self.breakpoints), 1):
                    self.Print("    %d) " % count, end="")
                    self.dump(memory, memory, header=False)
            else:
                self.Print("    No breakpoints set")
        else:
            self.Error("Invalid Interactive Magic Directive\nHint: %help\n")
            return False
        return True

    def set_named_register(self, name, value):
        name = name.upper()
        if len(name) == 2 and name[0] == "R" and name[1] in "0123":
            self.set_register(int(name[1]), value)
        elif len(name) == 2 and name[0] == "X" and name[1] in "123":
            self.set_index(int(name[1]), value)
        elif name == "PC":
            self.set_pc(c_addr(value))
        elif name == "CC":
            self.cc = value & 0b1111
        elif name == "MFR":
            self.mfr = value & 0b1111
        else:
            raise ValueError("unknown register %r" % name)
