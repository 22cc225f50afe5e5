from metakernel import MetaKernel
from IPython.display import HTML

from . import decoder
from ._version import __version__
from .machine import Machine
from .words import c_oct

magics = ["%bp", "%cache", "%d", "%dis", "%dump", "%file", "%in", "%ipl",
          "%labels", "%mem", "%pc", "%reg", "%regs", "%reset", "%run",
          "%step", "%warn"]

class CalystoC6461(MetaKernel):
    implementation = 'C6461'
    implementation_version = __version__
    language = 'Calysto C6461'
    language_version = '0.1'
    banner = "Calysto C6461 - assembly language of the CSCI 6461 machine"
    language_info = {
        'name': 'gas',
        'mimetype': 'text/x-gas',
        'file_extension': '.txt',
    }

    def __init__(self, *args, **kwargs):
        super(CalystoC6461, self).__init__(*args, **kwargs)
        self.machine = Machine(self)

    def get_usage(self):
        return """This is the Calysto C6461 Jupyter kernel.

A cell of assembly source is assembled and loaded (IPL) in one step.

C6461 Interactive Magic Directives:

 %bp [clear | SUSPENDOCT]           - show, clear, or set breakpoints
 %cache                             - show the cache lines
 %d                                 - toggle the execution trace
 %dis [STARTOCT [STOPOCT]]          - dump memory as program
 %dump [STARTOCT [STOPOCT]]         - list memory in octal
 %file FILENAME                     - preload the file reader (device 2)
 %in VALUE                          - type VALUE on the keyboard (device 0)
 %ipl FILENAME                      - reset and load a load file
 %labels                            - show the symbol table
 %mem OCTLOCATION OCTVALUE          - deposit into memory
 %pc OCTVALUE                       - set PC
 %reg REG OCTVALUE                  - set register REG (R0-R3, X1-X3) to OCTVALUE
 %regs                              - show registers
 %reset                             - power-on reset
 %run                               - run from PC until HLT, fault or breakpoint
 %step                              - execute the next instruction

OCT values are octal, like 0017 or 177777.

To get additional help on these items, use '%help %item'.

To see additional magics, use %lsmagic, and put a question mark after a magic
name.
"""

    def get_completions(self, info):
        token = info["help_obj"]
        matches = []
        for item in (list(decoder.mnemonic.values()) +
                     ["LOC", "DATA"] +
                     list(self.machine.labels.keys()) +
                     magics):
            if item.startswith(token) and item not in matches:
                matches.append(item)
        return matches

    def get_kernel_help_on(self, info, level=0, none_on_fail=False):
        expr = info["code"]
        if expr == "%bp":
            return """%bp - See, clear, or set a breakpoint.
See all of the breakpoints:
    %bp

Clear all of the breakpoints:
    %bp clear

Create a breakpoint at location 0017:
    %bp 0017
"""
        elif expr == "%cache":
            return """%cache - Show the sixteen cache lines, their tags and data
"""
        elif expr == "%dis":
            return """%dis - Disassemble memory
"""
        elif expr == "%dump":
            return """%dump - Dump memory
"""
        elif expr == "%file":
            return """%file - Preload the file reader (device 2) with the characters of a file
"""
        elif expr == "%in":
            return """%in - Submit a value to the keyboard (device 0)
A number is read as signed decimal; anything else as its first character.
"""
        elif expr == "%ipl":
            return """%ipl - Reset the machine and load a load file; PC goes to the first address
"""
        elif expr == "%mem":
            return """%mem - Set a memory location
"""
        elif expr == "%pc":
            return """%pc - Set the Program Counter
"""
        elif expr == "%reg":
            return """%reg - Set a register
"""
        elif expr == "%regs":
            return """%regs - See the registers
"""
        elif expr == "%reset":
            return """%reset - Reset the machine
"""
        elif expr == "%run":
            return """%run - Run the program from PC
"""
        elif expr == "%step":
            return """%step - Execute the next instruction
"""
        elif none_on_fail:
            return None
        else:
            return "No available help on '%s'" % expr

    def display_cache(self, lines, hits, misses):
        rows = []
        for index, valid, tag, data in lines:
            if valid:
                rows.append("<tr><td>%02d</td><td>1</td><td>%s</td><td>%s</td></tr>" % (
                    index, c_oct(tag, 4), c_oct(data)))
            else:
                rows.append("<tr><td>%02d</td><td>0</td><td></td><td></td></tr>" % index)
        self.Display(HTML(
            "<table><tr><th>Index</th><th>Valid</th><th>Tag (Oct)</th><th>Data (Oct)</th></tr>" +
            "".join(rows) +
            "</table><p>hits: %d misses: %d</p>" % (hits, misses)))

    def do_execute_file(self, filename):
        self.machine.execute_file(filename)

    def do_execute_direct(self, code):
        try:
            self.machine.execute(code.rstrip())
        except Exception as exc:
            self.Error(str(exc))
        except KeyboardInterrupt:
            self.machine.halt()
            self.Error("Keyboard Interrupt!")

    def do_is_complete(self, code):
        if code:
            if code.split()[-1].strip() != "":
                return {'status' : 'incomplete',
                        'indent': '    '}
            else:
                return {'status' : 'complete'}
        else:
            return {'status' : 'incomplete'}

    def repr(self, data):
        return repr(data)
