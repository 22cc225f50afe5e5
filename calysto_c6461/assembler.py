"""
Two-pass assembler for the C6461 machine.

Pass 1 walks the source once to give every label an address. Pass 2
walks it again, encodes each instruction or DATA word, and produces a
listing and a load file:

    listing:   AAAAAA<tab>WWWWWW<tab>source line
    load file: AAAAAA WWWWWW

Both are six-digit octal. Source syntax, one statement per line:

    [label:] MNEMONIC [operand[,operand...]]   ; comment
    LOC n
    DATA x
"""

import argparse
import logging
import os
import re
import sys

from . import decoder
from .words import MEMORY_SIZE, c_bin, c_oct, mask

log = logging.getLogger(__name__)

label_pattern = re.compile(r"^(\w+):")
integer_pattern = re.compile(r"^[+-]?\d+$")
symbol_pattern = re.compile(r"^[A-Za-z_]\w*$")

# what the error message shows as the expected operands
operand_forms = {
    decoder.MEMORY: "R,IX,ADDR[,I] | R,ADDR | ADDR",
    decoder.XMEMORY: "IX,ADDR[,I]",
    decoder.IMMEDIATE: "R,IMMED",
    decoder.REGREG: "Rx,Ry",
    decoder.REG: "Rx",
    decoder.SHIFT: "R,count,LR,AL",
    decoder.IO: "R,DEVID",
    decoder.TRAP: "TrapCode",
    decoder.RETURN: "[IMMED]",
    decoder.NONE: "no operands",
}

class AssemblyError(Exception):
    def __init__(self, message, lineno=None, line=None):
        self.message = message
        self.lineno = lineno
        self.line = line
        super(AssemblyError, self).__init__(message)

    def __str__(self):
        if self.lineno is None:
            return self.message
        if self.line is None:
            return "line %d: %s" % (self.lineno, self.message)
        return "line %d: %s\n    %s" % (self.lineno, self.message, self.line.strip())

class Statement(object):
    """
    One source line with comment and label taken apart.
    """
    def __init__(self, lineno, text):
        self.lineno = lineno
        self.text = text
        self.label = None
        self.operation = None
        self.operands = ""
        line = text.strip()
        self.blank = not line or line.startswith(";")
        if self.blank:
            return
        if ";" in line:
            line = line[:line.index(";")].strip()
        match = label_pattern.match(line)
        if match:
            self.label = match.group(1)
            line = line[len(self.label) + 1:].strip()
        if line:
            parts = line.split(None, 1)
            self.operation = parts[0].upper()
            if len(parts) > 1:
                self.operands = parts[1].strip()

    def operand_list(self):
        operands = [word.strip() for word in self.operands.split(",")]
        while operands and operands[-1] == "":
            operands.pop()
        return operands

class Assembly(object):
    """
    The result of assembling one source: symbols, load records and
    listing lines.
    """
    def __init__(self, labels, records, listing, source=None):
        self.labels = labels
        self.records = records
        self.listing = listing
        self.source = source if source is not None else {}

    @property
    def start(self):
        if self.records:
            return self.records[0][0]
        return 0

    def load_text(self):
        return "".join("%s %s\n" % (c_oct(address), c_oct(word))
                       for address, word in self.records)

    def listing_text(self):
        return "".join(line + "\n" for line in self.listing)

    def write(self, listing_filename, load_filename):
        """
        Write both files or neither: each goes to a temporary name
        first and is moved into place once both are complete.
        """
        outputs = [(load_filename, self.load_text()),
                   (listing_filename, self.listing_text())]
        pending = []
        try:
            for filename, text in outputs:
                temporary = filename + ".tmp"
                pending.append(temporary)
                with open(temporary, "w", encoding="utf-8") as fp:
                    fp.write(text)
            for filename, text in outputs:
                os.replace(filename + ".tmp", filename)
        finally:
            for temporary in pending:
                if os.path.exists(temporary):
                    os.remove(temporary)

class Assembler(object):
    """
    Translate source text into an Assembly. An Assembler may be reused;
    each call to assemble starts a fresh symbol table.
    """
    def __init__(self, warn=True):
        self.warn = warn
        self.labels = {}
        self.source = {}
        self.encoders = {
            decoder.MEMORY: self.MEMORY,
            decoder.XMEMORY: self.XMEMORY,
            decoder.IMMEDIATE: self.IMMEDIATE,
            decoder.REGREG: self.REGREG,
            decoder.REG: self.REG,
            decoder.SHIFT: self.SHIFT,
            decoder.IO: self.IO,
            decoder.TRAP: self.TRAP,
            decoder.RETURN: self.RETURN,
            decoder.NONE: self.NONE,
        }

    def assemble(self, text):
        statements = [Statement(lineno, line)
                      for lineno, line in enumerate(text.splitlines(), 1)]
        self.labels = {}
        self.pass1(statements)
        log.debug("Pass 1 complete, %d labels", len(self.labels))
        for label, address in sorted(self.labels.items(), key=lambda item: item[1]):
            log.debug("  Label: %-10s Address: %s", label, c_oct(address))
        records, listing = self.pass2(statements)
        log.debug("Pass 2 complete, %d words", len(records))
        return Assembly(dict(self.labels), records, listing, dict(self.source))

    def pass1(self, statements):
        location = 0
        for statement in statements:
            if statement.blank:
                continue
            if statement.label is not None:
                if statement.label in self.labels:
                    raise AssemblyError('duplicate label "%s"' % statement.label,
                                        statement.lineno, statement.text)
                self.labels[statement.label] = location
            if statement.operation is None:
                continue
            if statement.operation == "LOC":
                location = self.get_location(statement)
            else:
                location += 1

    def pass2(self, statements):
        records = []
        listing = []
        self.source = {}
        location = 0
        for statement in statements:
            if statement.blank:
                listing.append("\t\t\t" + statement.text)
                continue
            if statement.operation is None:
                listing.append("%s\t%s" % (c_oct(location), statement.text))
                continue
            if statement.operation == "LOC":
                location = self.get_location(statement)
                listing.append("\t\t\t" + statement.text)
                continue
            if not (0 <= location < MEMORY_SIZE):
                raise AssemblyError("address %d is outside of memory" % location,
                                    statement.lineno, statement.text)
            word = self.encode(statement)
            records.append((location, word))
            self.source[location] = statement.lineno
            listing.append("%s\t%s\t%s" % (c_oct(location), c_oct(word), statement.text))
            location += 1
        return records, listing

    def get_location(self, statement):
        operands = statement.operand_list()
        if not operands:
            raise AssemblyError("LOC without a location", statement.lineno, statement.text)
        if len(operands) > 1:
            raise AssemblyError("LOC takes one operand", statement.lineno, statement.text)
        return self.get_integer(operands[0], statement)

    def get_integer(self, word, statement):
        if not integer_pattern.match(word):
            raise AssemblyError('bad integer "%s"' % word, statement.lineno, statement.text)
        return int(word, 10)

    def resolve(self, word, statement):
        """
        A decimal literal or a label from pass 1.
        """
        if word == "":
            raise AssemblyError("missing operand", statement.lineno, statement.text)
        if integer_pattern.match(word):
            return int(word, 10)
        if word in self.labels:
            return self.labels[word]
        if symbol_pattern.match(word):
            raise AssemblyError('unresolved symbol "%s"' % word, statement.lineno, statement.text)
        raise AssemblyError('bad integer "%s"' % word, statement.lineno, statement.text)

    def field(self, value, bits, name, statement, signed=False):
        """
        Fit value into an instruction field of the given width, warning
        when bits are lost.
        """
        low = -(1 << (bits - 1)) if signed else 0
        if not (low <= value <= mask(bits)) and self.warn:
            log.warning("line %d: possible overflow of %s: %s (field is %d bits)",
                        statement.lineno, name, value, bits)
        return value & mask(bits)

    def encode(self, statement):
        if statement.operation == "DATA":
            return self.DATA(statement)
        name = statement.operation
        if name not in decoder.opcode:
            raise AssemblyError('unknown mnemonic "%s"' % name, statement.lineno, statement.text)
        fmt = decoder.format_class[name]
        operands = [self.resolve(word, statement) if word else word
                    for word in statement.operand_list()]
        if "" in operands:
            raise AssemblyError("missing operand for %s (expected %s)" % (name, operand_forms[fmt]),
                                statement.lineno, statement.text)
        return self.encoders[fmt](name, operands, statement)

    def count(self, name, operands, statement, *allowed):
        if len(operands) in allowed:
            return
        fmt = decoder.format_class.get(name)
        expected = operand_forms.get(fmt, "one operand")
        if len(operands) < min(allowed):
            message = "missing operand for %s (expected %s)" % (name, expected)
        else:
            message = "unexpected operand for %s (expected %s)" % (name, expected)
        raise AssemblyError(message, statement.lineno, statement.text)

    #### Encoders, one per format class

    def DATA(self, statement):
        operands = statement.operand_list()
        if not operands:
            raise AssemblyError("missing operand for DATA", statement.lineno, statement.text)
        if len(operands) > 1:
            raise AssemblyError("unexpected operand for DATA", statement.lineno, statement.text)
        value = self.resolve(operands[0], statement)
        return self.field(value, 16, "DATA", statement, signed=True)

    def MEMORY(self, name, operands, statement):
        self.count(name, operands, statement, 1, 2, 3, 4)
        r = ix = i = 0
        if len(operands) == 1:
            address, = operands
        elif len(operands) == 2:
            r, address = operands
        elif len(operands) == 3:
            r, ix, address = operands
        else:
            r, ix, address, i = operands
        return decoder.encode(name,
                              r=self.field(r, 2, "R", statement),
                              ix=self.field(ix, 2, "IX", statement),
                              i=self.field(i, 1, "I", statement),
                              address=self.field(address, 5, "ADDR", statement))

    def XMEMORY(self, name, operands, statement):
        self.count(name, operands, statement, 2, 3)
        i = 0
        if len(operands) == 2:
            ix, address = operands
        else:
            ix, address, i = operands
        return decoder.encode(name,
                              ix=self.field(ix, 2, "IX", statement),
                              i=self.field(i, 1, "I", statement),
                              address=self.field(address, 5, "ADDR", statement))

    def IMMEDIATE(self, name, operands, statement):
        self.count(name, operands, statement, 2)
        r, immed = operands
        return decoder.encode(name,
                              r=self.field(r, 2, "R", statement),
                              immed=self.field(immed, 5, "IMMED", statement, signed=True))

    def REGREG(self, name, operands, statement):
        self.count(name, operands, statement, 2)
        rx, ry = operands
        return decoder.encode(name,
                              rx=self.field(rx, 2, "Rx", statement),
                              ry=self.field(ry, 2, "Ry", statement))

    def REG(self, name, operands, statement):
        self.count(name, operands, statement, 1)
        rx, = operands
        return decoder.encode(name, rx=self.field(rx, 2, "Rx", statement))

    def SHIFT(self, name, operands, statement):
        self.count(name, operands, statement, 4)
        r, count, lr, al = operands
        return decoder.encode(name,
                              r=self.field(r, 2, "R", statement),
                              count=self.field(count, 4, "count", statement),
                              lr=self.field(lr, 1, "LR", statement),
                              al=self.field(al, 1, "AL", statement))

    def IO(self, name, operands, statement):
        self.count(name, operands, statement, 2)
        r, dev = operands
        return decoder.encode(name,
                              r=self.field(r, 2, "R", statement),
                              dev=self.field(dev, 5, "DEVID", statement))

    def TRAP(self, name, operands, statement):
        self.count(name, operands, statement, 1)
        code, = operands
        return decoder.encode(name, code=self.field(code, 4, "trap code", statement))

    def RETURN(self, name, operands, statement):
        self.count(name, operands, statement, 0, 1)
        address = operands[0] if operands else 0
        return decoder.encode(name, address=self.field(address, 5, "IMMED", statement))

    def NONE(self, name, operands, statement):
        self.count(name, operands, statement, 0)
        return decoder.encode(name)

def assemble(text, warn=True):
    return Assembler(warn=warn).assemble(text)

def output_filenames(source_filename):
    base, ext = os.path.splitext(source_filename)
    return base + "_listing.txt", base + "_load.txt"

def assemble_file(source_filename):
    """
    Assemble a .txt source, writing <base>_listing.txt and
    <base>_load.txt next to it. Nothing is written if assembly fails.
    """
    with open(source_filename, encoding="utf-8") as fp:
        text = fp.read()
    log.info("Assembling %s", source_filename)
    assembly = assemble(text)
    listing_filename, load_filename = output_filenames(source_filename)
    assembly.write(listing_filename, load_filename)
    log.info("Listing file: %s", listing_filename)
    log.info("Load file: %s", load_filename)
    return assembly

def parse_load(text):
    """
    Read load-file text back into (address, word) records.
    """
    records = []
    for lineno, line in enumerate(text.splitlines(), 1):
        words = line.split()
        if not words:
            continue
        if len(words) != 2:
            raise ValueError("load file line %d: expected ADDRESS WORD, got %r" % (lineno, line))
        try:
            address, word = int(words[0], 8), int(words[1], 8)
        except ValueError:
            raise ValueError("load file line %d: not octal: %r" % (lineno, line))
        records.append((address, c_bin(word)))
    return records

def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="c6461-asm",
        description="Assemble a C6461 source file into a listing and a load file.")
    parser.add_argument("source", help="assembly source, a .txt file")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    if not args.source.endswith(".txt"):
        parser.error("source file must end in .txt: %s" % args.source)
    try:
        assemble_file(args.source)
    except AssemblyError as exc:
        log.error("%s: %s", args.source, exc)
        return 1
    except OSError as exc:
        log.error("%s", exc)
        return 1
    log.info("Assembly successful!")
    return 0

if __name__ == '__main__':
    sys.exit(main())
