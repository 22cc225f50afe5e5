"""
The three simulated I/O devices.

    0  keyboard     values submitted by the operator
    1  printer      character sink
    2  file reader  code points preloaded from a paragraph file
"""

from collections import deque

from .words import c_bin, c_int

KEYBOARD = 0
PRINTER = 1
FILE_READER = 2

READY = 1

def parse_keyboard(data):
    """
    Turn operator text into a word: a signed decimal if it reads as
    one, otherwise the code point of its first character.
    """
    if isinstance(data, int):
        return c_bin(data)
    text = data.strip()
    try:
        return c_bin(int(text, 10))
    except ValueError:
        pass
    if not text:
        return 0
    return c_bin(ord(text[0]))

class Keyboard(object):
    def __init__(self):
        self.pending = deque()

    def reset(self):
        self.pending.clear()

    def submit(self, data):
        value = parse_keyboard(data)
        self.pending.append(value)
        return value

    def has_input(self):
        return len(self.pending) > 0

    def read(self):
        return self.pending.popleft()

class Printer(object):
    def __init__(self):
        self.buffer = []

    def reset(self):
        self.buffer = []

    def write_char(self, value):
        self.buffer.append(chr(value & 0xFF))

    def write_int(self, value):
        self.buffer.append("%d\n" % c_int(value))

    def take(self):
        text = "".join(self.buffer)
        self.buffer = []
        return text

class FileReader(object):
    def __init__(self):
        self.queue = deque()

    def reset(self):
        self.queue.clear()

    def preload(self, words):
        self.queue.extend(c_bin(word) for word in words)

    def preload_text(self, text):
        self.preload(ord(char) for char in text)

    def load(self, filename):
        with open(filename, encoding="utf-8") as fp:
            text = fp.read()
        self.preload_text(text)
        return len(text)

    def read(self):
        if self.queue:
            return self.queue.popleft()
        return 0

class Devices(object):
    """
    The device bus seen by IN, OUT and CHK.
    """
    def __init__(self):
        self.keyboard = Keyboard()
        self.printer = Printer()
        self.file_reader = FileReader()

    def reset(self):
        self.keyboard.reset()
        self.printer.reset()
        self.file_reader.reset()

    def status(self, dev):
        return READY

    def input_ready(self, dev):
        if dev == KEYBOARD:
            return self.keyboard.has_input()
        return True

    def read(self, dev):
        if dev == KEYBOARD:
            return self.keyboard.read()
        elif dev == FILE_READER:
            return self.file_reader.read()
        return 0

    def write(self, dev, value):
        if dev == PRINTER:
            self.printer.write_char(value)
        else:
            self.printer.write_int(value)
