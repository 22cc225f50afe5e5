"""
Word and bit helpers for the C6461 machine.

Everything on the machine is a 16-bit word; addresses are 11 bits.
Values are kept unsigned internally and converted to a signed view
only where arithmetic needs it.
"""

WORD_BITS = 16
WORD_MASK = 0xFFFF
ADDR_BITS = 11
ADDR_MASK = 0x7FF
MEMORY_SIZE = 1 << ADDR_BITS

def ascii_str(i):
    if i < 256:
        if i < 32 or i > 126: # integers
            return "(or %s)" % i
        else: # int, or ASCII
            return "(or %s, %s)" % (i, repr(chr(i)))
    else:
        return ""

def c_oct(v, digits=6):
    """ Format the value in the form 000000 """
    return '%0*o' % (digits, c_bin(v))

def c_bin(v):
    """ Truncate any extra bits """
    return v & WORD_MASK

def c_addr(v):
    return v & ADDR_MASK

def mask(bits):
    return (1 << bits) - 1

def sext(binary, bits):
    """
    Sign-extend the binary number, check the most significant
    bit
    """
    neg = binary & (1 << (bits - 1))
    if neg:
        return (binary | ~mask(bits)) & WORD_MASK
    else:
        return binary

def c_int(v):
    """ The signed (two's complement) view of a 16-bit word """
    if v & (1 << 15): # negative
        return -((~(v & WORD_MASK) + 1) & WORD_MASK)
    else:
        return v & WORD_MASK

def in_range(n, bits):
    """
    Is n representable as a signed number of this many bits?
    """
    return -(1 << (bits - 1)) <= n < (1 << (bits - 1))

def to_binary(v, bits=WORD_BITS):
    return '{0:0{1}b}'.format(v & mask(bits), bits)

def parse_octal(word):
    """ Parse an operator-entered octal number; accepts a leading 0o or o """
    word = word.strip().lower()
    if word.startswith("0o"):
        word = word[2:]
    elif word.startswith("o"):
        word = word[1:]
    return int(word, 8)
