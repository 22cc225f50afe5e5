import pytest

from calysto_c6461.decoder import encode
from calysto_c6461.machine import DIVZERO, EQUAL, OVERFLOW, UNDERFLOW, Machine
from calysto_c6461.memory import FAULT_ILLEGAL_ADDRESS, FAULT_ILLEGAL_OPCODE

from conftest import check_invariants

START = 100


def place(machine, *words):
    """Put instruction words at START and set PC there."""
    for offset, value in enumerate(words):
        machine.load(START + offset, value)
    machine.set_pc(START)


def test_power_on_state(machine):
    state = machine.state()
    assert state == {
        "PC": 0, "IR": 0, "MAR": 0, "MBR": 0, "MFR": 0, "CC": 0,
        "GPR": [0, 0, 0, 0], "IXR": [0, 0, 0],
        "waitingForInput": False, "running": False,
    }
    assert not any(valid for index, valid, tag, data in machine.cache_view())


def test_cache_hit_on_reread(machine, load_program):
    load_program("""\
LOC 200
LDX 1,10
LDR 0,1,4
LDR 1,1,4
HLT
LOC 10
DATA 96
LOC 100
DATA 1234
""")
    assert machine.cache.tags() == set()
    machine.step()
    machine.step()
    assert machine.gpr[0] == 1234
    lines = [line for line in machine.cache_view() if line[1] and line[2] == 100]
    assert lines == [(lines[0][0], True, 100, 1234)]
    before = machine.cache.tags()
    hits = machine.cache.hits
    machine.step()
    assert machine.gpr[1] == 1234
    assert machine.cache.hits == hits + 1
    # only the instruction fetch of the second LDR was new
    assert machine.cache.tags() - before == {202}
    assert len([line for line in machine.cache_view() if line[1] and line[2] == 100]) == 1
    check_invariants(machine)


def test_effective_address_with_index_and_indirection(machine):
    machine.set_index(1, 3)
    machine.load(8, 42)
    machine.load(42, 7)
    place(machine, encode("LDR", r=0, ix=1, address=5, i=1))
    assert machine.step()
    assert machine.gpr[0] == 7
    assert machine.mar == 42
    assert machine.mbr == 7
    assert machine.pc == START + 1


def test_lda_loads_the_address(machine):
    machine.set_index(2, 20)
    place(machine, encode("LDA", r=1, ix=2, address=5))
    machine.step()
    assert machine.gpr[1] == 25


def test_str_writes_through(machine):
    machine.set_register(2, 0o123)
    place(machine, encode("STR", r=2, address=30))
    machine.step()
    assert machine.inspect(30) == 0o123
    assert 30 in machine.cache.tags()


def test_ldx_stx(machine):
    machine.load(20, 7)
    place(machine,
          encode("LDX", ix=2, address=20),
          encode("STX", ix=2, address=21))
    machine.step()
    assert machine.ixr[2] == 7
    machine.step()
    assert machine.inspect(21) == 7


def test_amr_overflow(machine):
    machine.load(20, 1)
    machine.set_register(0, 32767)
    place(machine, encode("AMR", r=0, address=20))
    machine.step()
    assert machine.gpr[0] == 0x8000
    assert machine.get_cc(OVERFLOW)


def test_smr_underflow(machine):
    machine.load(20, 1)
    machine.set_register(0, 0x8000)
    place(machine, encode("SMR", r=0, address=20), encode("SMR", r=0, address=20))
    machine.step()
    assert machine.gpr[0] == 0x7FFF
    assert machine.get_cc(UNDERFLOW)
    machine.step()
    assert machine.gpr[0] == 0x7FFE
    assert not machine.get_cc(UNDERFLOW)


def test_immediates_are_signed(machine):
    place(machine,
          encode("AIR", r=0, immed=-1),
          encode("AIR", r=1, immed=10),
          encode("SIR", r=1, immed=3))
    machine.step()
    assert machine.gpr[0] == 0xFFFF
    assert not machine.get_cc(OVERFLOW)
    machine.step()
    machine.step()
    assert machine.gpr[1] == 7


@pytest.mark.parametrize("name, start, flag, expected", [
    ("AIR", 0x7FFF, OVERFLOW, 0x8000),
    ("SIR", 0x8000, UNDERFLOW, 0x7FFF),
])
def test_immediate_flags(machine, name, start, flag, expected):
    machine.set_register(1, start)
    place(machine, encode(name, r=1, immed=1), encode("AIR", r=2, immed=1))
    machine.step()
    assert machine.gpr[1] == expected
    assert machine.get_cc(flag)
    machine.step()
    if flag == OVERFLOW:
        # the next in-range AIR clears it
        assert not machine.get_cc(OVERFLOW)


def test_mlt(machine):
    machine.set_register(0, 300)
    machine.set_register(2, -200 & 0xFFFF)
    place(machine, encode("MLT", rx=0, ry=2))
    machine.step()
    assert machine.gpr[0] == 0xFFFF
    assert machine.gpr[1] == (-60000) & 0xFFFF
    assert not machine.get_cc(OVERFLOW)


def test_dvd_truncates(machine):
    machine.set_register(0, -7 & 0xFFFF)
    machine.set_register(2, 2)
    place(machine, encode("DVD", rx=0, ry=2))
    machine.step()
    assert machine.gpr[0] == -3 & 0xFFFF
    assert machine.gpr[1] == -1 & 0xFFFF
    assert not machine.get_cc(DIVZERO)


def test_divide_by_zero(machine):
    machine.set_register(2, 100)
    machine.set_register(3, 0)
    place(machine, encode("DVD", rx=2, ry=3))
    assert machine.step()
    assert machine.get_cc(DIVZERO)
    assert machine.gpr[2] == 100
    assert machine.gpr[3] == 0
    assert machine.mfr == 0


def test_register_pair_must_be_even(machine):
    place(machine, encode("MLT", rx=1, ry=2))
    assert not machine.step()
    assert machine.mfr == FAULT_ILLEGAL_OPCODE


def test_logic(machine):
    machine.set_register(0, 0b1100)
    machine.set_register(1, 0b1010)
    machine.set_register(2, 0b1100)
    place(machine,
          encode("TRR", rx=0, ry=2),
          encode("TRR", rx=0, ry=1),
          encode("AND", rx=0, ry=1),
          encode("ORR", rx=2, ry=1),
          encode("NOT", rx=1))
    machine.step()
    assert machine.get_cc(EQUAL)
    machine.step()
    assert not machine.get_cc(EQUAL)
    machine.step()
    assert machine.gpr[0] == 0b1000
    machine.step()
    assert machine.gpr[2] == 0b1110
    machine.step()
    assert machine.gpr[1] == 0xFFFF ^ 0b1010


@pytest.mark.parametrize("name, count, lr, al, expected", [
    ("SRC", 1, 1, 0, 0x0002),
    ("SRC", 1, 0, 0, 0x4000),
    ("SRC", 1, 0, 1, 0xC000),
    ("SRC", 4, 1, 1, 0x0010),
    ("RRC", 1, 0, 0, 0xC000),
    ("RRC", 4, 1, 0, 0x0018),
    ("RRC", 0, 1, 0, 0x8001),
])
def test_shift_and_rotate(machine, name, count, lr, al, expected):
    machine.set_register(3, 0x8001)
    place(machine, encode(name, r=3, count=count, lr=lr, al=al))
    machine.step()
    assert machine.gpr[3] == expected


def test_sob_loop(machine, run_program):
    run_program("""\
LOC 100
Start: LDR 1,0,Count
Loop:  AIR 0,2
       SOB 1,0,Ptr,1
       HLT
LOC 20
Count: DATA 5
Ptr:   DATA Loop
""")
    assert machine.halted
    assert machine.gpr[0] == 10
    assert machine.gpr[1] == 0
    assert machine.mfr == 0


def test_subroutine_call_and_return(machine, run_program):
    run_program("""\
LOC 100
      JSR 0,0,SubPtr,1
      HLT
Sub:  AIR 1,7
      RFS 3
LOC 20
SubPtr: DATA Sub
""")
    assert machine.gpr[1] == 7
    assert machine.gpr[0] == 3
    assert machine.gpr[3] == 101
    assert machine.pc == 102


def test_conditional_jumps(machine):
    machine.load(20, 300)
    machine.set_register(1, 0xFFFF)
    place(machine,
          encode("JZ", r=1, address=20, i=1),
          encode("JGE", r=1, address=20, i=1),
          encode("JNE", r=1, address=20, i=1))
    machine.step()
    assert machine.pc == START + 1
    machine.step()
    assert machine.pc == START + 2
    machine.step()
    assert machine.pc == 300


def test_jcc_reads_cc_lsb_first(machine):
    machine.cc = 1 << DIVZERO
    place(machine,
          encode("JCC", r=OVERFLOW, address=25),
          encode("JCC", r=DIVZERO, address=25))
    machine.step()
    assert machine.pc == START + 1
    machine.step()
    assert machine.pc == 25


def test_jma_with_index(machine):
    machine.set_index(3, 500)
    place(machine, encode("JMA", ix=3, address=4))
    machine.step()
    assert machine.pc == 504


def test_trap(machine):
    machine.load(0, 300)
    place(machine, encode("TRAP", code=5))
    assert machine.step()
    assert machine.pc == 300
    assert machine.inspect(2) == START + 1
    assert machine.trap_code == 5
    assert machine.mfr == 0


def test_halt_is_sticky(machine):
    place(machine, 0)
    assert machine.step() is False
    assert machine.halted
    assert machine.mfr == 0
    assert machine.step() is False
    assert machine.pc == START + 1


def test_illegal_opcode_faults(machine):
    place(machine, 0o77 << 10, encode("AIR", r=0, immed=1))
    assert machine.step() is False
    assert machine.mfr == FAULT_ILLEGAL_OPCODE
    assert machine.pc == 1
    assert machine.inspect(2) == START + 1
    assert machine.step() is False
    assert machine.gpr[0] == 0
    check_invariants(machine)
    machine.reset()
    assert machine.mfr == 0


def test_illegal_address_through_indirection(machine):
    machine.set_index(1, 3000)
    place(machine, encode("LDR", r=0, ix=1, address=20, i=1))
    assert machine.step() is False
    assert machine.mfr == FAULT_ILLEGAL_ADDRESS
    assert machine.pc == 1
    assert machine.inspect(2) == START + 1
    check_invariants(machine)


def test_running_off_the_end_of_memory(machine):
    machine.load(2047, encode("AIR", r=0, immed=1))
    machine.set_pc(2047)
    assert machine.step()
    assert machine.pc == 2048
    assert machine.step() is False
    assert machine.mfr == FAULT_ILLEGAL_ADDRESS
    assert machine.inspect(2) == 2048


def test_run_stops_at_breakpoint_and_halt(machine, load_program):
    load_program("LOC 100\nAIR 0,1\nAIR 0,1\nAIR 0,1\nHLT\n")
    machine.breakpoints[102] = True
    assert machine.run() == 2
    assert machine.suspended
    assert not machine.running
    machine.run()
    assert machine.halted
    assert machine.gpr[0] == 3


def test_run_on_halted_machine_counts_nothing(machine, load_program):
    load_program("LOC 100\nHLT\n")
    assert machine.run() == 1
    assert machine.halted
    assert machine.run() == 0
    assert machine.instruction_count == 1


def test_run_step_limit(machine, load_program):
    load_program("LOC 100\nLoop: JMA 0,0,Ptr,1\nLOC 20\nPtr: DATA Loop\n")
    assert machine.run(max_steps=50) == 50
    assert machine.suspended
    assert machine.mfr == 0


def test_halt_request_stops_run(machine, load_program):
    load_program("LOC 100\nLoop: JMA 0,0,Ptr,1\nLOC 20\nPtr: DATA Loop\n")
    steps = []
    step = machine.step

    def counting_step():
        steps.append(1)
        if len(steps) == 10:
            machine.halt()
        return step()

    machine.step = counting_step
    assert machine.run() == 10
    assert not machine.running


def test_deposit_keeps_cache_coherent(machine):
    machine.read_memory(40)
    machine.load(40, 77)
    assert machine.cache.cache_lines[0].data == 77
    check_invariants(machine)


def test_ipl_resets_and_sets_pc(machine):
    machine.set_register(0, 5)
    assert machine.ipl([(300, 1), (301, 2)]) == 2
    assert machine.pc == 300
    assert machine.gpr[0] == 0
    assert machine.inspect(301) == 2


def test_ipl_file(machine, tmp_path):
    path = tmp_path / "prog_load.txt"
    path.write_text("000144 006001\n000145 000000\n")
    machine.ipl_file(str(path))
    assert machine.pc == 0o144
    assert machine.inspect(0o144) == 0o6001
