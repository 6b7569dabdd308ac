"""
MIPS instruction decoding: raw 32-bit words to register read/write effects.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional

__all__ = [
    "DecodedInstruction",
    "InvalidInstructionError",
    "SAMPLE_PROGRAM_TEXT",
    "decode",
    "decode_program",
    "disassemble",
    "parse_program",
    "build_sample_program",
]

logger = logging.getLogger(__name__)

WORD_RE = re.compile(r"^(?:0[xX])?([0-9a-fA-F]{8})$")

R_FORMAT = "R"
I_FORMAT = "I"
J_FORMAT = "J"

R_FUNCTIONS: Dict[int, str] = {
    0x00: "sll",
    0x02: "srl",
    0x03: "sra",
    0x04: "sllv",
    0x06: "srlv",
    0x07: "srav",
    0x08: "jr",
    0x09: "jalr",
    0x0C: "syscall",
    0x0D: "break",
    0x10: "mfhi",
    0x11: "mthi",
    0x12: "mflo",
    0x13: "mtlo",
    0x18: "mult",
    0x19: "multu",
    0x1A: "div",
    0x1B: "divu",
    0x20: "add",
    0x21: "addu",
    0x22: "sub",
    0x23: "subu",
    0x24: "and",
    0x25: "or",
    0x26: "xor",
    0x27: "nor",
    0x2A: "slt",
    0x2B: "sltu",
}

I_OPCODES: Dict[int, str] = {
    0x01: "regimm",
    0x04: "beq",
    0x05: "bne",
    0x06: "blez",
    0x07: "bgtz",
    0x08: "addi",
    0x09: "addiu",
    0x0A: "slti",
    0x0B: "sltiu",
    0x0C: "andi",
    0x0D: "ori",
    0x0E: "xori",
    0x0F: "lui",
    0x20: "lb",
    0x21: "lh",
    0x22: "lwl",
    0x23: "lw",
    0x24: "lbu",
    0x25: "lhu",
    0x26: "lwr",
    0x28: "sb",
    0x29: "sh",
    0x2A: "swl",
    0x2B: "sw",
    0x2E: "swr",
}

J_OPCODES: Dict[int, str] = {
    0x02: "j",
    0x03: "jal",
}

REGIMM_BRANCHES: Dict[int, str] = {
    0x00: "bltz",
    0x01: "bgez",
    0x10: "bltzal",
    0x11: "bgezal",
}

LOAD_OPCODES = frozenset({0x20, 0x21, 0x22, 0x23, 0x24, 0x25, 0x26})
STORE_OPCODES = frozenset({0x28, 0x29, 0x2A, 0x2B, 0x2E})
TWO_REG_BRANCHES = frozenset({0x04, 0x05})
ONE_REG_BRANCHES = frozenset({0x01, 0x06, 0x07})

SHIFT_BY_CONSTANT = frozenset({"sll", "srl", "sra"})
MOVE_FROM_HILO = frozenset({"mfhi", "mflo"})
MOVE_TO_HILO = frozenset({"mthi", "mtlo"})
HILO_ARITHMETIC = frozenset({"mult", "multu", "div", "divu"})
NO_OPERANDS = frozenset({"syscall", "break"})

# $zero is hard-wired; writing it never produces a value to wait for
ZERO_REGISTER = frozenset({0})


class InvalidInstructionError(ValueError):
    """Raised when an instruction word is not 8 hexadecimal digits."""

    def __init__(self, index: Optional[int], token: str) -> None:
        self.index = index
        self.token = token
        where = f"Instruction {index + 1}: " if index is not None else ""
        super().__init__(
            f"{where}invalid instruction word '{token}' (expected 8 hex digits)"
        )


@dataclass(frozen=True)
class DecodedInstruction:
    word: str
    opcode: int
    format: str
    mnemonic: str
    rs: int = 0
    rt: int = 0
    rd: int = 0
    shamt: int = 0
    funct: Optional[int] = None
    immediate: int = 0
    target: int = 0
    is_load: bool = False
    is_store: bool = False
    reads_from: FrozenSet[int] = frozenset()
    writes_to: FrozenSet[int] = frozenset()

    @property
    def text(self) -> str:
        return disassemble(self)


def decode(word: str) -> DecodedInstruction:
    token = word.strip() if isinstance(word, str) else word
    match = WORD_RE.match(token) if isinstance(token, str) else None
    if not match:
        raise InvalidInstructionError(None, str(word))
    hex_text = match.group(1).lower()
    value = int(hex_text, 16)

    opcode = (value >> 26) & 0x3F
    rs = (value >> 21) & 0x1F
    rt = (value >> 16) & 0x1F
    rd = (value >> 11) & 0x1F
    shamt = (value >> 6) & 0x1F
    funct = value & 0x3F
    immediate = value & 0xFFFF
    if immediate & 0x8000:
        immediate -= 0x10000

    if opcode == 0:
        return _decode_r_format(hex_text, value, rs, rt, rd, shamt, funct)
    if opcode in J_OPCODES:
        return DecodedInstruction(
            word=hex_text,
            opcode=opcode,
            format=J_FORMAT,
            mnemonic=J_OPCODES[opcode],
            target=value & 0x03FFFFFF,
        )
    return _decode_i_format(hex_text, opcode, rs, rt, immediate)


def _decode_r_format(
    hex_text: str, value: int, rs: int, rt: int, rd: int, shamt: int, funct: int
) -> DecodedInstruction:
    mnemonic = R_FUNCTIONS.get(funct, "unknown")
    if value == 0:
        mnemonic = "nop"
        reads: FrozenSet[int] = frozenset()
        writes: FrozenSet[int] = frozenset()
    elif mnemonic in SHIFT_BY_CONSTANT:
        reads, writes = frozenset({rt}), frozenset({rd})
    elif mnemonic == "jr":
        reads, writes = frozenset({rs}), frozenset()
    elif mnemonic == "jalr":
        reads, writes = frozenset({rs}), frozenset({rd})
    elif mnemonic in MOVE_FROM_HILO:
        reads, writes = frozenset(), frozenset({rd})
    elif mnemonic in MOVE_TO_HILO:
        reads, writes = frozenset({rs}), frozenset()
    elif mnemonic in HILO_ARITHMETIC:
        reads, writes = frozenset({rs, rt}), frozenset()
    elif mnemonic in NO_OPERANDS:
        reads, writes = frozenset(), frozenset()
    else:
        reads, writes = frozenset({rs, rt}), frozenset({rd})
    return DecodedInstruction(
        word=hex_text,
        opcode=0,
        format=R_FORMAT,
        mnemonic=mnemonic,
        rs=rs,
        rt=rt,
        rd=rd,
        shamt=shamt,
        funct=funct,
        reads_from=reads,
        writes_to=writes - ZERO_REGISTER,
    )


def _decode_i_format(
    hex_text: str, opcode: int, rs: int, rt: int, immediate: int
) -> DecodedInstruction:
    mnemonic = I_OPCODES.get(opcode, "unknown")
    is_load = opcode in LOAD_OPCODES
    is_store = opcode in STORE_OPCODES
    if opcode == 0x01:
        mnemonic = REGIMM_BRANCHES.get(rt, "regimm")
    if is_store or opcode in TWO_REG_BRANCHES:
        reads, writes = frozenset({rs, rt}), frozenset()
    elif opcode in ONE_REG_BRANCHES:
        reads, writes = frozenset({rs}), frozenset()
    elif mnemonic == "lui":
        reads, writes = frozenset(), frozenset({rt})
    else:
        # loads, immediate arithmetic and unassigned opcodes
        reads, writes = frozenset({rs}), frozenset({rt})
    return DecodedInstruction(
        word=hex_text,
        opcode=opcode,
        format=I_FORMAT,
        mnemonic=mnemonic,
        rs=rs,
        rt=rt,
        immediate=immediate,
        is_load=is_load,
        is_store=is_store,
        reads_from=reads,
        writes_to=writes - ZERO_REGISTER,
    )


def decode_program(words: Iterable[str]) -> List[DecodedInstruction]:
    """Decode a batch of words, rejecting the whole batch on the first bad entry."""
    decoded: List[DecodedInstruction] = []
    for index, word in enumerate(words):
        try:
            decoded.append(decode(word))
        except InvalidInstructionError as exc:
            logger.warning("Rejected instruction %d: %r", index + 1, exc.token)
            raise InvalidInstructionError(index, exc.token) from None
    return decoded


def disassemble(instr: DecodedInstruction) -> str:
    m = instr.mnemonic
    if m == "nop":
        return "nop"
    if m == "unknown":
        return f"unknown 0x{instr.word}"
    if instr.format == J_FORMAT:
        return f"{m} 0x{instr.target:07x}"
    if instr.format == R_FORMAT:
        if m in SHIFT_BY_CONSTANT:
            return f"{m} ${instr.rd}, ${instr.rt}, {instr.shamt}"
        if m in ("jr", "mthi", "mtlo"):
            return f"{m} ${instr.rs}"
        if m == "jalr":
            return f"{m} ${instr.rd}, ${instr.rs}"
        if m in MOVE_FROM_HILO:
            return f"{m} ${instr.rd}"
        if m in HILO_ARITHMETIC:
            return f"{m} ${instr.rs}, ${instr.rt}"
        if m in NO_OPERANDS:
            return m
        if m in ("sllv", "srlv", "srav"):
            return f"{m} ${instr.rd}, ${instr.rt}, ${instr.rs}"
        return f"{m} ${instr.rd}, ${instr.rs}, ${instr.rt}"
    if instr.is_load or instr.is_store:
        return f"{m} ${instr.rt}, {instr.immediate}(${instr.rs})"
    if instr.opcode in TWO_REG_BRANCHES:
        return f"{m} ${instr.rs}, ${instr.rt}, {instr.immediate}"
    if instr.opcode in ONE_REG_BRANCHES:
        return f"{m} ${instr.rs}, {instr.immediate}"
    if m == "lui":
        return f"{m} ${instr.rt}, {instr.immediate & 0xFFFF:#x}"
    return f"{m} ${instr.rt}, ${instr.rs}, {instr.immediate}"


SAMPLE_PROGRAM_TEXT = """\
# Load-use and ALU dependency chain
8c410000  # lw   $1, 0($2)
00241820  # add  $3, $1, $4
00612822  # sub  $5, $3, $1
ac450004  # sw   $5, 4($2)
34a60001  # ori  $6, $5, 1
"""


def parse_program(text: str) -> List[DecodedInstruction]:
    words: List[str] = []
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        words.extend(token for token in re.split(r"[,\s]+", line) if token)
    return decode_program(words)


def build_sample_program() -> List[DecodedInstruction]:
    return parse_program(SAMPLE_PROGRAM_TEXT)
