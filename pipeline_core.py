"""
Core 5-stage pipeline simulator shared between the Streamlit GUI and tests.

The scheduler is a pure transition function over immutable ``PipelineState``
values; ``run_simulation`` folds it to completion and ``PipelineSimulator``
applies it one cycle at a time.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple, Union

from mips_decoder import DecodedInstruction

__all__ = [
    "STAGE_NAMES",
    "IF",
    "ID",
    "EX",
    "MEM",
    "WB",
    "InstructionState",
    "Bubble",
    "ForwardingPath",
    "PipelineSnapshot",
    "PipelineState",
    "HazardReport",
    "SimulationConfig",
    "SimulationResult",
    "PipelineSimulator",
    "has_raw_hazard",
    "shared_registers",
    "can_forward",
    "detect_hazards",
    "initial_state",
    "step_pipeline",
    "is_finished",
    "run_simulation",
    "occupant_label",
    "snapshot_row",
    "occupancy_rows",
    "instruction_rows",
    "stage_timeline",
]

logger = logging.getLogger(__name__)

STAGE_NAMES: Tuple[str, ...] = ("IF", "ID", "EX", "MEM", "WB")
IF, ID, EX, MEM, WB = range(len(STAGE_NAMES))
STAGE_COUNT = len(STAGE_NAMES)


@dataclass(frozen=True)
class InstructionState:
    index: int
    decoded: DecodedInstruction
    current_stage: int
    cycle_entered: int

    def advanced(self) -> "InstructionState":
        return replace(self, current_stage=self.current_stage + 1)

    @property
    def label(self) -> str:
        return f"#{self.index + 1} {self.decoded.text}"


@dataclass(frozen=True)
class Bubble:
    """No-op placeholder inserted into EX when the instruction in ID stalls."""

    bubble_id: int
    cycle_inserted: int

    @property
    def label(self) -> str:
        return "bubble"


Occupant = Optional[Union[InstructionState, Bubble]]
Stages = Tuple[Occupant, ...]

EMPTY_STAGES: Stages = (None,) * STAGE_COUNT


@dataclass(frozen=True)
class ForwardingPath:
    from_index: int
    from_stage: int
    to_index: int
    to_stage: int
    register: int

    def describe(self) -> str:
        return (
            f"#{self.from_index + 1} {STAGE_NAMES[self.from_stage]} -> "
            f"#{self.to_index + 1} {STAGE_NAMES[self.to_stage]} (${self.register})"
        )


@dataclass(frozen=True)
class PipelineSnapshot:
    cycle: int
    stages: Stages
    forwarding_paths: Tuple[ForwardingPath, ...] = ()
    stalls_inserted: Tuple[int, ...] = ()

    def occupant(self, stage: int) -> Occupant:
        return self.stages[stage]


@dataclass(frozen=True)
class PipelineState:
    cycle: int = 0
    stages: Stages = EMPTY_STAGES
    fetch_cursor: int = 0
    stall_count: int = 0


@dataclass(frozen=True)
class HazardReport:
    needs_stall: bool = False
    forwarding_paths: Tuple[ForwardingPath, ...] = ()


NO_HAZARDS = HazardReport()


# ---------------------------------------------------------------------------
# Hazard detection and forwarding
# ---------------------------------------------------------------------------

def has_raw_hazard(producer: DecodedInstruction, consumer: DecodedInstruction) -> bool:
    """True when the older ``producer`` writes a register ``consumer`` reads."""
    return bool(producer.writes_to & consumer.reads_from)


def shared_registers(
    producer: DecodedInstruction, consumer: DecodedInstruction
) -> List[int]:
    return sorted(producer.writes_to & consumer.reads_from)


def can_forward(
    producer: DecodedInstruction, consumer: DecodedInstruction, distance: int
) -> bool:
    """Whether the producer's value can bypass the register file.

    ``distance`` is 1 for a producer in EX and 2 for a producer in MEM. A
    load only has its value at the end of MEM, so it cannot forward from EX.
    """
    if not has_raw_hazard(producer, consumer):
        return False
    if distance == 1:
        return not producer.is_load
    return distance == 2


def _instruction_at(stages: Stages, stage: int) -> Optional[InstructionState]:
    occupant = stages[stage]
    return occupant if isinstance(occupant, InstructionState) else None


def detect_hazards(stages: Stages, forwarding_enabled: bool) -> HazardReport:
    """Check the instruction in ID against the instructions in EX and MEM."""
    consumer = _instruction_at(stages, ID)
    if consumer is None:
        return NO_HAZARDS

    needs_stall = False
    paths: List[ForwardingPath] = []
    for stage, distance in ((EX, 1), (MEM, 2)):
        producer = _instruction_at(stages, stage)
        if producer is None or not has_raw_hazard(producer.decoded, consumer.decoded):
            continue
        if forwarding_enabled and can_forward(producer.decoded, consumer.decoded, distance):
            paths.extend(
                ForwardingPath(
                    from_index=producer.index,
                    from_stage=stage,
                    to_index=consumer.index,
                    to_stage=ID,
                    register=reg,
                )
                for reg in shared_registers(producer.decoded, consumer.decoded)
            )
        elif distance == 1:
            needs_stall = True
        # a producer in MEM never holds the consumer back
    return HazardReport(needs_stall=needs_stall, forwarding_paths=tuple(paths))


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

def initial_state() -> PipelineState:
    return PipelineState()


def is_finished(state: PipelineState, program: Sequence[DecodedInstruction]) -> bool:
    """All instructions fetched and none left before WB.

    An instruction in WB completes during that cycle, so the last cycle of a
    run is the one in which the last instruction occupies WB.
    """
    if state.fetch_cursor < len(program):
        return False
    return all(
        not isinstance(occupant, InstructionState) or occupant.current_stage == WB
        for occupant in state.stages
    )


def step_pipeline(
    state: PipelineState,
    program: Sequence[DecodedInstruction],
    stalls_enabled: bool,
    forwarding_enabled: bool,
) -> Tuple[PipelineState, PipelineSnapshot]:
    """Advance the pipeline by one cycle.

    Returns the successor state and the snapshot describing it. The input
    state is never modified.
    """
    cycle = state.cycle + 1
    stages = state.stages
    if stalls_enabled:
        report = detect_hazards(stages, forwarding_enabled)
    else:
        report = NO_HAZARDS

    next_stages: List[Occupant] = [None] * STAGE_COUNT
    fetch_cursor = state.fetch_cursor
    stall_count = state.stall_count
    stalls_inserted: Tuple[int, ...] = ()

    if report.needs_stall:
        # IF and ID hold while the stages after them drain
        for stage in (EX, MEM):
            occupant = stages[stage]
            if occupant is None:
                continue
            if isinstance(occupant, InstructionState):
                occupant = occupant.advanced()
            next_stages[stage + 1] = occupant
        next_stages[IF] = stages[IF]
        next_stages[ID] = stages[ID]
        bubble = Bubble(bubble_id=cycle, cycle_inserted=cycle)
        next_stages[EX] = bubble
        stalls_inserted = (bubble.bubble_id,)
        stall_count += 1
        logger.debug("Cycle %d: stall, bubble inserted into EX", cycle)
    else:
        for stage, occupant in enumerate(stages):
            if isinstance(occupant, InstructionState) and stage + 1 < STAGE_COUNT:
                next_stages[stage + 1] = occupant.advanced()
        if next_stages[IF] is None and fetch_cursor < len(program):
            next_stages[IF] = InstructionState(
                index=fetch_cursor,
                decoded=program[fetch_cursor],
                current_stage=IF,
                cycle_entered=cycle,
            )
            fetch_cursor += 1

    new_stages: Stages = tuple(next_stages)
    if stalls_enabled:
        paths = detect_hazards(new_stages, forwarding_enabled).forwarding_paths
    else:
        paths = ()

    new_state = PipelineState(
        cycle=cycle,
        stages=new_stages,
        fetch_cursor=fetch_cursor,
        stall_count=stall_count,
    )
    snapshot = PipelineSnapshot(
        cycle=cycle,
        stages=new_stages,
        forwarding_paths=paths,
        stalls_inserted=stalls_inserted,
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("Cycle %d: %s", cycle, snapshot_row(snapshot))
        for path in paths:
            logger.debug("Cycle %d: forwarding %s", cycle, path.describe())
    return new_state, snapshot


# ---------------------------------------------------------------------------
# Configuration and drivers
# ---------------------------------------------------------------------------

class SimulationConfig:
    """Hazard policy flags. Forwarding requires stalls (hazard detection)."""

    def __init__(self, stalls_enabled: bool = False, forwarding_enabled: bool = False) -> None:
        self._stalls_enabled = False
        self._forwarding_enabled = False
        self.stalls_enabled = stalls_enabled
        self.forwarding_enabled = forwarding_enabled

    @property
    def stalls_enabled(self) -> bool:
        return self._stalls_enabled

    @stalls_enabled.setter
    def stalls_enabled(self, enabled: bool) -> None:
        self._stalls_enabled = _check_flag("stalls_enabled", enabled)
        if not enabled:
            self._forwarding_enabled = False

    @property
    def forwarding_enabled(self) -> bool:
        return self._forwarding_enabled

    @forwarding_enabled.setter
    def forwarding_enabled(self, enabled: bool) -> None:
        self._forwarding_enabled = _check_flag("forwarding_enabled", enabled)
        if enabled:
            self._stalls_enabled = True

    def copy(self) -> "SimulationConfig":
        return SimulationConfig(self.stalls_enabled, self.forwarding_enabled)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SimulationConfig):
            return NotImplemented
        return (self.stalls_enabled, self.forwarding_enabled) == (
            other.stalls_enabled,
            other.forwarding_enabled,
        )

    def __repr__(self) -> str:
        return (
            f"SimulationConfig(stalls_enabled={self.stalls_enabled}, "
            f"forwarding_enabled={self.forwarding_enabled})"
        )


def _check_flag(name: str, value: bool) -> bool:
    if not isinstance(value, bool):
        raise TypeError(f"{name} must be a bool, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class SimulationResult:
    program: Tuple[DecodedInstruction, ...]
    snapshots: Tuple[PipelineSnapshot, ...]
    total_bubbles: int
    finished: bool = True

    @property
    def total_cycles(self) -> int:
        return len(self.snapshots)


def run_simulation(
    program: Sequence[DecodedInstruction], config: Optional[SimulationConfig] = None
) -> SimulationResult:
    """Run the whole program and return every snapshot up front."""
    config = config or SimulationConfig()
    program = tuple(program)
    state = initial_state()
    snapshots: List[PipelineSnapshot] = []
    while not is_finished(state, program):
        state, snapshot = step_pipeline(
            state, program, config.stalls_enabled, config.forwarding_enabled
        )
        snapshots.append(snapshot)
    logger.info(
        "Simulated %d instructions in %d cycles with %d bubbles (%r)",
        len(program),
        len(snapshots),
        state.stall_count,
        config,
    )
    return SimulationResult(
        program=program,
        snapshots=tuple(snapshots),
        total_bubbles=state.stall_count,
    )


class PipelineSimulator:
    """Incremental driver: one ``step()`` per external trigger."""

    def __init__(
        self,
        program: Sequence[DecodedInstruction],
        config: Optional[SimulationConfig] = None,
    ) -> None:
        self.program: Tuple[DecodedInstruction, ...] = tuple(program)
        self.config = (config or SimulationConfig()).copy()
        self.state: PipelineState = initial_state()
        self.history: List[PipelineSnapshot] = []
        self.reset()

    def reset(self) -> None:
        self.state = initial_state()
        self.history = []
        logger.info("Simulator reset (%d instructions, %r)", len(self.program), self.config)

    def step(self) -> bool:
        if self.is_finished():
            return False
        self.state, snapshot = step_pipeline(
            self.state,
            self.program,
            self.config.stalls_enabled,
            self.config.forwarding_enabled,
        )
        self.history.append(snapshot)
        if self.is_finished():
            logger.info(
                "Simulation finished after %d cycles with %d bubbles",
                self.cycle,
                self.total_bubbles,
            )
        return True

    def run(self) -> SimulationResult:
        while self.step():
            pass
        return self.result()

    def is_finished(self) -> bool:
        return is_finished(self.state, self.program)

    @property
    def cycle(self) -> int:
        return self.state.cycle

    @property
    def total_bubbles(self) -> int:
        return self.state.stall_count

    @property
    def latest(self) -> Optional[PipelineSnapshot]:
        return self.history[-1] if self.history else None

    def result(self) -> SimulationResult:
        return SimulationResult(
            program=self.program,
            snapshots=tuple(self.history),
            total_bubbles=self.total_bubbles,
            finished=self.is_finished(),
        )


# ---------------------------------------------------------------------------
# Read-only history views
# ---------------------------------------------------------------------------

def occupant_label(occupant: Occupant) -> str:
    if occupant is None:
        return ""
    return occupant.label


def snapshot_row(snapshot: PipelineSnapshot) -> Dict[str, str]:
    row = {"Cycle": str(snapshot.cycle)}
    for name, occupant in zip(STAGE_NAMES, snapshot.stages):
        row[name] = occupant_label(occupant) or "-"
    return row


def instruction_rows(program: Sequence[DecodedInstruction]) -> List[Dict[str, str]]:
    return [
        {
            "#": str(idx + 1),
            "Hex": instr.word,
            "Instruction": instr.text,
            "Format": instr.format,
            "Reads": ", ".join(f"${reg}" for reg in sorted(instr.reads_from)),
            "Writes": ", ".join(f"${reg}" for reg in sorted(instr.writes_to)),
            "Kind": "Load" if instr.is_load else "Store" if instr.is_store else "",
        }
        for idx, instr in enumerate(program)
    ]


def occupancy_rows(
    snapshots: Sequence[PipelineSnapshot], program: Sequence[DecodedInstruction]
) -> List[Dict[str, str]]:
    """Instruction x cycle matrix of stage names, with one row per bubble."""
    columns = [f"C{snapshot.cycle}" for snapshot in snapshots]
    rows: Dict[str, Dict[str, str]] = {}
    for idx, instr in enumerate(program):
        row = {"#": str(idx + 1), "Instruction": instr.text}
        row.update({column: "" for column in columns})
        rows[f"inst-{idx}"] = row

    for snapshot in snapshots:
        column = f"C{snapshot.cycle}"
        for stage, occupant in enumerate(snapshot.stages):
            if isinstance(occupant, InstructionState):
                rows[f"inst-{occupant.index}"][column] = STAGE_NAMES[stage]
            elif isinstance(occupant, Bubble):
                key = f"bubble-{occupant.bubble_id}"
                if key not in rows:
                    row = {"#": "", "Instruction": f"bubble (cycle {occupant.cycle_inserted})"}
                    row.update({c: "" for c in columns})
                    rows[key] = row
                rows[key][column] = STAGE_NAMES[stage]
    return list(rows.values())


def stage_timeline(
    snapshots: Sequence[PipelineSnapshot], program: Sequence[DecodedInstruction]
) -> List[Dict[str, object]]:
    """Contiguous stage intervals per instruction, for a Gantt chart."""
    spans: Dict[Tuple[int, int], List[int]] = {}
    for snapshot in snapshots:
        for stage, occupant in enumerate(snapshot.stages):
            if isinstance(occupant, InstructionState):
                span = spans.setdefault((occupant.index, stage), [snapshot.cycle, snapshot.cycle])
                span[1] = snapshot.cycle
    records: List[Dict[str, object]] = []
    for (index, stage), (start, end) in sorted(spans.items(), key=lambda item: (item[0][0], item[1][0])):
        records.append(
            {
                "Instruction": f"#{index + 1} {program[index].text}",
                "Stage": STAGE_NAMES[stage],
                "Start": start,
                "End": end + 1,
            }
        )
    return records
