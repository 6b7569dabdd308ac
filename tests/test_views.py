from pipeline_core import (
    SimulationConfig,
    instruction_rows,
    occupancy_rows,
    run_simulation,
    snapshot_row,
    stage_timeline,
)

LW_1_0_2 = "8c410000"   # lw  $1, 0($2)
ADD_3_1_4 = "00241820"  # add $3, $1, $4

STALLS = SimulationConfig(stalls_enabled=True)


def test_occupancy_rows_include_bubble_row(program):
    instructions = program(LW_1_0_2, ADD_3_1_4)
    result = run_simulation(instructions, STALLS)
    rows = occupancy_rows(result.snapshots, instructions)

    assert len(rows) == 3
    load, add, bubble = rows
    assert load["Instruction"] == "lw $1, 0($2)"
    assert [load[f"C{c}"] for c in range(1, 8)] == ["IF", "ID", "EX", "MEM", "WB", "", ""]
    assert [add[f"C{c}"] for c in range(1, 8)] == ["", "IF", "ID", "ID", "EX", "MEM", "WB"]
    assert bubble["Instruction"] == "bubble (cycle 4)"
    assert bubble["C4"] == "EX"
    assert [bubble[f"C{c}"] for c in (1, 2, 3, 5, 6, 7)] == [""] * 6


def test_occupancy_rows_empty_history(program):
    instructions = program(LW_1_0_2)
    rows = occupancy_rows([], instructions)
    assert rows == [{"#": "1", "Instruction": "lw $1, 0($2)"}]


def test_snapshot_row_labels_each_stage(program):
    result = run_simulation(program(LW_1_0_2, ADD_3_1_4), STALLS)
    row = snapshot_row(result.snapshots[3])
    assert row == {
        "Cycle": "4",
        "IF": "-",
        "ID": "#2 add $3, $1, $4",
        "EX": "bubble",
        "MEM": "#1 lw $1, 0($2)",
        "WB": "-",
    }


def test_instruction_rows(program):
    rows = instruction_rows(program(LW_1_0_2, ADD_3_1_4))
    assert rows[0] == {
        "#": "1",
        "Hex": "8c410000",
        "Instruction": "lw $1, 0($2)",
        "Format": "I",
        "Reads": "$2",
        "Writes": "$1",
        "Kind": "Load",
    }
    assert rows[1]["Reads"] == "$1, $4"
    assert rows[1]["Kind"] == ""


def test_stage_timeline_merges_stalled_cycles(program):
    instructions = program(LW_1_0_2, ADD_3_1_4)
    result = run_simulation(instructions, STALLS)
    spans = [
        (record["Stage"], record["Start"], record["End"])
        for record in stage_timeline(result.snapshots, instructions)
        if record["Instruction"].startswith("#2")
    ]
    assert spans == [("IF", 2, 3), ("ID", 3, 5), ("EX", 5, 6), ("MEM", 6, 7), ("WB", 7, 8)]
