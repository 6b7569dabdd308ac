#!/usr/bin/env python3
"""
Streamlit front-end for the MIPS 5-stage pipeline simulator.

Run with:
    streamlit run streamlit_app.py
"""
from __future__ import annotations

import logging
import time
from typing import List

import altair as alt
import pandas as pd
import streamlit as st

from mips_decoder import SAMPLE_PROGRAM_TEXT, DecodedInstruction, parse_program
from pipeline_core import (
    STAGE_NAMES,
    Bubble,
    PipelineSimulator,
    SimulationConfig,
    instruction_rows,
    occupancy_rows,
    occupant_label,
    stage_timeline,
)
from playback import PlaybackController

logger = logging.getLogger(__name__)

STAGE_COLORS = ["#5bc0de", "#f0ad4e", "#5cb85c", "#9b59b6", "#d9534f"]

# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------

def init_state() -> None:
    if "program_text" not in st.session_state:
        st.session_state["program_text"] = SAMPLE_PROGRAM_TEXT.strip()
    if "config" not in st.session_state:
        st.session_state["config"] = SimulationConfig(stalls_enabled=True)
    if "auto_speed" not in st.session_state:
        st.session_state["auto_speed"] = PlaybackController.DEFAULT_SPEED
    if "simulator" not in st.session_state:
        build_simulator(parse_program(st.session_state["program_text"]))


def build_simulator(program: List[DecodedInstruction]) -> None:
    previous = st.session_state.get("playback")
    if previous is not None:
        previous.pause()
    simulator = PipelineSimulator(program, st.session_state["config"])
    st.session_state["simulator"] = simulator
    st.session_state["playback"] = PlaybackController(
        simulator, speed=st.session_state["auto_speed"]
    )


def replace_simulator(program_text: str) -> None:
    program = parse_program(program_text)
    st.session_state["program_text"] = program_text
    build_simulator(program)

# UI rendering
def render_header(sim: PipelineSimulator) -> None:
    st.title("MIPS Pipeline Simulator")
    st.caption("Five-stage in-order pipeline with RAW hazard detection, stalls and forwarding.")
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Cycle", sim.cycle)
    col2.metric("Instructions", len(sim.program))
    col3.metric("Bubbles", sim.total_bubbles)
    col4.metric("Finished", "Yes" if sim.is_finished() else "No")

def render_current_status(sim: PipelineSimulator) -> None:
    snapshot = sim.latest
    if snapshot is None:
        return

    st.subheader("Current Cycle Status")
    cols = st.columns(len(STAGE_NAMES))
    for col, name, occupant in zip(cols, STAGE_NAMES, snapshot.stages):
        with col:
            st.markdown(f"**{name}**")
            if isinstance(occupant, Bubble):
                st.warning("bubble")
            elif occupant is None:
                st.caption("empty")
            else:
                st.info(occupant_label(occupant))

    event_lines = []
    if snapshot.stalls_inserted:
        event_lines.append("⚠️ Stall: bubble inserted into EX")
    for path in snapshot.forwarding_paths:
        event_lines.append(f"➡️ Forwarding: {path.describe()}")
    if event_lines:
        st.markdown("**Cycle Events:**")
        for line in event_lines:
            st.markdown(f"- {line}")

def render_instruction_editor() -> None:
    st.subheader("Instruction Input")
    st.caption("One 32-bit word per line in hex, e.g. `8c410000`. Text after `#` is ignored.")

    editor_col, buttons_col = st.columns([4, 1])
    with editor_col:
        text = st.text_area(
            "Program",
            value=st.session_state["program_text"],
            height=140,
            label_visibility="collapsed",
        )
    with buttons_col:
        st.markdown("**Program Actions**")
        if st.button("Apply", use_container_width=True, type="primary"):
            try:
                replace_simulator(text.strip())
            except ValueError as exc:
                st.error(f"Failed to parse instructions: {exc}")
            else:
                st.rerun()
        if st.button("Load Example", use_container_width=True):
            replace_simulator(SAMPLE_PROGRAM_TEXT.strip())
            st.rerun()

def render_hazard_config() -> None:
    with st.expander("⚙️ Hazard Handling", expanded=False):
        st.caption("Forwarding needs hazard detection, so enabling it also enables stalls.")
        config: SimulationConfig = st.session_state["config"]
        col1, col2 = st.columns(2)
        stalls = col1.checkbox("Stalls (hazard detection)", value=config.stalls_enabled)
        forwarding = col2.checkbox("Forwarding", value=config.forwarding_enabled)

        if stalls != config.stalls_enabled or forwarding != config.forwarding_enabled:
            if forwarding != config.forwarding_enabled:
                config.forwarding_enabled = forwarding
            else:
                config.stalls_enabled = stalls
            build_simulator(list(st.session_state["simulator"].program))
            st.rerun()

def render_controls(sim: PipelineSimulator, playback: PlaybackController) -> None:
    st.subheader("Execution Controls")

    col1, col2, col3, col4 = st.columns(4)

    if playback.is_running:
        if col1.button("⏸ Pause", use_container_width=True, type="primary"):
            playback.pause()
            st.rerun()
    elif sim.cycle > 0 and not sim.is_finished():
        if col1.button("▶️ Resume", use_container_width=True, type="primary"):
            if playback.resume():
                st.rerun()
    else:
        if col1.button("▶️ Start", use_container_width=True, type="primary"):
            if playback.start():
                st.rerun()

    if col2.button("Step", use_container_width=True, disabled=playback.is_running):
        sim.step()
        st.rerun()

    if col3.button("Run to End", use_container_width=True, disabled=playback.is_running):
        sim.run()
        st.rerun()

    if col4.button("Reset", type="secondary", use_container_width=True):
        playback.reset()
        st.rerun()

    if playback.is_running:
        speed = st.slider(
            "Simulation Speed",
            min_value=0.1,
            max_value=4.0,
            value=st.session_state["auto_speed"],
            step=0.1,
            format="%.1fx",
            help="Control how fast the simulation runs"
        )
        st.session_state["auto_speed"] = speed
        playback.speed = speed

def render_tables(sim: PipelineSimulator) -> None:
    st.subheader("Pipeline Diagram")
    if sim.history:
        diagram_df = pd.DataFrame(occupancy_rows(sim.history, sim.program))
        st.dataframe(diagram_df, use_container_width=True, hide_index=True)
    else:
        st.info("Step the simulation to fill the pipeline diagram.")

    st.markdown("#### Instructions")
    instructions_df = pd.DataFrame(instruction_rows(sim.program))
    st.dataframe(instructions_df, use_container_width=True, hide_index=True, height=240)

def render_gantt_chart(sim: PipelineSimulator) -> None:
    st.subheader("Stage Timeline")
    data = stage_timeline(sim.history, sim.program)
    if not data:
        st.info("Run the simulation to see the timeline.")
        return

    df = pd.DataFrame(data)
    chart = alt.Chart(df).mark_bar().encode(
        x=alt.X('Start', title='Cycle'),
        x2='End',
        y=alt.Y('Instruction', sort=None),
        color=alt.Color('Stage', scale=alt.Scale(domain=list(STAGE_NAMES), range=STAGE_COLORS)),
        tooltip=['Instruction', 'Stage', 'Start', 'End']
    ).properties(height=300)

    st.altair_chart(chart, use_container_width=True)

def main() -> None:
    st.set_page_config(page_title="MIPS Pipeline Simulator", layout="wide")
    logging.basicConfig(level=logging.INFO)
    init_state()
    simulator: PipelineSimulator = st.session_state["simulator"]
    playback: PlaybackController = st.session_state["playback"]

    render_header(simulator)
    with st.container():
        render_instruction_editor()
    with st.container():
        render_hazard_config()
    with st.container():
        render_controls(simulator, playback)
    with st.container():
        render_current_status(simulator)
    with st.container():
        render_tables(simulator)
    with st.container():
        render_gantt_chart(simulator)

    if playback.is_running:
        time.sleep(playback.seconds_until_due() or 0.0)
        playback.tick()
        st.rerun()

if __name__ == "__main__":
    main()
