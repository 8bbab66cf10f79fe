"""Tests for hostdash data models."""

import dataclasses

import pytest

from hostdash.models import CpuTicks, ProcessRecord, ProcessSample, ProcessState


def test_process_sample_is_frozen():
    """Test that ProcessSample is immutable (frozen)."""
    sample = ProcessSample(pid=1, name="init", state=ProcessState.SLEEPING, cpu_ticks=10)
    with pytest.raises(dataclasses.FrozenInstanceError):
        sample.pid = 999


def test_cpu_ticks_uses_slots():
    """Test that CpuTicks uses __slots__ for memory efficiency."""
    ticks = CpuTicks(idle=1, total=2)
    # Slots-based dataclasses don't have __dict__
    assert not hasattr(ticks, "__dict__")


def test_process_record_copy_is_detached():
    """Test ProcessRecord.copy returns an independent record."""
    record = ProcessRecord(pid=5, name="x", state=ProcessState.RUNNING, last_cpu_ticks=3, cpu_percent=1.5)
    copy = record.copy()
    copy.cpu_percent = 50.0
    assert record.cpu_percent == 1.5
    assert copy.pid == 5


@pytest.mark.parametrize(
    "code,state",
    [
        ("R", ProcessState.RUNNING),
        ("S", ProcessState.SLEEPING),
        ("D", ProcessState.WAITING),
        ("T", ProcessState.STOPPED),
        ("Z", ProcessState.ZOMBIE),
        ("running", ProcessState.RUNNING),
        ("disk-sleep", ProcessState.WAITING),
        ("zombie", ProcessState.ZOMBIE),
        ("?", ProcessState.UNKNOWN),
    ],
)
def test_process_state_from_code(code, state):
    """Test kernel letters and psutil strings map to states."""
    assert ProcessState.from_code(code) is state


def test_process_state_letters_are_distinct():
    """Test every state has its own display letter."""
    letters = [s.letter for s in ProcessState]
    assert len(set(letters)) == len(letters)
