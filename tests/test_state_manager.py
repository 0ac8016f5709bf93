import threading

import pytest

from scene_studio.exceptions import StateTransitionError
from scene_studio.models import ProcessingStep
from scene_studio.state_manager import IDLE_STEPS, StateManager


def test_starts_idle():
    manager = StateManager()
    assert manager.state.step == ProcessingStep.IDLE
    assert manager.state.message == ""
    assert manager.step in IDLE_STEPS


def test_listeners_receive_every_transition():
    manager = StateManager()
    seen = []
    manager.add_listener(lambda state: seen.append((state.step, state.message)))

    manager.begin(ProcessingStep.EXPANDING_PROMPT, "designing")
    manager.transition(ProcessingStep.GENERATING_IMAGE, "rendering")
    manager.transition(ProcessingStep.COMPLETED, "done")

    assert seen == [
        (ProcessingStep.EXPANDING_PROMPT, "designing"),
        (ProcessingStep.GENERATING_IMAGE, "rendering"),
        (ProcessingStep.COMPLETED, "done"),
    ]


def test_rejects_transitions_outside_the_machine():
    manager = StateManager()
    manager.begin(ProcessingStep.ANALYZING_IMAGE)
    with pytest.raises(StateTransitionError):
        manager.transition(ProcessingStep.GENERATING_IMAGE)
    assert manager.step == ProcessingStep.ANALYZING_IMAGE


def test_begin_refuses_while_busy():
    manager = StateManager()
    manager.begin(ProcessingStep.EXPANDING_PROMPT)
    assert manager.step not in IDLE_STEPS
    with pytest.raises(StateTransitionError):
        manager.begin(ProcessingStep.EXPANDING_PROMPT)


@pytest.mark.parametrize("step", [ProcessingStep.COMPLETED, ProcessingStep.ERROR])
def test_can_start_again_after_finishing(step):
    manager = StateManager()
    manager.begin(ProcessingStep.EXPANDING_PROMPT)
    manager.transition(step)
    assert manager.step in IDLE_STEPS
    manager.begin(ProcessingStep.EXPANDING_PROMPT, "again")
    assert manager.step == ProcessingStep.EXPANDING_PROMPT


def test_completed_resets_to_idle_after_delay():
    manager = StateManager(reset_delay=0.01)
    manager.begin(ProcessingStep.EXPANDING_PROMPT)
    manager.transition(ProcessingStep.COMPLETED, "done")
    manager.schedule_reset()

    assert manager.wait_for_reset(timeout=2)
    assert manager.state.step == ProcessingStep.IDLE
    assert manager.state.message == ""


def test_new_operation_cancels_pending_reset():
    manager = StateManager(reset_delay=0.05)
    manager.begin(ProcessingStep.EXPANDING_PROMPT)
    manager.transition(ProcessingStep.COMPLETED)
    manager.schedule_reset()

    manager.begin(ProcessingStep.ANALYZING_IMAGE, "analyzing")

    assert manager.wait_for_reset(timeout=1)
    assert manager.step == ProcessingStep.ANALYZING_IMAGE


def test_concurrent_begin_admits_one_caller():
    manager = StateManager()
    barrier = threading.Barrier(8)
    winners = []

    def start(name):
        barrier.wait()
        try:
            manager.begin(ProcessingStep.EXPANDING_PROMPT, name)
        except StateTransitionError:
            return
        winners.append(name)

    threads = [threading.Thread(target=start, args=(f"t{i}",)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(5)

    assert len(winners) == 1
    assert manager.state.message == winners[0]
