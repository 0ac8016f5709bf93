"""
状态管理器 - 维护唯一的 ProcessingState（线程安全）
"""

import logging
import threading
from typing import Callable, Dict, FrozenSet, List, Optional

from .exceptions import StateTransitionError
from .models import ProcessingState, ProcessingStep

logger = logging.getLogger(__name__)

StateListener = Callable[[ProcessingState], None]

# 可以开始新操作的状态
IDLE_STEPS: FrozenSet[ProcessingStep] = frozenset({
    ProcessingStep.IDLE,
    ProcessingStep.COMPLETED,
    ProcessingStep.ERROR,
})

_START = frozenset({
    ProcessingStep.ANALYZING_IMAGE,
    ProcessingStep.EXPANDING_PROMPT,
    ProcessingStep.GENERATING_IMAGE,
})

# 空闲状态也允许直接结束
_FROM_IDLE = _START | {ProcessingStep.COMPLETED, ProcessingStep.ERROR}

TRANSITIONS: Dict[ProcessingStep, FrozenSet[ProcessingStep]] = {
    ProcessingStep.IDLE: _FROM_IDLE,
    ProcessingStep.COMPLETED: _FROM_IDLE | {ProcessingStep.IDLE},
    ProcessingStep.ERROR: _FROM_IDLE | {ProcessingStep.IDLE},
    ProcessingStep.ANALYZING_IMAGE: frozenset({ProcessingStep.IDLE, ProcessingStep.ERROR}),
    ProcessingStep.EXPANDING_PROMPT: frozenset({
        ProcessingStep.EXPANDING_PROMPT,
        ProcessingStep.GENERATING_IMAGE,
        ProcessingStep.COMPLETED,
        ProcessingStep.ERROR,
    }),
    # 编辑完成后直接回到 IDLE
    ProcessingStep.GENERATING_IMAGE: frozenset({
        ProcessingStep.EXPANDING_PROMPT,
        ProcessingStep.COMPLETED,
        ProcessingStep.ERROR,
        ProcessingStep.IDLE,
    }),
}


class StateManager:
    """状态管理器"""

    def __init__(self, reset_delay: float = 3.0):
        """
        初始化状态管理器

        Args:
            reset_delay: COMPLETED 之后自动回到 IDLE 的延迟（秒）
        """
        self.reset_delay = reset_delay
        self._state = ProcessingState()
        self._lock = threading.Lock()
        self._listeners: List[StateListener] = []
        self._reset_timer: Optional[threading.Timer] = None

    @property
    def state(self) -> ProcessingState:
        """当前状态的副本"""
        with self._lock:
            return ProcessingState(self._state.step, self._state.message)

    @property
    def step(self) -> ProcessingStep:
        with self._lock:
            return self._state.step

    def add_listener(self, listener: StateListener):
        """注册状态变化回调"""
        self._listeners.append(listener)

    def transition(self, step: ProcessingStep, message: str = "") -> ProcessingState:
        """
        切换状态并通知监听者

        Raises:
            StateTransitionError: 转换不合法
        """
        return self._apply(step, message)

    def _apply(
        self,
        step: ProcessingStep,
        message: str,
        expected: Optional[ProcessingStep] = None,
        idle_only: bool = False,
    ) -> Optional[ProcessingState]:
        with self._lock:
            current = self._state.step
            if expected is not None and current != expected:
                return None
            if idle_only and current not in IDLE_STEPS:
                raise StateTransitionError(current.value, step.value)
            if step not in TRANSITIONS[current]:
                raise StateTransitionError(current.value, step.value)
            self._state = ProcessingState(step, message)
            snapshot = ProcessingState(step, message)

        logger.debug(f"状态: {current.value} -> {step.value} {message}")
        for listener in list(self._listeners):
            listener(snapshot)
        return snapshot

    def begin(self, step: ProcessingStep, message: str = "") -> ProcessingState:
        """
        开始一个新操作，取消尚未触发的自动重置

        Raises:
            StateTransitionError: 已有操作在进行
        """
        # 检查与占用在同一把锁内完成，并发调用只有一个能成功
        state = self._apply(step, message, idle_only=True)
        self.cancel_reset()
        return state

    def schedule_reset(self, delay: Optional[float] = None):
        """延迟后从 COMPLETED 回到 IDLE"""
        delay = self.reset_delay if delay is None else delay
        self.cancel_reset()
        timer = threading.Timer(delay, self._reset_if_completed)
        timer.daemon = True
        self._reset_timer = timer
        timer.start()

    def cancel_reset(self):
        timer = self._reset_timer
        self._reset_timer = None
        if timer is not None:
            timer.cancel()

    def wait_for_reset(self, timeout: Optional[float] = None) -> bool:
        """
        等待自动重置完成

        Returns:
            计时器是否已结束
        """
        timer = self._reset_timer
        if timer is None:
            return True
        timer.join(timeout)
        return not timer.is_alive()

    def _reset_if_completed(self):
        # 期间已开始新操作则不重置
        self._apply(ProcessingStep.IDLE, "", expected=ProcessingStep.COMPLETED)
