"""
Parallel dispatch across the C boundary.

The engine's parallel-for takes a plain function pointer plus a user-data
pointer, so a Python closure cannot be passed directly. The work callable
is boxed in a ``py_object`` whose address travels as user data; a single
module-level trampoline turns it back into a reference and calls it. The
box outlives the native call, which only returns once every batch is done.
"""

import ctypes
import logging
import threading

from ._ffi import PARALLEL_FOR_FN
from .errors import ParallelWorkError

logger = logging.getLogger("ortkernel.parallel")


class _ParallelWork:
    """Work callable plus a first-error slot shared by all worker threads."""

    def __init__(self, work):
        self.work = work
        self.calls = 0
        self.failures = 0
        self.error = None
        self.interrupt = None
        self._lock = threading.Lock()

    def __call__(self, index):
        try:
            self.work(index)
        except Exception as e:
            with self._lock:
                self.calls += 1
                self.failures += 1
                if self.error is None:
                    self.error = e
            logger.debug(f"parallel work raised for index {index}: {e!r}")
        except BaseException as e:
            # KeyboardInterrupt, SystemExit: held until the native call returns.
            with self._lock:
                self.calls += 1
                self.failures += 1
                if self.interrupt is None:
                    self.interrupt = e
            logger.debug(f"parallel work interrupted at index {index}: {e!r}")
        else:
            with self._lock:
                self.calls += 1


@PARALLEL_FOR_FN
def _parallel_for_trampoline(user_data, index):
    # Reference only: the box is owned by parallel_for's frame.
    work = ctypes.cast(user_data, ctypes.POINTER(ctypes.py_object)).contents.value
    work(index)


def parallel_for(api, context, total, max_batches, work):
    """Run ``work(i)`` for every i in [0, total) on the engine's thread pool,
    in at most ``max_batches`` contiguous batches (0 lets the engine decide).

    Blocks until all batches finish. Calls may run concurrently and in any
    order. An exception from any call is re-raised as ParallelWorkError once
    every batch is done; KeyboardInterrupt and SystemExit are re-raised as is.
    """
    if not callable(work):
        raise TypeError(f"parallel work must be callable, got {type(work).__name__}")
    total = int(total)
    max_batches = int(max_batches)
    if total < 0 or max_batches < 0:
        raise ValueError("total and max_batches must be non-negative")

    state = _ParallelWork(work)
    box = ctypes.py_object(state)
    user_data = ctypes.cast(ctypes.pointer(box), ctypes.c_void_p)
    trampoline = ctypes.cast(_parallel_for_trampoline, ctypes.c_void_p)
    logger.debug(f"par_for total={total} max_batches={max_batches}")
    try:
        api.call('KernelContext_ParallelFor', context, trampoline, total, max_batches, user_data)
    finally:
        # No invocation can happen after the native call has returned.
        del user_data, box

    if state.interrupt is not None:
        raise state.interrupt
    if state.error is not None:
        raise ParallelWorkError(state.failures, total) from state.error
    return state.calls
