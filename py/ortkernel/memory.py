"""Memory descriptors, allocators and allocator-backed scratch buffers."""

import ctypes
import logging
import weakref
from enum import IntEnum

import numpy as np

from . import _ffi
from .errors import HandleRetiredError, NullHandleError
from .handle import NativeHandle

logger = logging.getLogger("ortkernel.memory")


class MemoryType(IntEnum):
    CPU_INPUT = -2
    CPU_OUTPUT = -1
    DEFAULT = 0


class AllocatorType(IntEnum):
    INVALID = -1
    DEVICE = 0
    ARENA = 1


def native_view(address, shape, dtype):
    """Zero-copy numpy view over native memory. The caller keeps the owner
    of ``address`` alive for as long as the view is used."""
    dtype = np.dtype(dtype)
    shape = tuple(int(d) for d in shape)
    nbytes = int(np.prod(shape, dtype=np.int64)) * dtype.itemsize
    if nbytes == 0:
        return np.empty(shape, dtype=dtype)
    if not address:
        raise NullHandleError("NULL data pointer for a non-empty buffer")
    raw = (ctypes.c_char * nbytes).from_address(address)
    return np.frombuffer(raw, dtype=dtype).reshape(shape)


class MemoryInfo(NativeHandle):
    """Descriptor of a memory location (device name, id, memory kind)."""

    _release_entry = 'ReleaseMemoryInfo'

    @classmethod
    def cpu(cls, allocator_type=AllocatorType.ARENA, memory_type=MemoryType.DEFAULT, *, api=None):
        api = api or _ffi.get_api()
        out = ctypes.c_void_p()
        api.call('CreateCpuMemoryInfo', int(allocator_type), int(memory_type), ctypes.byref(out))
        return cls.owned(out.value, api=api)

    @classmethod
    def for_device(cls, device_name, device_id=0, allocator_type=AllocatorType.DEVICE,
                   memory_type=MemoryType.DEFAULT, *, api=None):
        api = api or _ffi.get_api()
        out = ctypes.c_void_p()
        api.call('CreateMemoryInfo', device_name.encode('utf-8'), int(allocator_type),
                 int(device_id), int(memory_type), ctypes.byref(out))
        return cls.owned(out.value, api=api)


class Allocator(NativeHandle):
    """Native allocation strategy scoped to one memory location."""

    _release_entry = 'ReleaseAllocator'

    @classmethod
    def default(cls, *, api=None):
        """The engine's default CPU allocator. Engine-owned, never released."""
        api = api or _ffi.get_api()
        out = ctypes.c_void_p()
        api.call('GetAllocatorWithDefaultOptions', ctypes.byref(out))
        return cls.borrowed(out.value, api=api)

    def alloc(self, nbytes):
        out = ctypes.c_void_p()
        self._api.call('AllocatorAlloc', self.ptr, int(nbytes), ctypes.byref(out))
        if not out.value and nbytes:
            raise NullHandleError(f"allocator returned NULL for {nbytes} bytes")
        return out.value or 0

    def free(self, address):
        self._api.call('AllocatorFree', self.ptr, ctypes.c_void_p(address))


def _free_scratch(allocator, address):
    logger.debug(f"freeing scratch buffer @ {address:#x}")
    allocator.free(address)


class ScratchBuffer:
    """Native buffer of ``count`` elements owned exclusively by this object
    and returned to its originating allocator exactly once."""

    def __init__(self, allocator, address, count, dtype):
        if not address:
            raise NullHandleError("NULL scratch buffer")
        self.allocator = allocator
        self.address = int(address)
        self.count = int(count)
        self.dtype = np.dtype(dtype)
        self._finalizer = weakref.finalize(self, _free_scratch, allocator, self.address)

    @property
    def nbytes(self):
        return self.count * self.dtype.itemsize

    @property
    def freed(self):
        return not self._finalizer.alive

    def numpy(self):
        """Writable view of the buffer; invalid once the buffer is freed."""
        if self.freed:
            raise HandleRetiredError("scratch buffer used after free")
        return native_view(self.address, (self.count,), self.dtype)

    def free(self):
        self._finalizer()

    def __len__(self):
        return self.count

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.free()

    def __repr__(self):
        state = 'freed' if self.freed else f"@ {self.address:#x}"
        return f"ScratchBuffer({self.count} x {self.dtype}, {state})"
