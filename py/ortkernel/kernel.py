"""Kernel metadata and per-invocation execution context."""

import ctypes
import logging
from abc import ABC, abstractmethod

import numpy as np

from . import _ffi
from .attributes import get_kernel_attribute
from .config import get_config
from .errors import (
    ConstantInputError,
    ErrorCode,
    InvariantViolation,
    KernelBridgeError,
    NativeCallError,
    ScratchBufferUnavailableError,
)
from .handle import NativeHandle
from .memory import Allocator, MemoryType, ScratchBuffer
from .parallel import parallel_for
from .value import Input, Output, TypeInfo, Value, ValueType

logger = logging.getLogger("ortkernel.kernel")


class Kernel(ABC):
    """Compute routine backing one operator instance."""

    @abstractmethod
    def compute(self, ctx):
        """Run one graph execution step. Raise to fail the step."""


class FunctionKernel(Kernel):
    """Adapts a plain ``fn(ctx)`` callable."""

    def __init__(self, fn):
        self.fn = fn

    def compute(self, ctx):
        return self.fn(ctx)


def as_kernel(obj):
    if isinstance(obj, Kernel):
        return obj
    if callable(obj):
        return FunctionKernel(obj)
    raise TypeError(f"{type(obj).__name__} is neither a Kernel nor callable")


class _Lender(NativeHandle):
    """Handle whose borrowed values expire together with it."""

    def __init__(self, address, owned, *, api=None):
        super().__init__(address, owned, api=api)
        self._lent = []

    def _lend(self, address):
        if not address:
            return None
        value = Value.borrowed(address, api=self._api)
        self._lent.append(value)
        return value

    def _expire_lent(self):
        for value in self._lent:
            value.retire()
        self._lent.clear()

    def retire(self):
        self._expire_lent()
        super().retire()

    def release(self):
        if self._owned:
            self._expire_lent()
        super().release()


class KernelAttributes(_Lender):
    """View of a kernel info handle: declared inputs/outputs, attributes,
    constant inputs.

    The handle passed to a kernel factory is borrowed and only valid while
    the factory runs; clone() it to keep it.
    """

    _release_entry = 'ReleaseKernelInfo'

    def attribute(self, name, kind=float, element_type=None):
        """Decode attribute ``name`` as ``kind``; raises AttributeDecodeError."""
        return get_kernel_attribute(self, name, kind, element_type)

    def get(self, name, kind=float, element_type=None):
        """Like attribute(), but a missing or mistyped attribute gives None."""
        try:
            return get_kernel_attribute(self, name, kind, element_type)
        except KernelBridgeError as e:
            if not self.alive:
                raise
            logger.debug(f"attribute '{name}' unavailable: {e}")
            return None

    def _count(self, op):
        n = ctypes.c_size_t(0)
        self._api.call(op, self.ptr, ctypes.byref(n))
        return n.value

    def _describe(self, idx, name_op, type_op):
        ptr = self.ptr
        name = _ffi.read_string(
            lambda buf, size: self._api.call(name_op, ptr, idx, buf, size), name_op)
        out = ctypes.c_void_p()
        self._api.call(type_op, ptr, idx, ctypes.byref(out))
        with TypeInfo.owned(out.value, api=self._api) as type_info:
            return name, ValueType.from_type_info(type_info)

    def inputs(self):
        count = self._count('KernelInfo_GetInputCount')
        return [Input(*self._describe(i, 'KernelInfo_GetInputName', 'KernelInfo_GetInputTypeInfo'))
                for i in range(count)]

    def outputs(self):
        count = self._count('KernelInfo_GetOutputCount')
        return [Output(*self._describe(i, 'KernelInfo_GetOutputName', 'KernelInfo_GetOutputTypeInfo'))
                for i in range(count)]

    def constant_input(self, index, element_type=None):
        """Borrowed value of a constant input; a Tensor when ``element_type``
        is given. Never release it; it expires together with this view."""
        is_constant = ctypes.c_int(0)
        out = ctypes.c_void_p()
        self._api.call('KernelInfoGetConstantInput_tensor', self.ptr, int(index),
                       ctypes.byref(is_constant), ctypes.byref(out))
        if not is_constant.value or not out.value:
            raise ConstantInputError(index)
        value = self._lend(out.value)
        if element_type is None:
            return value
        return value.downcast(element_type)

    def node_name(self):
        ptr = self.ptr
        op = 'KernelInfo_GetNodeName'
        return _ffi.read_string(lambda buf, size: self._api.call(op, ptr, buf, size), op)

    def allocator(self, memory_type=MemoryType.DEFAULT):
        out = ctypes.c_void_p()
        self._api.call('KernelInfoGetAllocator', self.ptr, int(memory_type), ctypes.byref(out))
        return Allocator.owned(out.value, api=self._api)

    def clone(self):
        """Owned deep copy of the kernel info."""
        out = ctypes.c_void_p()
        try:
            self._api.call('CopyKernelInfo', self.ptr, ctypes.byref(out))
        except NativeCallError as e:
            raise InvariantViolation(f"failed to clone KernelAttributes: {e}") from e
        if not out.value:
            raise InvariantViolation("failed to clone KernelAttributes: NULL copy")
        return type(self).owned(out.value, api=self._api)

    def __copy__(self):
        return self.clone()

    def __deepcopy__(self, memo):
        return self.clone()


class KernelContext(_Lender):
    """Per-invocation context. Borrowed, and valid for one compute() call;
    values it hands out expire with it."""

    def __init__(self, address, owned=False, *, api=None):
        super().__init__(address, owned, api=api)

    def input(self, index):
        """Input value at ``index``, or None if the slot is not connected."""
        out = ctypes.c_void_p()
        self._api.call('KernelContext_GetInput', self.ptr, int(index), ctypes.byref(out))
        return self._lend(out.value)

    def output(self, index, shape):
        """Output value at ``index``, allocated by the engine with ``shape``,
        or None if the slot is not connected."""
        dims = [int(d) for d in shape]
        arr = (ctypes.c_int64 * len(dims))(*dims)
        out = ctypes.c_void_p()
        self._api.call('KernelContext_GetOutput', self.ptr, int(index), arr, len(dims),
                       ctypes.byref(out))
        return self._lend(out.value)

    def num_inputs(self):
        n = ctypes.c_size_t(0)
        self._api.call('KernelContext_GetInputCount', self.ptr, ctypes.byref(n))
        return n.value

    def num_outputs(self):
        n = ctypes.c_size_t(0)
        self._api.call('KernelContext_GetOutputCount', self.ptr, ctypes.byref(n))
        return n.value

    def allocator(self, memory_info):
        out = ctypes.c_void_p()
        self._api.call('KernelContext_GetAllocator', self.ptr, memory_info.ptr, ctypes.byref(out))
        return Allocator.owned(out.value, api=self._api)

    def get_resource(self, resource_id, version):
        """Engine resource pointer (device handle, stream, ...) as an address,
        or None when the execution provider has no such resource."""
        out = ctypes.c_void_p()
        try:
            self._api.call('KernelContext_GetResource', self.ptr, int(version),
                           int(resource_id), ctypes.byref(out))
        except NativeCallError as e:
            if e.code != ErrorCode.NOT_IMPLEMENTED:
                raise
            logger.debug(f"resource {resource_id} (v{version}) not supported: {e.native_message}")
            return None
        return _ffi.out_address(out)

    def compute_stream(self):
        """Address of the device stream this kernel runs on, or None for
        providers without streams."""
        out = ctypes.c_void_p()
        self._api.call('KernelContext_GetGPUComputeStream', self.ptr, ctypes.byref(out))
        return _ffi.out_address(out)

    def par_for(self, total, max_batches, work):
        """See parallel.parallel_for."""
        parallel_for(self._api, self.ptr, total, max_batches, work)

    def allocate(self, memory_info, count, dtype=np.float32):
        """Scratch buffer of ``count`` elements from the engine.

        The native entry point crashes inside the engine, so acquisition is
        off unless ``enable_scratch_buffers`` is set in the configuration.
        """
        if not get_config().enable_scratch_buffers:
            raise ScratchBufferUnavailableError(
                "scratch buffer acquisition is disabled",
                context={"setting": "ORTKERNEL_SCRATCH_BUFFERS"})
        dtype = np.dtype(dtype)
        allocator = self.allocator(memory_info)
        out = ctypes.c_void_p()
        self._api.call('KernelContext_GetScratchBuffer', self.ptr, memory_info.ptr,
                       int(count) * dtype.itemsize, ctypes.byref(out))
        return ScratchBuffer(allocator, out.value, count, dtype)
