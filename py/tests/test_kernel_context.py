"""Tests for the per-invocation kernel context."""

import numpy as np
import pytest

from ortkernel import KernelContext, MemoryInfo, ScratchBuffer
from ortkernel.errors import (
    HandleRetiredError, NativeCallError, NullHandleError, ScratchBufferUnavailableError,
)
from ortkernel.memory import Allocator


class TestInputsOutputs:
    def test_read_input(self, engine):
        x = np.array([[1, 2], [3, 4]], dtype=np.float32)
        ctx = KernelContext.borrowed(engine.kernel_context(inputs=[x]))
        t = ctx.input(0).downcast(np.float32)
        assert t.shape == (2, 2)
        np.testing.assert_array_equal(t.numpy(), x)

    def test_write_output(self, engine):
        handle = engine.kernel_context(outputs=[np.int64])
        ctx = KernelContext.borrowed(handle)
        out = ctx.output(0, [3]).downcast('int64')
        out.numpy()[:] = [7, 8, 9]
        np.testing.assert_array_equal(engine.output_array(handle, 0), [7, 8, 9])

    def test_scalar_output(self, engine):
        handle = engine.kernel_context(outputs=[np.float32])
        ctx = KernelContext.borrowed(handle)
        out = ctx.output(0, ()).downcast()
        out.numpy()[...] = 2.5
        assert engine.output_array(handle, 0).shape == ()
        assert float(engine.output_array(handle, 0)) == 2.5

    def test_scalar_input(self, engine):
        ctx = KernelContext.borrowed(engine.kernel_context(inputs=[np.array(4.0, dtype=np.float32)]))
        t = ctx.input(0).downcast(np.float32)
        assert t.shape == ()
        assert float(t.numpy()) == 4.0

    def test_array_copy_semantics(self, engine):
        x = np.arange(3, dtype=np.int64)
        t = KernelContext.borrowed(engine.kernel_context(inputs=[x])).input(0).downcast()
        shared = t.__array__()
        shared[0] = 10
        assert t.numpy()[0] == 10
        copied = t.__array__(copy=True)
        copied[1] = 20
        assert t.numpy()[1] == 1
        np.testing.assert_array_equal(t.__array__(np.int64, copy=False), [10, 1, 2])
        np.testing.assert_array_equal(t.__array__(np.float64), [10.0, 1.0, 2.0])
        with pytest.raises(ValueError):
            t.__array__(np.float64, copy=False)

    def test_absent_slots(self, engine):
        ctx = KernelContext.borrowed(engine.kernel_context(inputs=[None], outputs=[None]))
        assert ctx.input(0) is None
        assert ctx.output(0, [1]) is None

    def test_out_of_range_is_error(self, engine):
        ctx = KernelContext.borrowed(engine.kernel_context(inputs=[np.zeros(1)]))
        with pytest.raises(NativeCallError):
            ctx.input(3)

    def test_counts(self, engine):
        ctx = KernelContext.borrowed(engine.kernel_context(
            inputs=[np.zeros(1), None, np.zeros(2)], outputs=[np.float32, None]))
        assert ctx.num_inputs() == 3
        assert ctx.num_outputs() == 2
        present = [i for i in range(ctx.num_inputs()) if ctx.input(i) is not None]
        assert present == [0, 2]

    def test_values_are_borrowed(self, engine):
        ctx = KernelContext.borrowed(engine.kernel_context(inputs=[np.zeros(1)], outputs=[np.float32]))
        ctx.input(0).release()
        ctx.output(0, [1]).release()
        assert engine.releases['ReleaseValue'] == 0

    def test_retire_expires_values(self, engine):
        ctx = KernelContext.borrowed(engine.kernel_context(inputs=[np.zeros(1)]))
        value = ctx.input(0)
        ctx.retire()
        with pytest.raises(HandleRetiredError):
            value.downcast()
        with pytest.raises(HandleRetiredError):
            ctx.num_inputs()

    def test_context_cannot_own(self, engine):
        with pytest.raises(TypeError):
            KernelContext.owned(engine.kernel_context())

    def test_null_context(self, engine):
        with pytest.raises(NullHandleError):
            KernelContext.borrowed(0)


class TestResources:
    def test_resource(self, engine):
        ctx = KernelContext.borrowed(engine.kernel_context(resources={(2, 1): 0xBEEF0}))
        assert ctx.get_resource(2, 1) == 0xBEEF0
        assert ctx.get_resource(3, 1) is None

    def test_unsupported_resource(self, engine):
        ctx = KernelContext.borrowed(engine.kernel_context())
        engine.resources_unsupported = True
        assert ctx.get_resource(1, 1) is None

    def test_compute_stream(self, engine):
        assert KernelContext.borrowed(engine.kernel_context()).compute_stream() is None
        ctx = KernelContext.borrowed(engine.kernel_context(stream=0x7F00))
        assert ctx.compute_stream() == 0x7F00


class TestAllocation:
    def test_allocator(self, engine):
        ctx = KernelContext.borrowed(engine.kernel_context())
        with MemoryInfo.cpu() as info, ctx.allocator(info) as allocator:
            address = allocator.alloc(16)
            allocator.free(address)
        assert engine.releases['ReleaseAllocator'] == 1
        assert engine.releases['ReleaseMemoryInfo'] == 1

    def test_scratch_disabled_by_default(self, engine, config):
        ctx = KernelContext.borrowed(engine.kernel_context())
        with MemoryInfo.cpu() as info:
            with pytest.raises(ScratchBufferUnavailableError):
                ctx.allocate(info, 8)

    def test_scratch_enabled(self, engine, config):
        config.enable_scratch_buffers = True
        ctx = KernelContext.borrowed(engine.kernel_context())
        with MemoryInfo.cpu() as info:
            buf = ctx.allocate(info, 4, np.int32)
        assert isinstance(buf, ScratchBuffer)
        assert buf.nbytes == 16
        buf.numpy()[:] = [1, 2, 3, 4]
        np.testing.assert_array_equal(buf.numpy(), [1, 2, 3, 4])
        address = buf.address
        buf.free()
        assert address not in engine.allocated()


class TestScratchBuffer:
    def test_freed_once(self, engine):
        allocator = Allocator.default()
        buf = ScratchBuffer(allocator, allocator.alloc(8), 2, np.float32)
        with buf:
            buf.numpy()[:] = 1.0
        buf.free()
        assert buf.freed
        with pytest.raises(HandleRetiredError):
            buf.numpy()

    def test_freed_on_collect(self, engine):
        allocator = Allocator.default()
        address = allocator.alloc(8)
        buf = ScratchBuffer(allocator, address, 1, np.float64)
        del buf
        assert address not in engine.allocated()

    def test_default_allocator_never_released(self, engine):
        allocator = Allocator.default()
        allocator.release()
        del allocator
        assert engine.releases['ReleaseAllocator'] == 0
