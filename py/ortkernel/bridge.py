"""
Entry points the engine calls to build, run and drop kernels.

A KernelBridge wraps a factory ``factory(KernelAttributes) -> Kernel``.
Its create/compute/destroy callbacks have C prototypes; exceptions never
cross the boundary and are handed back as native statuses instead.
"""

import ctypes
import logging
import threading

from . import _ffi
from .errors import ContractError, ErrorCode, InvariantViolation, NativeCallError
from .kernel import KernelAttributes, KernelContext, as_kernel

logger = logging.getLogger("ortkernel.bridge")

# status CreateKernel(const op*, const api*, const kernel_info*, void **kernel)
CREATE_KERNEL_FN = ctypes.CFUNCTYPE(
    ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p,
    ctypes.POINTER(ctypes.c_void_p))
# status KernelCompute(void *kernel, kernel_context*)
KERNEL_COMPUTE_FN = ctypes.CFUNCTYPE(ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p)
# void KernelDestroy(void *kernel)
KERNEL_DESTROY_FN = ctypes.CFUNCTYPE(None, ctypes.c_void_p)


class KernelBridge:
    """Owns the kernels built by ``factory`` and the callbacks that reach them.

    Kernels are identified towards the engine by small integer ids; the
    engine never sees a Python object address.
    """

    def __init__(self, factory, *, name=None, api=None):
        self.factory = factory
        self.name = name or getattr(factory, '__name__', type(factory).__name__)
        self._api = api
        self._kernels = {}
        self._next_id = 1
        self._lock = threading.Lock()
        # Keep the thunks referenced for as long as the engine may call them.
        self.create_kernel_fn = CREATE_KERNEL_FN(self._create_kernel_cb)
        self.compute_fn = KERNEL_COMPUTE_FN(self._compute_cb)
        self.destroy_fn = KERNEL_DESTROY_FN(self._destroy_cb)

    @property
    def api(self):
        return self._api or _ffi.get_api()

    def __len__(self):
        with self._lock:
            return len(self._kernels)

    def kernel(self, kernel_id):
        with self._lock:
            kernel = self._kernels.get(kernel_id)
        if kernel is None:
            raise ContractError(f"unknown kernel id {kernel_id}", context={"op": self.name})
        return kernel

    def create_kernel(self, info_address):
        """Run the factory on a borrowed kernel info; returns the kernel id."""
        attrs = KernelAttributes.borrowed(info_address, api=self.api)
        try:
            kernel = as_kernel(self.factory(attrs))
        finally:
            attrs.retire()
        with self._lock:
            kernel_id = self._next_id
            self._next_id += 1
            self._kernels[kernel_id] = kernel
        logger.debug(f"created {self.name} kernel #{kernel_id}")
        return kernel_id

    def compute(self, kernel_id, context_address):
        kernel = self.kernel(kernel_id)
        ctx = KernelContext.borrowed(context_address, api=self.api)
        try:
            kernel.compute(ctx)
        finally:
            ctx.retire()

    def destroy(self, kernel_id):
        with self._lock:
            kernel = self._kernels.pop(kernel_id, None)
        if kernel is None:
            logger.warning(f"destroy of unknown {self.name} kernel #{kernel_id}")
        else:
            logger.debug(f"destroyed {self.name} kernel #{kernel_id}")

    # --- C callbacks ---

    def _create_kernel_cb(self, op, api, info, out_kernel):
        # ``api`` is the engine's own table; calls go through self.api.
        try:
            out_kernel[0] = self.create_kernel(info)
        except BaseException as e:
            return self._to_status('CreateKernel', e)
        return None

    def _compute_cb(self, kernel, context):
        try:
            self.compute(kernel, context)
        except BaseException as e:
            return self._to_status('KernelCompute', e)
        return None

    def _destroy_cb(self, kernel):
        self.destroy(kernel)

    def _to_status(self, where, exc):
        if isinstance(exc, InvariantViolation):
            logger.critical(f"{where} for {self.name}: native contract broken", exc_info=exc)
        else:
            logger.error(f"{where} failed for {self.name}: {exc}", exc_info=exc)
        code = ErrorCode.RUNTIME_EXCEPTION
        if isinstance(exc, NativeCallError) and isinstance(exc.code, ErrorCode):
            code = exc.code
        return self.api.create_status(code, f"{self.name}: {exc}")
