"""
ctypes bindings to the engine's C entry points.

Every entry takes opaque handles and returns a status pointer (NULL on
success). A NativeApi binds the entries either from a shared library or from
Python callables wrapped in the same prototypes, so both sides always cross
the same ctypes boundary.
"""

import ctypes
import logging
import threading

from . import errors
from .config import get_config

logger = logging.getLogger("ortkernel.ffi")

# --- Opaque pointer types ---
_ptr = ctypes.c_void_p
_status = ctypes.c_void_p
_size = ctypes.c_size_t
_int = ctypes.c_int
_sizep = ctypes.POINTER(ctypes.c_size_t)
_ptrp = ctypes.POINTER(ctypes.c_void_p)
_intp = ctypes.POINTER(ctypes.c_int)
_charp = ctypes.POINTER(ctypes.c_char)
_f32p = ctypes.POINTER(ctypes.c_float)
_i64p = ctypes.POINTER(ctypes.c_int64)
_str = ctypes.c_char_p

# void fn(void *user_data, size_t index); passed to KernelContext_ParallelFor
# as a plain pointer.
PARALLEL_FOR_FN = ctypes.CFUNCTYPE(None, ctypes.c_void_p, ctypes.c_size_t)

_SIGNATURES = {
    # --- Status ---
    'CreateStatus': (_status, [_int, _str]),
    'GetErrorCode': (_int, [_status]),
    'GetErrorMessage': (_ptr, [_status]),          # const char*, engine-owned
    'ReleaseStatus': (None, [_status]),

    # --- Kernel info ---
    'KernelInfo_GetInputCount': (_status, [_ptr, _sizep]),
    'KernelInfo_GetOutputCount': (_status, [_ptr, _sizep]),
    'KernelInfo_GetInputName': (_status, [_ptr, _size, _charp, _sizep]),
    'KernelInfo_GetOutputName': (_status, [_ptr, _size, _charp, _sizep]),
    'KernelInfo_GetInputTypeInfo': (_status, [_ptr, _size, _ptrp]),
    'KernelInfo_GetOutputTypeInfo': (_status, [_ptr, _size, _ptrp]),
    'KernelInfo_GetNodeName': (_status, [_ptr, _charp, _sizep]),
    'KernelInfoGetConstantInput_tensor': (_status, [_ptr, _size, _intp, _ptrp]),
    'KernelInfoGetAllocator': (_status, [_ptr, _int, _ptrp]),
    'CopyKernelInfo': (_status, [_ptr, _ptrp]),
    'ReleaseKernelInfo': (None, [_ptr]),

    # --- Attributes by name ---
    'KernelInfoGetAttribute_float': (_status, [_ptr, _str, _f32p]),
    'KernelInfoGetAttribute_int64': (_status, [_ptr, _str, _i64p]),
    'KernelInfoGetAttribute_string': (_status, [_ptr, _str, _charp, _sizep]),
    'KernelInfoGetAttributeArray_float': (_status, [_ptr, _str, _f32p, _sizep]),
    'KernelInfoGetAttributeArray_int64': (_status, [_ptr, _str, _i64p, _sizep]),
    'KernelInfoGetAttribute_tensor': (_status, [_ptr, _str, _ptr, _ptrp]),

    # --- Raw op attributes ---
    'CreateOpAttr': (_status, [_str, _ptr, _int, _int, _ptrp]),
    'ReadOpAttr': (_status, [_ptr, _int, _ptr, _size, _sizep]),
    'ReleaseOpAttr': (None, [_ptr]),

    # --- Kernel context ---
    'KernelContext_GetInputCount': (_status, [_ptr, _sizep]),
    'KernelContext_GetOutputCount': (_status, [_ptr, _sizep]),
    'KernelContext_GetInput': (_status, [_ptr, _size, _ptrp]),
    'KernelContext_GetOutput': (_status, [_ptr, _size, _i64p, _size, _ptrp]),
    'KernelContext_GetAllocator': (_status, [_ptr, _ptr, _ptrp]),
    'KernelContext_GetResource': (_status, [_ptr, _int, _int, _ptrp]),  # version, id
    'KernelContext_GetGPUComputeStream': (_status, [_ptr, _ptrp]),
    'KernelContext_ParallelFor': (_status, [_ptr, _ptr, _size, _size, _ptr]),
    'KernelContext_GetScratchBuffer': (_status, [_ptr, _ptr, _size, _ptrp]),

    # --- Memory ---
    'CreateCpuMemoryInfo': (_status, [_int, _int, _ptrp]),
    'CreateMemoryInfo': (_status, [_str, _int, _int, _int, _ptrp]),
    'ReleaseMemoryInfo': (None, [_ptr]),
    'GetAllocatorWithDefaultOptions': (_status, [_ptrp]),
    'AllocatorAlloc': (_status, [_ptr, _size, _ptrp]),
    'AllocatorFree': (_status, [_ptr, _ptr]),
    'ReleaseAllocator': (None, [_ptr]),

    # --- Values and type info ---
    'ReleaseValue': (None, [_ptr]),
    'GetValueType': (_status, [_ptr, _intp]),
    'IsTensor': (_status, [_ptr, _intp]),
    'GetTensorTypeAndShape': (_status, [_ptr, _ptrp]),
    'ReleaseTensorTypeAndShapeInfo': (None, [_ptr]),
    'GetTensorElementType': (_status, [_ptr, _intp]),
    'GetDimensionsCount': (_status, [_ptr, _sizep]),
    'GetDimensions': (_status, [_ptr, _i64p, _size]),
    'GetTensorMutableData': (_status, [_ptr, _ptrp]),
    'GetOnnxTypeFromTypeInfo': (_status, [_ptr, _intp]),
    'CastTypeInfoToTensorInfo': (_status, [_ptr, _ptrp]),  # borrowed result
    'ReleaseTypeInfo': (None, [_ptr]),
}

# Entries an engine build may leave out; calling one raises
# EntryPointUnavailableError instead of failing the load.
_OPTIONAL = frozenset([
    'CreateOpAttr', 'ReadOpAttr', 'ReleaseOpAttr',
    'KernelContext_GetResource', 'KernelContext_GetGPUComputeStream',
    'KernelContext_GetScratchBuffer',
])

PROTOTYPES = {
    name: ctypes.CFUNCTYPE(restype, *argtypes)
    for name, (restype, argtypes) in _SIGNATURES.items()
}


class NativeApi:
    """Table of bound entry points."""

    def __init__(self, entries, source='<callables>'):
        self.source = source
        self._entries = dict(entries)

    @classmethod
    def from_library(cls, path):
        """Bind every entry point exported by the shared library at ``path``."""
        try:
            lib = ctypes.CDLL(path)
        except OSError as e:
            raise errors.ConfigurationError(
                f"cannot load native library: {e}", context={"path": path}) from e
        entries = {}
        for name, proto in PROTOTYPES.items():
            try:
                entries[name] = proto((name, lib))
            except AttributeError:
                if name not in _OPTIONAL:
                    raise errors.ConfigurationError(
                        f"native library does not export '{name}'",
                        context={"path": path})
                logger.debug(f"optional entry point {name} not exported by {path}")
        return cls(entries, source=path)

    @classmethod
    def from_callables(cls, impls):
        """Wrap Python callables in the entry point prototypes.

        The callables receive raw ctypes arguments and must return a status
        address (or None) exactly as a native implementation would.
        """
        entries = {}
        for name, fn in impls.items():
            if name not in PROTOTYPES:
                raise ValueError(f"unknown entry point {name!r}")
            entries[name] = PROTOTYPES[name](fn)
        return cls(entries)

    def has(self, name):
        return name in self._entries

    def entry(self, name):
        fn = self._entries.get(name)
        if fn is None:
            raise errors.EntryPointUnavailableError(name)
        return fn

    def call(self, op, *args):
        """Invoke ``op`` and raise NativeCallError on a non-NULL status."""
        self.check(op, self.entry(op)(*args))

    def check(self, op, status):
        if not status:
            return
        try:
            code = self.entry('GetErrorCode')(status)
            msg_ptr = self.entry('GetErrorMessage')(status)
            message = ctypes.string_at(msg_ptr).decode('utf-8', 'replace') if msg_ptr else ''
        finally:
            self.entry('ReleaseStatus')(status)
        raise errors.NativeCallError(op, code, message)

    def release(self, op, address):
        self.entry(op)(address)

    def create_status(self, code, message):
        """Build a native status to hand back to the engine."""
        return self.entry('CreateStatus')(int(code), message.encode('utf-8', 'replace'))

    def __repr__(self):
        return f"NativeApi({self.source!r}, {len(self._entries)} entries)"


_api = None
_api_lock = threading.Lock()


def get_api():
    """Return the process-wide entry point table, loading it on first use."""
    global _api
    if _api is None:
        with _api_lock:
            if _api is None:
                path = get_config().library_path
                logger.info(f"loading native entry points from {path}")
                _api = NativeApi.from_library(path)
    return _api


def install(api):
    """Replace the process-wide table. Returns the previous one."""
    global _api
    with _api_lock:
        previous, _api = _api, api
    return previous


# --- Two-call (query size, then fill) helpers ---

def ensure_filled(operation, expected, actual):
    if expected != actual:
        raise errors.InvariantViolation(
            f"{operation} filled {actual} units after reporting {expected}")


def decode_c_string(raw, operation):
    """Convert a NUL-terminated buffer to str."""
    if not raw or raw[-1:] != b'\0' or b'\0' in raw[:-1]:
        raise errors.StringDecodeError(
            f"{operation} returned a buffer that is not a NUL-terminated string")
    try:
        return raw[:-1].decode('utf-8')
    except UnicodeDecodeError as e:
        raise errors.StringDecodeError(f"{operation} returned invalid UTF-8") from e


def read_string(fill, operation):
    """``fill(buffer, size_ptr)`` is called with a NULL buffer, then with one
    of exactly the reported size."""
    size = ctypes.c_size_t(0)
    fill(None, ctypes.byref(size))
    expected = size.value
    buf = ctypes.create_string_buffer(expected)
    fill(buf, ctypes.byref(size))
    ensure_filled(operation, expected, size.value)
    return decode_c_string(buf.raw, operation)


def read_array(fill, ctype, operation):
    """Same discipline as read_string for arrays of ``ctype``; returns the
    filled ctypes array."""
    size = ctypes.c_size_t(0)
    fill(None, ctypes.byref(size))
    expected = size.value
    buf = (ctype * expected)()
    fill(buf, ctypes.byref(size))
    ensure_filled(operation, expected, size.value)
    return buf


def out_address(out):
    """Address held by a ``c_void_p`` out parameter, or None."""
    return out.value or None
