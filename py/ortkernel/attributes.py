"""
Operator attribute decoding.

Each supported attribute type has one entry in DECODERS with two
independent extraction paths:
- by name on a kernel info handle (used while constructing a kernel)
- from a raw op-attribute buffer (used when only a generic attribute
  handle is at hand); not every type supports this path
"""

import ctypes
import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional

import numpy as np

from . import _ffi
from .errors import AttributeDecodeError, ContractError, InvariantViolation, KernelBridgeError
from .handle import NativeHandle
from .memory import Allocator
from .value import Tensor, Value

logger = logging.getLogger("ortkernel.attributes")


class AttributeType(IntEnum):
    """Native attribute type tags."""

    UNDEFINED = 0
    INT = 1
    INTS = 2
    FLOAT = 3
    FLOATS = 4
    STRING = 5
    STRINGS = 6
    GRAPH = 7
    TENSOR = 8


def _to_numpy(buf, dtype):
    if len(buf) == 0:
        return np.empty(0, dtype=dtype)
    return np.ctypeslib.as_array(buf).astype(dtype, copy=True)


# --- Path 1: named attribute on kernel info ---

def _info_float(api, info, name, element_type=None):
    out = ctypes.c_float(0.0)
    api.call('KernelInfoGetAttribute_float', info, name, ctypes.byref(out))
    return float(out.value)


def _info_int(api, info, name, element_type=None):
    out = ctypes.c_int64(0)
    api.call('KernelInfoGetAttribute_int64', info, name, ctypes.byref(out))
    return int(out.value)


def _info_string(api, info, name, element_type=None):
    op = 'KernelInfoGetAttribute_string'
    return _ffi.read_string(lambda buf, size: api.call(op, info, name, buf, size), op)


def _info_floats(api, info, name, element_type=None):
    op = 'KernelInfoGetAttributeArray_float'
    buf = _ffi.read_array(lambda buf, size: api.call(op, info, name, buf, size), ctypes.c_float, op)
    return _to_numpy(buf, np.float32)


def _info_ints(api, info, name, element_type=None):
    op = 'KernelInfoGetAttributeArray_int64'
    buf = _ffi.read_array(lambda buf, size: api.call(op, info, name, buf, size), ctypes.c_int64, op)
    return _to_numpy(buf, np.int64)


def _info_tensor(api, info, name, element_type=None):
    # The allocator only backs the engine's internal tensor state.
    allocator = Allocator.default(api=api)
    out = ctypes.c_void_p()
    api.call('KernelInfoGetAttribute_tensor', info, name, allocator.ptr, ctypes.byref(out))
    value = Value.owned(out.value, api=api)
    try:
        return value.downcast(element_type)
    except KernelBridgeError:
        value.release()
        raise


# --- Path 2: raw op-attribute buffer ---

def _read_scalar(api, attr, tag, ctype):
    out = ctype()
    size = ctypes.sizeof(ctype)
    written = ctypes.c_size_t(0)
    api.call('ReadOpAttr', attr, int(tag), ctypes.addressof(out), size, ctypes.byref(written))
    _ffi.ensure_filled('ReadOpAttr', size, written.value)
    return out.value


def _read_bytes(api, attr, tag, length):
    if length is None:
        needed = ctypes.c_size_t(0)
        api.call('ReadOpAttr', attr, int(tag), None, 0, ctypes.byref(needed))
        length = needed.value
    buf = ctypes.create_string_buffer(length)
    written = ctypes.c_size_t(0)
    api.call('ReadOpAttr', attr, int(tag), ctypes.addressof(buf), length, ctypes.byref(written))
    _ffi.ensure_filled('ReadOpAttr', length, written.value)
    return buf.raw


def _read_array(api, attr, tag, length, dtype):
    raw = _read_bytes(api, attr, tag, length)
    if len(raw) % dtype.itemsize:
        raise InvariantViolation(
            f"ReadOpAttr returned {len(raw)} bytes for {dtype} elements")
    if not raw:
        return np.empty(0, dtype=dtype)
    return np.frombuffer(raw, dtype=dtype).copy()


def _op_float(api, attr, length=None):
    return float(_read_scalar(api, attr, AttributeType.FLOAT, ctypes.c_float))


def _op_int(api, attr, length=None):
    return int(_read_scalar(api, attr, AttributeType.INT, ctypes.c_int64))


def _op_string(api, attr, length=None):
    return _ffi.decode_c_string(_read_bytes(api, attr, AttributeType.STRING, length), 'ReadOpAttr')


def _op_floats(api, attr, length=None):
    return _read_array(api, attr, AttributeType.FLOATS, length, np.dtype(np.float32))


def _op_ints(api, attr, length=None):
    return _read_array(api, attr, AttributeType.INTS, length, np.dtype(np.int64))


@dataclass(frozen=True)
class AttributeDecoder:
    tag: AttributeType
    host_type: type
    from_kernel_info: Callable
    from_op_attr: Optional[Callable] = None


DECODERS = {
    AttributeType.FLOAT: AttributeDecoder(AttributeType.FLOAT, float, _info_float, _op_float),
    AttributeType.INT: AttributeDecoder(AttributeType.INT, int, _info_int, _op_int),
    AttributeType.STRING: AttributeDecoder(AttributeType.STRING, str, _info_string, _op_string),
    AttributeType.FLOATS: AttributeDecoder(AttributeType.FLOATS, np.ndarray, _info_floats, _op_floats),
    AttributeType.INTS: AttributeDecoder(AttributeType.INTS, np.ndarray, _info_ints, _op_ints),
    AttributeType.TENSOR: AttributeDecoder(AttributeType.TENSOR, Tensor, _info_tensor),
}

_ALIASES = {
    float: AttributeType.FLOAT,
    int: AttributeType.INT,
    str: AttributeType.STRING,
    'float': AttributeType.FLOAT,
    'int': AttributeType.INT,
    'string': AttributeType.STRING,
    'str': AttributeType.STRING,
    'floats': AttributeType.FLOATS,
    'ints': AttributeType.INTS,
    'tensor': AttributeType.TENSOR,
}


def resolve_kind(kind):
    """Map an AttributeType, a Python type or a kind name to a decodable
    AttributeType."""
    if isinstance(kind, AttributeType):
        resolved = kind
    else:
        key = kind.lower() if isinstance(kind, str) else kind
        resolved = _ALIASES.get(key)
        if resolved is None:
            raise ValueError(f"unknown attribute kind {kind!r}")
    if resolved not in DECODERS:
        raise ValueError(f"attributes of type {resolved.name} cannot be decoded")
    return resolved


def infer_kind(value):
    if isinstance(value, str):
        return AttributeType.STRING
    if isinstance(value, (bool, int, np.integer)):
        return AttributeType.INT
    if isinstance(value, (float, np.floating)):
        return AttributeType.FLOAT
    arr = np.asarray(value)
    if arr.ndim == 1 and arr.size:
        if np.issubdtype(arr.dtype, np.integer):
            return AttributeType.INTS
        if np.issubdtype(arr.dtype, np.floating):
            return AttributeType.FLOATS
    raise ValueError(f"cannot infer attribute type of {value!r}; pass kind explicitly")


def get_kernel_attribute(info, name, kind, element_type=None):
    """Decode attribute ``name`` from a kernel info handle.

    Raises AttributeDecodeError when the attribute is missing, has another
    type, or does not decode.
    """
    tag = resolve_kind(kind)
    ptr = info.ptr
    if '\0' in name:
        raise AttributeDecodeError(name, tag.name, "name contains NUL")
    decoder = DECODERS[tag]
    try:
        return decoder.from_kernel_info(info._api, ptr, name.encode('utf-8'), element_type)
    except KernelBridgeError as e:
        raise AttributeDecodeError(name, tag.name, str(e)) from e


def read_op_attr(attr, kind, length=None):
    """Decode a raw op-attribute buffer. ``length`` is the byte length of
    string/array payloads when already known; otherwise it is queried."""
    tag = resolve_kind(kind)
    decoder = DECODERS[tag]
    if decoder.from_op_attr is None:
        raise ContractError(f"{tag.name} attributes cannot be read from a raw attribute buffer")
    return decoder.from_op_attr(attr._api, attr.ptr, length)


def _encode(tag, value):
    """(buffer, element count) for CreateOpAttr."""
    if tag is AttributeType.FLOAT:
        return ctypes.c_float(float(value)), 1
    if tag is AttributeType.INT:
        return ctypes.c_int64(int(value)), 1
    if tag is AttributeType.STRING:
        data = value.encode('utf-8')
        return ctypes.create_string_buffer(data, len(data)), len(data)
    if tag is AttributeType.FLOATS:
        values = [float(v) for v in value]
        return (ctypes.c_float * len(values))(*values), len(values)
    if tag is AttributeType.INTS:
        values = [int(v) for v in value]
        return (ctypes.c_int64 * len(values))(*values), len(values)
    raise ValueError(f"cannot create a {tag.name} attribute")


class OpAttr(NativeHandle):
    """Native op-attribute buffer."""

    _release_entry = 'ReleaseOpAttr'
    name = None
    kind = None

    @classmethod
    def create(cls, name, value, kind=None, *, api=None):
        api = api or _ffi.get_api()
        tag = resolve_kind(kind) if kind is not None else infer_kind(value)
        data, length = _encode(tag, value)
        out = ctypes.c_void_p()
        api.call('CreateOpAttr', name.encode('utf-8'), ctypes.addressof(data), length,
                 int(tag), ctypes.byref(out))
        attr = cls.owned(out.value, api=api)
        attr.name = name
        attr.kind = tag
        return attr

    def read(self, kind=None, length=None):
        kind = kind if kind is not None else self.kind
        if kind is None:
            raise ValueError("attribute kind unknown; pass kind explicitly")
        return read_op_attr(self, kind, length)
