"""Value handles, declared value types and input/output descriptors."""

import ctypes
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

import numpy as np

from .dtype import TensorElementType, as_element_type
from .errors import DowncastError
from .handle import NativeHandle
from .memory import native_view


class ONNXType(IntEnum):
    UNKNOWN = 0
    TENSOR = 1
    SEQUENCE = 2
    MAP = 3
    OPAQUE = 4
    SPARSE_TENSOR = 5
    OPTIONAL = 6


class TypeInfo(NativeHandle):
    _release_entry = 'ReleaseTypeInfo'


class TensorTypeAndShapeInfo(NativeHandle):
    _release_entry = 'ReleaseTensorTypeAndShapeInfo'


def read_tensor_info(api, tensor_info):
    """(element type, dims) of a tensor type-and-shape handle. Symbolic
    dimensions come back as -1."""
    elem = ctypes.c_int(0)
    api.call('GetTensorElementType', tensor_info, ctypes.byref(elem))
    ndim = ctypes.c_size_t(0)
    api.call('GetDimensionsCount', tensor_info, ctypes.byref(ndim))
    dims = (ctypes.c_int64 * ndim.value)()
    api.call('GetDimensions', tensor_info, dims, ndim.value)
    return TensorElementType(elem.value), tuple(dims)


@dataclass(frozen=True)
class ValueType:
    kind: ONNXType
    element_type: Optional[TensorElementType] = None
    shape: Optional[tuple] = None

    @classmethod
    def tensor(cls, element_type, shape):
        return cls(ONNXType.TENSOR, as_element_type(element_type), tuple(shape))

    @classmethod
    def from_type_info(cls, type_info):
        api = type_info._api
        kind = ctypes.c_int(0)
        api.call('GetOnnxTypeFromTypeInfo', type_info.ptr, ctypes.byref(kind))
        kind = ONNXType(kind.value)
        if kind not in (ONNXType.TENSOR, ONNXType.SPARSE_TENSOR):
            return cls(kind)
        # Borrowed from type_info; not released separately.
        tensor_info = ctypes.c_void_p()
        api.call('CastTypeInfoToTensorInfo', type_info.ptr, ctypes.byref(tensor_info))
        if not tensor_info.value:
            return cls(kind)
        element_type, shape = read_tensor_info(api, tensor_info)
        return cls(kind, element_type, shape)

    def __str__(self):
        if self.element_type is None:
            return self.kind.name.lower()
        dims = ', '.join('?' if d < 0 else str(d) for d in self.shape or ())
        return f"{self.kind.name.lower()}<{self.element_type.name.lower()}>[{dims}]"


@dataclass(frozen=True)
class Input:
    name: str
    declared_type: ValueType


@dataclass(frozen=True)
class Output:
    name: str
    declared_type: ValueType


class Value(NativeHandle):
    """A native value (tensor, sequence, map, ...).

    Values handed out by a kernel context or as constant inputs are borrowed
    from the engine; values the engine creates on request (tensor
    attributes) are owned and released on drop.
    """

    _release_entry = 'ReleaseValue'

    @property
    def onnx_type(self):
        out = ctypes.c_int(0)
        self._api.call('GetValueType', self.ptr, ctypes.byref(out))
        return ONNXType(out.value)

    @property
    def is_tensor(self):
        out = ctypes.c_int(0)
        self._api.call('IsTensor', self.ptr, ctypes.byref(out))
        return bool(out.value)

    def tensor_info(self):
        out = ctypes.c_void_p()
        self._api.call('GetTensorTypeAndShape', self.ptr, ctypes.byref(out))
        with TensorTypeAndShapeInfo.owned(out.value, api=self._api) as info:
            return read_tensor_info(self._api, info.ptr)

    @property
    def value_type(self):
        kind = self.onnx_type
        if kind is not ONNXType.TENSOR:
            return ValueType(kind)
        element_type, shape = self.tensor_info()
        return ValueType(kind, element_type, shape)

    def downcast(self, element_type=None):
        """Typed tensor view, checked against ``element_type`` when given."""
        wanted = as_element_type(element_type) if element_type is not None else None
        expected = f"tensor<{wanted.name.lower()}>" if wanted is not None else "tensor"
        if not self.is_tensor:
            raise DowncastError(expected, self.onnx_type.name.lower())
        actual, shape = self.tensor_info()
        if wanted is not None and actual is not wanted:
            raise DowncastError(expected, f"tensor<{actual.name.lower()}>")
        return Tensor(self, actual, shape)


class Tensor:
    """Typed view of a tensor Value; shares the value's handle and ownership."""

    def __init__(self, value, element_type, shape):
        self.value = value
        self.element_type = element_type
        self.shape = tuple(shape)

    @property
    def dtype(self):
        return self.element_type.numpy_dtype

    @property
    def size(self):
        n = 1
        for d in self.shape:
            n *= d
        return n

    def data_ptr(self):
        out = ctypes.c_void_p()
        self.value._api.call('GetTensorMutableData', self.value.ptr, ctypes.byref(out))
        return out.value or 0

    def numpy(self):
        """Return a numpy view of the tensor data (mutable, zero-copy)."""
        if self.dtype is None:
            raise DowncastError("numpy-compatible tensor", f"tensor<{self.element_type.name.lower()}>")
        return native_view(self.data_ptr(), self.shape, self.dtype)

    def __array__(self, dtype=None, copy=None):
        arr = self.numpy()
        if dtype is not None and np.dtype(dtype) != arr.dtype:
            if copy is False:
                raise ValueError(
                    f"cannot present a {arr.dtype} tensor as {np.dtype(dtype)} without copying")
            return arr.astype(dtype)
        return arr.copy() if copy else arr

    def release(self):
        self.value.release()

    def __repr__(self):
        return f"Tensor({self.element_type.name.lower()}, shape={self.shape}, {self.value!r})"
