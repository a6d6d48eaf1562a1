"""Tensor element types and their numpy counterparts."""

from enum import IntEnum

import numpy as np


class TensorElementType(IntEnum):
    UNDEFINED = 0
    FLOAT = 1
    UINT8 = 2
    INT8 = 3
    UINT16 = 4
    INT16 = 5
    INT32 = 6
    INT64 = 7
    STRING = 8
    BOOL = 9
    FLOAT16 = 10
    DOUBLE = 11
    UINT32 = 12
    UINT64 = 13
    COMPLEX64 = 14
    COMPLEX128 = 15
    BFLOAT16 = 16

    @property
    def numpy_dtype(self):
        """numpy dtype, or None when numpy has no fixed-width equivalent."""
        return _TO_NUMPY.get(self)

    @property
    def itemsize(self):
        if self is TensorElementType.BFLOAT16:
            return 2
        dt = self.numpy_dtype
        return dt.itemsize if dt is not None else None

    @classmethod
    def from_numpy(cls, dtype):
        dtype = np.dtype(dtype)
        for k, v in _TO_NUMPY.items():
            if v == dtype:
                return k
        raise ValueError(f"no tensor element type for numpy dtype {dtype}")


_TO_NUMPY = {
    TensorElementType.FLOAT: np.dtype(np.float32),
    TensorElementType.UINT8: np.dtype(np.uint8),
    TensorElementType.INT8: np.dtype(np.int8),
    TensorElementType.UINT16: np.dtype(np.uint16),
    TensorElementType.INT16: np.dtype(np.int16),
    TensorElementType.INT32: np.dtype(np.int32),
    TensorElementType.INT64: np.dtype(np.int64),
    TensorElementType.BOOL: np.dtype(np.bool_),
    TensorElementType.FLOAT16: np.dtype(np.float16),
    TensorElementType.DOUBLE: np.dtype(np.float64),
    TensorElementType.UINT32: np.dtype(np.uint32),
    TensorElementType.UINT64: np.dtype(np.uint64),
    TensorElementType.COMPLEX64: np.dtype(np.complex64),
    TensorElementType.COMPLEX128: np.dtype(np.complex128),
}


def as_element_type(dtype):
    """Accept a TensorElementType, its name, or anything np.dtype() takes."""
    if isinstance(dtype, TensorElementType):
        return dtype
    if isinstance(dtype, str) and dtype.upper() in TensorElementType.__members__:
        return TensorElementType[dtype.upper()]
    return TensorElementType.from_numpy(dtype)
