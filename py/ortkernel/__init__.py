"""ortkernel: write graph-engine operator kernels in Python over the engine's C ABI."""

import logging

from .config import get_config

logging.getLogger("ortkernel").addHandler(logging.NullHandler())
if get_config().log_level:
    logging.getLogger("ortkernel").setLevel(get_config().log_level.upper())

from ._ffi import NativeApi, get_api, install
from .attributes import AttributeType, OpAttr
from .bridge import KernelBridge
from .dtype import TensorElementType
from .errors import (
    AttributeDecodeError, ConstantInputError, ContractError, DowncastError, ErrorCode,
    InvariantViolation, KernelBridgeError, NativeCallError, ParallelWorkError, UnavailableError,
)
from .kernel import Kernel, KernelAttributes, KernelContext
from .memory import Allocator, AllocatorType, MemoryInfo, MemoryType, ScratchBuffer
from .value import Input, ONNXType, Output, Tensor, Value, ValueType

__all__ = [
    'NativeApi', 'get_api', 'install',
    'AttributeType', 'OpAttr', 'KernelBridge', 'TensorElementType',
    'AttributeDecodeError', 'ConstantInputError', 'ContractError', 'DowncastError', 'ErrorCode',
    'InvariantViolation', 'KernelBridgeError', 'NativeCallError', 'ParallelWorkError',
    'UnavailableError',
    'Kernel', 'KernelAttributes', 'KernelContext',
    'Allocator', 'AllocatorType', 'MemoryInfo', 'MemoryType', 'ScratchBuffer',
    'Input', 'ONNXType', 'Output', 'Tensor', 'Value', 'ValueType',
]
__version__ = '0.1.0'
