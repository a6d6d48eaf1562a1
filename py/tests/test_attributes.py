"""Tests for attribute decoding, by name and from raw attribute buffers."""

import numpy as np
import pytest

from ortkernel import KernelAttributes, OpAttr
from ortkernel.attributes import AttributeType, get_kernel_attribute, infer_kind, resolve_kind
from ortkernel.errors import (
    AttributeDecodeError, ContractError, DowncastError, InvariantViolation, NativeCallError,
)
from ortkernel.value import Tensor


def _attrs(engine, **attributes):
    return KernelAttributes.borrowed(engine.kernel_info(attributes=attributes))


class TestResolveKind:
    def test_python_types(self):
        assert resolve_kind(float) is AttributeType.FLOAT
        assert resolve_kind(int) is AttributeType.INT
        assert resolve_kind(str) is AttributeType.STRING

    def test_names(self):
        assert resolve_kind('floats') is AttributeType.FLOATS
        assert resolve_kind('INTS') is AttributeType.INTS
        assert resolve_kind('tensor') is AttributeType.TENSOR

    def test_undecodable_type(self):
        with pytest.raises(ValueError):
            resolve_kind(AttributeType.GRAPH)
        with pytest.raises(ValueError):
            resolve_kind('graph')

    def test_infer(self):
        assert infer_kind(1.5) is AttributeType.FLOAT
        assert infer_kind(3) is AttributeType.INT
        assert infer_kind('x') is AttributeType.STRING
        assert infer_kind([1.0, 2.0]) is AttributeType.FLOATS
        assert infer_kind(np.array([1, 2], dtype=np.int64)) is AttributeType.INTS
        with pytest.raises(ValueError):
            infer_kind([])


class TestKernelInfoPath:
    def test_float(self, engine):
        assert _attrs(engine, alpha=0.25).get('alpha', float) == 0.25

    def test_int(self, engine):
        assert _attrs(engine, axis=-3).get('axis', int) == -3

    def test_string(self, engine):
        assert _attrs(engine, mode='linear').get('mode', str) == 'linear'

    def test_empty_string(self, engine):
        assert _attrs(engine, mode='').get('mode', str) == ''

    def test_unicode_string(self, engine):
        assert _attrs(engine, label='größe').get('label', str) == 'größe'

    def test_floats(self, engine):
        got = _attrs(engine, scales=[1.0, 0.5, 2.0]).get('scales', 'floats')
        assert got.dtype == np.float32
        np.testing.assert_array_equal(got, [1.0, 0.5, 2.0])

    def test_ints(self, engine):
        got = _attrs(engine, pads=[0, 1, 1, 0]).get('pads', 'ints')
        assert got.dtype == np.int64
        np.testing.assert_array_equal(got, [0, 1, 1, 0])

    def test_empty_arrays(self, engine):
        attrs = _attrs(engine, a=(AttributeType.FLOATS, []), b=(AttributeType.INTS, []))
        assert attrs.get('a', 'floats').shape == (0,)
        assert attrs.get('b', 'ints').shape == (0,)

    def test_tensor(self, engine):
        weights = np.arange(6, dtype=np.float32).reshape(2, 3)
        attrs = _attrs(engine, w=(AttributeType.TENSOR, weights))
        t = attrs.get('w', 'tensor', element_type=np.float32)
        assert isinstance(t, Tensor)
        assert t.shape == (2, 3)
        np.testing.assert_array_equal(t.numpy(), weights)
        assert t.value.is_owned

    def test_tensor_released_on_drop(self, engine):
        attrs = _attrs(engine, w=(AttributeType.TENSOR, np.ones(3, dtype=np.int64)))
        t = attrs.get('w', 'tensor')
        t.release()
        assert engine.releases['ReleaseValue'] == 1

    def test_tensor_downcast_mismatch(self, engine):
        attrs = _attrs(engine, w=(AttributeType.TENSOR, np.ones(3, dtype=np.int64)))
        assert attrs.get('w', 'tensor', element_type=np.float32) is None
        with pytest.raises(AttributeDecodeError) as exc:
            attrs.attribute('w', 'tensor', element_type='float')
        assert isinstance(exc.value.__cause__, DowncastError)
        # the engine-created value is released even though decoding failed
        assert engine.releases['ReleaseValue'] == 2


class TestAbsentAttributes:
    def test_missing_is_none(self, engine):
        assert _attrs(engine).get('nope', float) is None

    def test_wrong_type_is_none(self, engine):
        attrs = _attrs(engine, alpha=0.5)
        assert attrs.get('alpha', int) is None
        assert attrs.get('alpha', 'floats') is None

    def test_attribute_raises(self, engine):
        with pytest.raises(AttributeDecodeError) as exc:
            _attrs(engine).attribute('nope', int)
        assert exc.value.name == 'nope'
        assert isinstance(exc.value.__cause__, NativeCallError)

    def test_invalid_utf8_is_none(self, engine):
        attrs = _attrs(engine, raw=(AttributeType.STRING, b'\xff\xfe\x00'))
        assert attrs.get('raw', str) is None

    def test_missing_nul_is_none(self, engine):
        attrs = _attrs(engine, raw=(AttributeType.STRING, b'abc'))
        assert attrs.get('raw', str) is None

    def test_name_with_nul(self, engine):
        assert _attrs(engine, a=1).get('a\0b', int) is None

    def test_size_mismatch_is_fatal(self, engine):
        attrs = _attrs(engine, scales=[1.0, 2.0])
        engine.misreport_sizes = True
        with pytest.raises(InvariantViolation):
            attrs.get('scales', 'floats')


class TestOpAttr:
    @pytest.mark.parametrize('value,kind', [
        (0.75, AttributeType.FLOAT),
        (-12, AttributeType.INT),
        ('nearest', AttributeType.STRING),
        ('', AttributeType.STRING),
    ])
    def test_scalar_and_string(self, engine, value, kind):
        attr = OpAttr.create('a', value)
        assert attr.kind is kind
        assert attr.read() == value

    def test_arrays(self, engine):
        floats = OpAttr.create('f', [0.5, 1.5])
        ints = OpAttr.create('i', [3, 4, 5])
        np.testing.assert_array_equal(floats.read(), np.array([0.5, 1.5], dtype=np.float32))
        np.testing.assert_array_equal(ints.read(), [3, 4, 5])
        assert ints.read().dtype == np.int64

    def test_empty_arrays(self, engine):
        assert OpAttr.create('f', [], kind='floats').read().shape == (0,)
        assert OpAttr.create('i', [], kind='ints').read().shape == (0,)

    def test_known_length(self, engine):
        attr = OpAttr.create('i', [7, 8])
        np.testing.assert_array_equal(attr.read(length=16), [7, 8])

    def test_wrong_length_is_fatal(self, engine):
        attr = OpAttr.create('i', [7, 8])
        with pytest.raises(NativeCallError):
            attr.read(length=8)
        with pytest.raises(InvariantViolation):
            attr.read(length=24)

    def test_misreported_scalar_is_fatal(self, engine):
        attr = OpAttr.create('a', 2.0)
        engine.misreport_sizes = True
        with pytest.raises(InvariantViolation):
            attr.read()

    def test_wrong_type(self, engine):
        with pytest.raises(NativeCallError):
            OpAttr.create('a', 2.0).read('int')

    def test_tensor_has_no_raw_path(self, engine):
        attr = OpAttr.create('a', 2.0)
        with pytest.raises(ContractError):
            attr.read('tensor')

    def test_invalid_utf8(self, engine):
        attr = OpAttr.borrowed(engine.op_attr('s', AttributeType.STRING, b'\xc3\x28\x00'))
        with pytest.raises(ContractError):
            attr.read('string')

    def test_released_once(self, engine):
        with OpAttr.create('a', 1) as attr:
            pass
        attr.release()
        assert engine.releases['ReleaseOpAttr'] == 1
        assert engine.bad_releases['ReleaseOpAttr'] == 0


def test_get_kernel_attribute_direct(engine):
    attrs = _attrs(engine, k=4)
    assert get_kernel_attribute(attrs, 'k', AttributeType.INT) == 4
