"""Ownership-tagged wrapper for opaque native handles."""

import ctypes
import logging
import weakref

from . import _ffi
from .errors import HandleRetiredError, NullHandleError

logger = logging.getLogger("ortkernel.handle")


def _release(api, entry, address, type_name):
    logger.debug(f"{entry}({type_name} @ {address:#x})")
    api.release(entry, ctypes.c_void_p(address))


class NativeHandle:
    """Opaque native pointer, either owned or borrowed.

    Owned handles are released exactly once through ``_release_entry``:
    explicitly via release()/``with``, or when the wrapper is collected.
    Borrowed handles are never released here; retire() marks the end of
    the native call that lent them.
    """

    _release_entry = None

    def __init__(self, address, owned, *, api=None):
        if not address:
            raise NullHandleError(f"NULL {type(self).__name__} handle")
        if owned and self._release_entry is None:
            raise TypeError(f"{type(self).__name__} cannot own its handle")
        self._api = api or _ffi.get_api()
        self._address = int(address)
        self._owned = bool(owned)
        self._retired = False
        self._finalizer = None
        if self._owned:
            self._finalizer = weakref.finalize(
                self, _release, self._api, self._release_entry,
                self._address, type(self).__name__)

    @classmethod
    def owned(cls, address, *, api=None):
        return cls(address, True, api=api)

    @classmethod
    def borrowed(cls, address, *, api=None):
        return cls(address, False, api=api)

    @property
    def is_owned(self):
        return self._owned

    @property
    def alive(self):
        if self._retired:
            return False
        return self._finalizer is None or self._finalizer.alive

    @property
    def address(self):
        if self._retired:
            raise HandleRetiredError(
                f"{type(self).__name__} used after the call that lent it returned")
        if self._finalizer is not None and not self._finalizer.alive:
            raise HandleRetiredError(f"{type(self).__name__} used after release")
        return self._address

    @property
    def ptr(self):
        return ctypes.c_void_p(self.address)

    def release(self):
        """Release an owned handle now. No-op for borrows and repeat calls."""
        if self._finalizer is not None:
            self._finalizer()

    def retire(self):
        """End a borrow; later use raises HandleRetiredError."""
        if not self._owned:
            self._retired = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.release()

    def __repr__(self):
        kind = 'owned' if self._owned else 'borrowed'
        state = '' if self.alive else ', dead'
        return f"{type(self).__name__}({kind} @ {self._address:#x}{state})"
