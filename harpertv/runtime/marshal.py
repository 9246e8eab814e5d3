"""
Conversion between Python values and libmpv ``mpv_node`` trees.

Supported values are ``None``, ``bool``, 64-bit ``int``, ``float``, ``str``,
``list``/``tuple`` and ``dict`` with ``str`` keys.  Encoding allocates every
string, node array and node list through a :class:`NodeAllocator`, which keeps
the ctypes buffers alive until :meth:`NodeMarshaler.free` releases them.  The
allocator counts live allocations so leaks and double frees are observable.
"""

from __future__ import annotations

import ctypes
import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from .libmpv import (
    MPV_FORMAT_DOUBLE,
    MPV_FORMAT_FLAG,
    MPV_FORMAT_INT64,
    MPV_FORMAT_NODE_ARRAY,
    MPV_FORMAT_NODE_MAP,
    MPV_FORMAT_NONE,
    MPV_FORMAT_OSD_STRING,
    MPV_FORMAT_STRING,
    MpvNode,
    MpvNodeList,
)

LOG = logging.getLogger(__name__)

Value = Union[None, bool, int, float, str, List[Any], Dict[str, Any]]

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1


class MarshalError(ValueError):
    """Raised when a value has no ``mpv_node`` representation."""


class DoubleFreeError(MarshalError):
    """Raised when an allocation is released twice or was never allocated."""


class NodeAllocator:
    """
    Owner of the native buffers referenced by encoded nodes.

    Buffers are keyed by address.  :meth:`release` drops the reference so the
    memory is reclaimed, and refuses addresses that are not live.
    """

    def __init__(self) -> None:
        self._live: Dict[int, object] = {}

    @property
    def outstanding(self) -> int:
        return len(self._live)

    def string(self, encoded: bytes) -> int:
        return self._track(ctypes.create_string_buffer(encoded))

    def node_array(self, count: int) -> ctypes.Array:
        array = (MpvNode * count)()
        self._track(array)
        return array

    def key_array(self, count: int) -> ctypes.Array:
        array = (ctypes.c_void_p * count)()
        self._track(array)
        return array

    def node_list(self) -> MpvNodeList:
        node_list = MpvNodeList()
        self._track(node_list)
        return node_list

    def release(self, address: Optional[int]) -> None:
        if not address:
            return
        if self._live.pop(address, None) is None:
            raise DoubleFreeError(f"address 0x{address:x} is not a live allocation")

    def _track(self, buffer: object) -> int:
        address = ctypes.addressof(buffer)
        self._live[address] = buffer
        return address


def _encode_text(text: str) -> bytes:
    if "\x00" in text:
        raise MarshalError("strings with embedded NUL cannot cross the native boundary")
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise MarshalError(f"string is not valid UTF-8: {exc}") from exc


def _pointer_address(pointer: object) -> Optional[int]:
    return ctypes.cast(pointer, ctypes.c_void_p).value


def decode_node(node: MpvNode) -> Value:
    """
    Convert an ``mpv_node`` into a Python value.

    Formats the player does not understand, including byte arrays, decode to
    ``None`` so newer engines do not break older bridges.
    """

    fmt = node.format
    if fmt in (MPV_FORMAT_STRING, MPV_FORMAT_OSD_STRING):
        address = node.u.string
        if not address:
            return None
        return ctypes.string_at(address).decode("utf-8", errors="replace")
    if fmt == MPV_FORMAT_FLAG:
        return bool(node.u.flag)
    if fmt == MPV_FORMAT_INT64:
        return int(node.u.int64)
    if fmt == MPV_FORMAT_DOUBLE:
        return float(node.u.double_)
    if fmt == MPV_FORMAT_NODE_ARRAY:
        if not node.u.list:
            return []
        node_list = node.u.list.contents
        return [decode_node(node_list.values[i]) for i in range(node_list.num)]
    if fmt == MPV_FORMAT_NODE_MAP:
        if not node.u.list:
            return {}
        node_list = node.u.list.contents
        result: Dict[str, Any] = {}
        for i in range(node_list.num):
            key = ctypes.string_at(node_list.keys[i]).decode("utf-8", errors="replace")
            result[key] = decode_node(node_list.values[i])
        return result
    return None


class NodeMarshaler:
    """Encode, decode and free ``mpv_node`` trees backed by one allocator."""

    def __init__(self, allocator: Optional[NodeAllocator] = None) -> None:
        self.allocator = allocator if allocator is not None else NodeAllocator()

    def encode(self, value: Value) -> MpvNode:
        """
        Build a node for ``value``.

        The returned node must be passed to :meth:`free` exactly once.  On
        :class:`MarshalError` nothing stays allocated.
        """

        node = MpvNode()
        self._fill(node, value)
        return node

    def decode(self, node: MpvNode) -> Value:
        return decode_node(node)

    def free(self, node: MpvNode) -> None:
        """Release everything ``node`` owns and reset it to ``MPV_FORMAT_NONE``."""

        fmt = node.format
        if fmt == MPV_FORMAT_STRING:
            self.allocator.release(node.u.string)
        elif fmt in (MPV_FORMAT_NODE_ARRAY, MPV_FORMAT_NODE_MAP) and node.u.list:
            node_list = node.u.list.contents
            is_map = fmt == MPV_FORMAT_NODE_MAP
            for i in range(node_list.num):
                if is_map:
                    self.allocator.release(node_list.keys[i])
                self.free(node_list.values[i])
            self.allocator.release(_pointer_address(node_list.values))
            if is_map:
                self.allocator.release(_pointer_address(node_list.keys))
            self.allocator.release(ctypes.addressof(node_list))
        node.u.int64 = 0
        node.format = MPV_FORMAT_NONE

    # ------------------------------------------------------------------ helpers

    def _fill(self, node: MpvNode, value: Value) -> None:
        if value is None:
            node.format = MPV_FORMAT_NONE
        elif isinstance(value, bool):
            node.u.flag = 1 if value else 0
            node.format = MPV_FORMAT_FLAG
        elif isinstance(value, int):
            if not INT64_MIN <= value <= INT64_MAX:
                raise MarshalError(f"integer {value} does not fit in int64")
            node.u.int64 = value
            node.format = MPV_FORMAT_INT64
        elif isinstance(value, float):
            node.u.double_ = value
            node.format = MPV_FORMAT_DOUBLE
        elif isinstance(value, str):
            node.u.string = self.allocator.string(_encode_text(value))
            node.format = MPV_FORMAT_STRING
        elif isinstance(value, (list, tuple)):
            self._fill_list(node, list(value), keys=None)
        elif isinstance(value, dict):
            keys: List[bytes] = []
            for key in value:
                if not isinstance(key, str):
                    raise MarshalError(f"map keys must be str, got {type(key).__name__}")
                keys.append(_encode_text(key))
            self._fill_list(node, list(value.values()), keys=keys)
        else:
            raise MarshalError(f"unsupported value type {type(value).__name__}")

    def _fill_list(self, node: MpvNode, items: Sequence[Value], keys: Optional[List[bytes]]) -> None:
        children: List[MpvNode] = []
        try:
            for item in items:
                child = MpvNode()
                self._fill(child, item)
                children.append(child)
        except MarshalError:
            for child in children:
                self.free(child)
            raise

        node_list = self.allocator.node_list()
        node_list.num = len(children)
        if children:
            values = self.allocator.node_array(len(children))
            for index, child in enumerate(children):
                values[index] = child
            node_list.values = ctypes.cast(values, ctypes.POINTER(MpvNode))
            if keys is not None:
                key_array = self.allocator.key_array(len(children))
                for index, key in enumerate(keys):
                    key_array[index] = self.allocator.string(key)
                node_list.keys = ctypes.cast(key_array, ctypes.POINTER(ctypes.c_void_p))

        node.u.list = ctypes.pointer(node_list)
        node.format = MPV_FORMAT_NODE_MAP if keys is not None else MPV_FORMAT_NODE_ARRAY
