"""
@lam/json — JSON encode/decode following the Value table rules.

    json:encode({b = 1, a = {true, 'x'}})   --> '{"a":[true,"x"],"b":1}'
    json:decode('[{},{},{}]')               --> three distinct empty tables

Objects are written with sorted keys and no whitespace, so a canonical
document survives decode → encode byte for byte.  ``null`` decodes to nil.
"""

import logging

from lam.exceptions import JSONCodecError, ValueConversionError
from lam.value import value_from_json, value_to_json

__all__ = ["JSONCodec", "build"]

logger = logging.getLogger(__name__)


class JSONCodec:
    def __init__(self, engine) -> None:
        self._bridge = engine.bridge

    def encode(self, value=None):
        try:
            return value_to_json(self._bridge.from_lua(value)).encode("utf-8", "surrogateescape")
        except ValueConversionError as exc:
            raise JSONCodecError(f"cannot encode value: {exc}") from exc

    def decode(self, text):
        if not isinstance(text, bytes):
            raise JSONCodecError("decode expects a string")
        try:
            return self._bridge.to_lua(value_from_json(text))
        except ValueConversionError as exc:
            raise JSONCodecError(str(exc)) from exc


def build(engine):
    """Module table for require('@lam/json')."""
    codec = JSONCodec(engine)
    return engine.sandbox.module({b"encode": codec.encode, b"decode": codec.decode})
