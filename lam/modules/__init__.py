"""
modules — the virtual modules scripts can require().

Public API
──────────
MODULES — {name: builder}; a builder takes the ScriptEngine and returns the
          module's Lua table.  require() accepts exactly these names.
"""

from lam.modules import core, crypto, http, json_codec

__all__ = ["MODULES"]

MODULES = {
    "@lam":        core.build,
    "@lam/http":   http.build,
    "@lam/json":   json_codec.build,
    "@lam/crypto": crypto.build,
}
