"""
Unit tests for lam/engine/ (sandbox, bridge, engine) through real Lua runs.

Coverage plan
─────────────
return values  → 7 tests  (scalars, first of many, nil, array, object, function)
sandbox        → 6 tests  (hidden globals, require, fresh globals per run,
                           no attribute access, catchable capability error,
                           wrong host call)
output         → 3 tests  (print separators, io.write chaining, stderr)
input          → 4 tests  (io.read line, @lam:read dot and colon, read_unicode, *n)
compile        → 2 tests  (ScriptEngine raises, check_syntax)
timeout        → 7 tests  (busy loop, pcall, coroutine, partial output, unbounded run,
                           __gc finalizer rejected, plain metatables)
─────────────────────────────────────────────────────────────────
Total          = 29 test functions
"""

import pytest


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

def _run(source: str, input: bytes = b"", timeout=None, store=None):
    from lam.evaluator import evaluate
    return evaluate(source, input=input, timeout=timeout, store=store)


def _value(source: str, input: bytes = b""):
    outcome = _run(source, input)
    assert outcome.ok, outcome.error
    return outcome.value


# ─────────────────────────────────────────────────────────────────────────────
# 1. Return values
# ─────────────────────────────────────────────────────────────────────────────

class TestReturnValues:

    def test_integer_arithmetic(self):
        from lam.value import Number
        assert _value("return 1 + 1") == Number(2)

    def test_float(self):
        from lam.value import Number
        assert _value("return 3 / 2") == Number(1.5)

    def test_first_of_many_values(self):
        from lam.value import String
        assert _value("return 'a', 'b'") == String("a")

    def test_no_return_is_nil(self):
        from lam.value import NIL
        assert _value("local x = 1") == NIL

    def test_array_table(self):
        assert _value("return {1, 'two', true}").to_plain() == [1, "two", True]

    def test_object_table(self):
        assert _value("return {a = 1, b = {c = 'd'}}").to_plain() == {"a": 1, "b": {"c": "d"}}

    def test_function_cannot_be_returned(self):
        from lam.evaluator import ErrorKind
        outcome = _run("return function() end")
        assert outcome.error.kind == ErrorKind.RUNTIME


# ─────────────────────────────────────────────────────────────────────────────
# 2. Sandbox
# ─────────────────────────────────────────────────────────────────────────────

class TestSandbox:

    @pytest.mark.parametrize("expr", [
        "os.execute", "os.exit", "os.getenv", "io.open", "io.popen", "load",
        "loadfile", "dofile", "collectgarbage", "debug", "package", "string.dump",
    ])
    def test_dangerous_globals_are_hidden(self, expr):
        from lam.value import Boolean
        assert _value(f"return {expr} == nil") == Boolean(True)

    def test_require_unknown_module(self):
        from lam.evaluator import ErrorKind
        outcome = _run("return require('os')")
        assert outcome.error.kind == ErrorKind.CAPABILITY
        assert "module 'os' not found" in outcome.error.message

    def test_globals_do_not_leak_between_runs(self):
        from lam.value import NIL
        _value("leaked = 1")
        assert _value("return leaked") == NIL

    def test_host_attribute_access_is_denied(self):
        from lupa.lua54 import LuaError
        from lam.engine.sandbox import Sandbox
        sandbox = Sandbox()
        with pytest.raises((AttributeError, LuaError)):
            sandbox.runtime.execute(b"local obj = ... return obj.__class__", object())

    def test_capability_error_is_catchable_by_pcall(self):
        script = "local ok, e = pcall(io.read, '*x') return {ok, tostring(e)}"
        ok, message = _value(script).to_plain()
        assert ok is False
        assert "unexpected format" in message

    def test_wrong_host_call_is_runtime_error(self):
        from lam.evaluator import ErrorKind
        outcome = _run("return require('@lam/crypto'):sha256()")
        assert outcome.error.kind == ErrorKind.RUNTIME


# ─────────────────────────────────────────────────────────────────────────────
# 3. Output
# ─────────────────────────────────────────────────────────────────────────────

class TestOutput:

    def test_print_uses_tabs_and_newline(self):
        outcome = _run("print('a', 1, true, nil)")
        assert outcome.stdout == b"a\t1\ttrue\tnil\n"

    def test_io_write_chains(self):
        outcome = _run("io.write('a', 1):write('b')")
        assert outcome.stdout == b"a1b"

    def test_stderr_is_separate(self):
        outcome = _run("io.stderr:write('oops') print('ok')")
        assert outcome.stderr == b"oops"
        assert outcome.stdout == b"ok\n"


# ─────────────────────────────────────────────────────────────────────────────
# 4. Input
# ─────────────────────────────────────────────────────────────────────────────

class TestInput:

    def test_io_read_line(self):
        from lam.value import String
        assert _value("return io.read('*l')", b"hello\nworld") == String("hello")

    def test_lam_read_both_call_styles(self):
        script = "local m = require('@lam') return m:read(1) .. m.read(1)"
        from lam.value import String
        assert _value(script, b"lam") == String("la")

    def test_read_unicode(self):
        from lam.value import String
        assert _value("return require('@lam'):read_unicode(1)", "你好".encode()) == String("你")

    def test_read_number(self):
        from lam.value import Number
        assert _value("return io.read('*n') + 1", b"41") == Number(42)


# ─────────────────────────────────────────────────────────────────────────────
# 5. Compilation
# ─────────────────────────────────────────────────────────────────────────────

class TestCompile:

    def test_syntax_error_raises_on_construction(self):
        from lam.engine import ExecutionContext, Script, ScriptEngine
        from lam.exceptions import ScriptCompileError
        with pytest.raises(ScriptCompileError, match="bad.lua:1:"):
            ScriptEngine(Script("return +", "bad.lua"), ExecutionContext())

    def test_check_syntax(self):
        from lam.engine import check_syntax
        from lam.exceptions import ScriptCompileError
        check_syntax("return 1")
        with pytest.raises(ScriptCompileError):
            check_syntax("if then")


# ─────────────────────────────────────────────────────────────────────────────
# 6. Timeout
# ─────────────────────────────────────────────────────────────────────────────

class TestTimeout:

    def test_busy_loop_times_out(self):
        from lam.evaluator import ErrorKind
        outcome = _run("while true do end", timeout=0.2)
        assert outcome.error.kind == ErrorKind.TIMEOUT
        assert outcome.duration < 5

    def test_pcall_cannot_swallow_timeout(self):
        from lam.evaluator import ErrorKind
        script = """
        while true do
          pcall(function() while true do end end)
        end
        """
        outcome = _run(script, timeout=0.2)
        assert outcome.error.kind == ErrorKind.TIMEOUT

    def test_coroutine_cannot_swallow_timeout(self):
        from lam.evaluator import ErrorKind
        script = """
        local co = coroutine.create(function() while true do end end)
        while true do coroutine.resume(co) end
        """
        outcome = _run(script, timeout=0.2)
        assert outcome.error.kind == ErrorKind.TIMEOUT

    def test_output_before_timeout_is_kept(self):
        from lam.evaluator import ErrorKind
        outcome = _run("print('started') while true do end", timeout=0.2)
        assert outcome.error.kind == ErrorKind.TIMEOUT
        assert outcome.stdout == b"started\n"

    def test_finishes_under_deadline(self):
        from lam.value import Number
        outcome = _run("local n = 0 for i = 1, 1000 do n = n + i end return n", timeout=5)
        assert outcome.ok
        assert outcome.value == Number(500500)

    def test_gc_finalizer_is_rejected(self):
        import gc
        from lam.evaluator import ErrorKind
        outcome = _run(
            "setmetatable({}, {__gc = function() while true do end end}) return 1",
            timeout=0.5,
        )
        assert outcome.error.kind == ErrorKind.RUNTIME
        assert "__gc" in outcome.error.message
        gc.collect()

    def test_ordinary_metatables_still_work(self):
        from lam.value import Number
        script = """
        local t = setmetatable({}, {__index = function(_, k) return k * 2 end})
        return t[21]
        """
        assert _value(script) == Number(42)
