"""
Unit tests for lam/evaluator.py and lam/config.py

Coverage plan
─────────────
classification → 5 tests  (compile, runtime, timeout, store, ok outcome)
Evaluator      → 4 tests  (config timeout default, per-call override,
                           submit() on the pool, shared store across runs)
RuntimeConfig  → 6 tests  (defaults, from_env, unbounded timeout, bad value,
                           zero override unbounded, negative timeout)
─────────────────────────────────────────────────────────────────
Total          = 15 tests
"""

import pytest


# ─────────────────────────────────────────────────────────────────────────────
# 1. Error classification
# ─────────────────────────────────────────────────────────────────────────────

class TestClassification:

    def test_ok_outcome(self):
        from lam.evaluator import evaluate
        outcome = evaluate("print('hi') return 'done'")
        assert outcome.ok
        assert outcome.error is None
        assert outcome.stdout == b"hi\n"
        assert outcome.duration >= 0

    def test_compile_error(self):
        from lam.evaluator import ErrorKind, evaluate
        outcome = evaluate("return +", name="bad.lua")
        assert outcome.error.kind == ErrorKind.COMPILE
        assert outcome.error.message.startswith("bad.lua:1:")

    def test_runtime_error(self):
        from lam.evaluator import ErrorKind, evaluate
        outcome = evaluate("error('boom')")
        assert outcome.error.kind == ErrorKind.RUNTIME
        assert "boom" in outcome.error.message

    def test_timeout(self):
        from lam.evaluator import ErrorKind, evaluate
        outcome = evaluate("while true do end", timeout=0.1)
        assert outcome.error.kind == ErrorKind.TIMEOUT
        assert "timeout" in str(outcome.error)

    def test_store_error(self):
        from lam.evaluator import ErrorKind, evaluate
        from lam.store import Store
        with Store() as store:
            outcome = evaluate(
                "require('@lam').store:put('f', function() end)", store=store
            )
        assert outcome.error.kind == ErrorKind.STORE


# ─────────────────────────────────────────────────────────────────────────────
# 2. Evaluator
# ─────────────────────────────────────────────────────────────────────────────

class TestEvaluator:

    def test_config_timeout_applies(self):
        from lam.config import RuntimeConfig
        from lam.evaluator import ErrorKind, Evaluator
        evaluator = Evaluator(config=RuntimeConfig(timeout=0.1))
        outcome = evaluator.evaluate("while true do end")
        assert outcome.error.kind == ErrorKind.TIMEOUT

    def test_call_timeout_overrides_config(self):
        from lam.config import RuntimeConfig
        from lam.evaluator import ErrorKind, Evaluator
        evaluator = Evaluator(config=RuntimeConfig(timeout=None))
        outcome = evaluator.evaluate("while true do end", timeout=0.1)
        assert outcome.error.kind == ErrorKind.TIMEOUT

    def test_submit_runs_concurrently_against_one_store(self):
        from lam.evaluator import Evaluator
        from lam.store import Store
        from lam.value import Number
        script = """
        return require('@lam').store:update({'n'}, function(v)
          return v[1] + 1
        end, {0})
        """
        with Store() as store:
            evaluator = Evaluator(store=store)
            try:
                futures = [evaluator.submit(script) for _ in range(20)]
                outcomes = [f.result(timeout=30) for f in futures]
            finally:
                evaluator.shutdown()
            assert all(o.ok for o in outcomes)
            assert store.get("n") == Number(20)

    def test_request_is_exposed(self):
        from lam.evaluator import Evaluator
        from lam.value import value_from_plain
        outcome = Evaluator().evaluate(
            "return require('@lam').request.method",
            request=value_from_plain({"method": "POST"}),
        )
        assert outcome.value.to_plain() == "POST"


# ─────────────────────────────────────────────────────────────────────────────
# 3. RuntimeConfig
# ─────────────────────────────────────────────────────────────────────────────

class TestRuntimeConfig:

    def test_defaults(self):
        from lam.config import RuntimeConfig
        c = RuntimeConfig()
        assert c.timeout == 30.0
        assert c.store_path is None
        assert c.max_workers == 8

    def test_from_env(self):
        from lam.config import RuntimeConfig
        c = RuntimeConfig.from_env({
            "LAM_TIMEOUT": "2.5",
            "LAM_STORE_PATH": "/tmp/x.db",
            "LAM_RUN_MIGRATIONS": "true",
            "LAM_MAX_WORKERS": "3",
        })
        assert c.timeout == 2.5
        assert c.store_path == "/tmp/x.db"
        assert c.run_migrations is True
        assert c.max_workers == 3

    def test_zero_timeout_is_unbounded(self):
        from lam.config import RuntimeConfig
        assert RuntimeConfig.from_env({"LAM_TIMEOUT": "0"}).timeout is None

    def test_bad_value_raises(self):
        from lam.config import RuntimeConfig
        from lam.exceptions import LamError
        with pytest.raises(LamError):
            RuntimeConfig.from_env({"LAM_MAX_WORKERS": "many"})

    def test_zero_timeout_override_is_unbounded(self):
        from lam.config import RuntimeConfig
        assert RuntimeConfig().with_overrides(timeout=0.0).timeout is None
        assert RuntimeConfig(timeout=0).timeout is None

    def test_negative_timeout_raises(self):
        from lam.config import RuntimeConfig
        from lam.exceptions import LamError
        with pytest.raises(LamError, match="negative"):
            RuntimeConfig(timeout=-1.0)
