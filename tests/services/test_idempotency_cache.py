"""
Idempotency cache: key derivation, hit/miss, collision, TTL and cleanup.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from mission_kernel.exceptions import IdempotencyKeyCollisionError
from mission_kernel.services.idempotency_service import IdempotencyService
from mission_kernel.utils.idempotency import (
    derive_idempotency_key,
    parse_idempotency_key,
    request_hash,
)

ONE_DAY = 24 * 3600


class TestKeyDerivation:
    def test_format(self):
        mission_id = uuid4()
        key = derive_idempotency_key(mission_id, "apply_transition", {"target_status": "PUBLIEE"})
        operation, entity, digest = parse_idempotency_key(key)
        assert operation == "apply_transition"
        assert entity == str(mission_id)
        assert len(digest) == 64

    def test_parameter_order_does_not_matter(self):
        mission_id = uuid4()
        first = derive_idempotency_key(mission_id, "op", {"a": 1, "b": [1, 2]})
        second = derive_idempotency_key(mission_id, "op", {"b": [1, 2], "a": 1})
        assert first == second

    def test_different_params_give_different_keys(self):
        mission_id = uuid4()
        assert derive_idempotency_key(mission_id, "op", {"a": 1}) != derive_idempotency_key(
            mission_id, "op", {"a": 2}
        )

    def test_missing_params_hash_like_empty_params(self):
        assert request_hash(None) == request_hash({})

    def test_malformed_key_rejected(self):
        with pytest.raises(ValueError):
            parse_idempotency_key("no-separators")


class TestCache:
    def test_miss_then_hit(self, idempotency_service, captured_logs):
        key = IdempotencyService.derive_key(uuid4(), "apply_transition", {"x": 1})
        assert not idempotency_service.check(key).cached

        idempotency_service.record(key, "h1", {"ok": True, "value": 42})
        hit = idempotency_service.check(key, request_hash="h1")

        assert hit.cached
        assert hit.response == {"ok": True, "value": 42}
        assert any(r["message"] == "idempotency_hit" for r in captured_logs())

    def test_check_without_hash_skips_comparison(self, idempotency_service):
        idempotency_service.record("k", "h1", {"ok": True})
        assert idempotency_service.check("k").cached

    def test_collision_on_check(self, idempotency_service):
        idempotency_service.record("k", "h1", {"ok": True})
        with pytest.raises(IdempotencyKeyCollisionError) as exc_info:
            idempotency_service.check("k", request_hash="h2")
        assert exc_info.value.expected_hash == "h1"
        assert exc_info.value.received_hash == "h2"

    def test_collision_on_record(self, idempotency_service):
        idempotency_service.record("k", "h1", {"ok": True})
        with pytest.raises(IdempotencyKeyCollisionError):
            idempotency_service.record("k", "h2", {"ok": False})

    def test_same_request_recorded_twice_keeps_first_response(self, idempotency_service):
        first = idempotency_service.record("k", "h1", {"n": 1})
        second = idempotency_service.record("k", "h1", {"n": 2})
        assert second.id == first.id
        assert idempotency_service.check("k").response == {"n": 1}

    def test_expires_after_ttl(self, idempotency_service, deterministic_clock):
        idempotency_service.record("k", "h1", {"ok": True})
        deterministic_clock.advance(ONE_DAY - 1)
        assert idempotency_service.check("k").cached
        deterministic_clock.advance(2)
        assert not idempotency_service.check("k").cached

    def test_expired_record_is_refreshed(self, idempotency_service, deterministic_clock):
        idempotency_service.record("k", "h1", {"n": 1})
        deterministic_clock.advance(ONE_DAY + 1)

        refreshed = idempotency_service.record("k", "h2", {"n": 2})

        assert refreshed.request_hash == "h2"
        assert refreshed.expires_at == deterministic_clock.now() + timedelta(hours=24)
        assert idempotency_service.check("k", request_hash="h2").response == {"n": 2}

    def test_cleanup_removes_only_expired(self, idempotency_service, deterministic_clock):
        idempotency_service.record("old", "h", {"ok": True})
        deterministic_clock.advance(ONE_DAY + 1)
        idempotency_service.record("new", "h", {"ok": True})

        result = idempotency_service.cleanup_expired()

        assert result.deleted_count == 1
        assert result.cleaned_at == deterministic_clock.now()
        assert idempotency_service.cache_size() == 1
        assert idempotency_service.cleanup_expired().deleted_count == 0

    def test_run_once_calls_function_once(self, idempotency_service):
        calls = []

        def work():
            calls.append(1)
            return {"ok": True, "calls": len(calls)}

        first, first_cached = idempotency_service.run_once("k", "h", work)
        second, second_cached = idempotency_service.run_once("k", "h", work)

        assert (first_cached, second_cached) == (False, True)
        assert first == second == {"ok": True, "calls": 1}
        assert len(calls) == 1

    def test_run_once_does_not_cache_failures(self, idempotency_service):
        def boom():
            raise RuntimeError("downstream unavailable")

        with pytest.raises(RuntimeError):
            idempotency_service.run_once("k", "h", boom)
        assert not idempotency_service.check("k").cached
