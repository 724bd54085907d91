from timeline_engine.errors import PersistenceError, classify_persistence_error, to_persistence_error


class _CodedError(Exception):
    def __init__(self, message, code):
        super().__init__(message)
        self.code = code


def test_classify_by_code():
    assert classify_persistence_error("42501") == "schema_access"
    assert classify_persistence_error("pgrst116") == "not_found"
    assert classify_persistence_error("23505") == "constraint_violation"
    assert classify_persistence_error("PGRST301") == "auth_expired"


def test_classify_by_message_when_code_unknown():
    assert classify_persistence_error(None, "JWT expired") == "auth_expired"
    assert classify_persistence_error("", "TypeError: fetch failed") == "network"
    assert classify_persistence_error("XX000", "something odd") == "other"


def test_to_persistence_error_wraps_payloads_and_exceptions():
    from_payload = to_persistence_error({"code": "23505", "message": "duplicate key value"})
    assert from_payload.kind == "constraint_violation"
    assert from_payload.code == "23505"
    assert str(from_payload) == "duplicate key value"

    coded = to_persistence_error(_CodedError("missing table", "42P01"))
    assert coded.kind == "schema_access"

    network = to_persistence_error(ConnectionError("reset by peer"))
    assert network.kind == "network"
    assert network.retryable
    assert not network.requires_reauth

    existing = PersistenceError("expired", kind="auth_expired")
    assert to_persistence_error(existing) is existing
    assert existing.requires_reauth
