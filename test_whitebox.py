import os
import threading
import pytest

from audit import AuditLogger
from blobstore import LocalBlobStore, BlobHandle
from cache import TTLCache, make_key
from errors import StorageFailure
from models import Action, ActivityLog
from utils import (
    encrypt_bytes, decrypt_bytes, generate_storage_path,
    mask_identity_number, format_file_size,
)
from validators import (
    validate_identity_number, verhoeff_checksum, verhoeff_check_digit,
    validate_email, validate_phone, validate_password, validate_file,
    validate_description, validate_category, validate_permission, classify_subject,
)

KEY = os.urandom(32)
BASES = ["12345678901", "98765432109", "55555555555", "10000000000", "31415926535"]


# ==========================================================
# ✅ TEST 1 – VERHOEFF IDENTITY NUMBERS
# ==========================================================
def test_known_valid_and_invalid_identity_numbers():
    assert validate_identity_number("123456789010") is True
    assert validate_identity_number("123456789012") is False


def test_reference_check_digit():
    # textbook example: 236 -> check digit 3
    assert verhoeff_check_digit("236") == "3"
    assert verhoeff_checksum("2363") == 0
    assert verhoeff_checksum("2364") != 0


def test_single_digit_errors_are_detected():
    for base in BASES:
        number = base + verhoeff_check_digit(base)
        assert validate_identity_number(number), number
        for pos in range(len(number)):
            for digit in "0123456789":
                if digit == number[pos]:
                    continue
                mutated = number[:pos] + digit + number[pos + 1:]
                assert validate_identity_number(mutated) is False, mutated


def test_adjacent_transpositions_are_detected():
    for base in BASES:
        number = base + verhoeff_check_digit(base)
        for pos in range(len(number) - 1):
            a, b = number[pos], number[pos + 1]
            if a == b:
                continue
            swapped = number[:pos] + b + a + number[pos + 2:]
            assert validate_identity_number(swapped) is False, swapped


def test_identity_number_is_pure():
    results = {validate_identity_number("123456789010") for _ in range(5)}
    assert results == {True}


@pytest.mark.parametrize("value", ["", "12345678901", "1234567890101", "12345678901a", "1234 5678 9010"])
def test_malformed_identity_numbers_are_rejected(value):
    assert validate_identity_number(value) is False


def test_none_is_a_programming_error():
    with pytest.raises(TypeError):
        validate_identity_number(None)
    with pytest.raises(TypeError):
        validate_email(None)


# ==========================================================
# ✅ TEST 2 – CONTACT, PASSWORD AND FILE RULES
# ==========================================================
def test_email_and_phone_formats():
    assert validate_email("b@example.com")
    assert validate_email("first.last+docs@gov.example.in")
    assert not validate_email("no-at-sign.example.com")
    assert not validate_email("a@b")
    assert validate_phone("9876543210")
    assert not validate_phone("+919876543210")
    assert not validate_phone("98765-4321")


def test_password_only_checks_length():
    assert validate_password("abcdef") == []
    assert validate_password("abc") == ["Password must be at least 6 characters long."]


def test_file_type_and_size_limits():
    assert validate_file("application/pdf", 1024) == []
    assert validate_file("application/pdf", 5 * 1024 * 1024) == []
    assert validate_file("application/pdf", 6 * 1024 * 1024)
    assert validate_file("application/pdf", 0) == ["File is empty."]
    assert validate_file("application/x-msdownload", 10)


def test_description_minimum_length():
    assert validate_description("ok") == ["Description must be at least 10 characters long."]
    assert validate_description("Aadhaar card front side") == []


def test_non_text_values_are_violations_not_crashes():
    assert validate_password(1234567) == ["Password must be text."]
    assert validate_description(12345678901) == ["Description must be text."]
    assert validate_category(7)
    assert validate_permission(["view"])
    assert classify_subject(123456789010) is None


def test_classify_subject():
    assert classify_subject("b@example.com") == "email"
    assert classify_subject("123456789010") == "identity-number"
    assert classify_subject("123456789012") is None


# ==========================================================
# ✅ TEST 3 – ENCRYPTION AND HELPERS
# ==========================================================
def test_encrypt_decrypt_roundtrip():
    data = b"Confidential Data"
    assert decrypt_bytes(KEY, encrypt_bytes(KEY, data)) == data


def test_unique_ciphertexts():
    data = b"same message"
    assert encrypt_bytes(KEY, data) != encrypt_bytes(KEY, data), \
        "Encryption must produce unique outputs for identical input data"


def test_storage_path_is_scoped_and_sanitized():
    a = generate_storage_path("owner1", "../../etc/my passport.pdf")
    b = generate_storage_path("owner1", "../../etc/my passport.pdf")
    assert a.startswith("documents/owner1/")
    assert a.endswith("_etc_my_passport.pdf")
    assert ".." not in a
    assert a != b


def test_display_helpers():
    assert mask_identity_number("123456789010") == "XXXX XXXX 9010"
    assert format_file_size(0) == "0 Bytes"
    assert format_file_size(1536) == "1.5 KB"
    assert format_file_size(5 * 1024 * 1024) == "5 MB"


# ==========================================================
# ✅ TEST 4 – TTL CACHE
# ==========================================================
class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_cache_entries_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(ttl=300, clock=clock)
    key = make_key("owner1", category=None)
    cache.set(key, ["doc"])

    clock.now = 299
    assert cache.get(key) == ["doc"]
    clock.now = 300
    assert cache.get(key) is None
    assert len(cache) == 0


def test_cache_invalidate_only_touches_one_owner():
    cache = TTLCache(ttl=300, clock=FakeClock())
    cache.set(make_key("a"), 1)
    cache.set(make_key("a", category="tax-id"), 2)
    cache.set(make_key("b"), 3)

    assert cache.invalidate("a") == 2
    assert cache.get(make_key("a")) is None
    assert cache.get(make_key("b")) == 3

    cache.clear()
    assert len(cache) == 0


def test_cache_key_ignores_empty_filters():
    assert make_key("a") == make_key("a", category="all", limit=None)
    assert make_key("a", category="tax-id") != make_key("a")


def test_cache_capacity_bound_evicts_oldest():
    cache = TTLCache(ttl=300, clock=FakeClock(), max_entries=2)
    cache.set(make_key("a"), 1)
    cache.set(make_key("b"), 2)
    cache.set(make_key("c"), 3)
    assert cache.get(make_key("a")) is None
    assert cache.get(make_key("c")) == 3


def test_cache_invalidate_while_another_thread_writes():
    cache = TTLCache(ttl=300, clock=FakeClock())
    for i in range(200):
        cache.set(make_key("o1", page=i), i)
    stop = threading.Event()
    errors = []

    def writer():
        i = 0
        while not stop.is_set():
            try:
                cache.set(make_key("o2", page=i % 500), i)
                cache.invalidate("o2")
            except RuntimeError as exc:
                errors.append(exc)
            i += 1

    thread = threading.Thread(target=writer)
    thread.start()
    try:
        for i in range(2000):
            cache.set(make_key("o1", page=i % 200), i)
            cache.invalidate("o1")
    finally:
        stop.set()
        thread.join()
    assert errors == []
    assert cache.invalidate("o1") == 0


# ==========================================================
# ✅ TEST 5 – AUDIT LOG ENTRY CREATION
# ==========================================================
class BrokenDatabase:
    def insert(self, collection, record):
        raise StorageFailure()


def test_audit_log(test_app):
    """Verifies that record() correctly creates an entry in the database."""
    audit = test_app.extensions["securegov"].audit
    assert audit.record("user-1", Action.UPLOAD, "test file upload", "doc-1") is True
    log = ActivityLog.query.filter_by(subject_id="user-1").first()
    assert log is not None
    assert log.action == "UPLOAD"
    assert log.detail == "test file upload"
    assert log.related_document_id == "doc-1"


def test_audit_falls_back_to_bounded_local_buffer():
    audit = AuditLogger(BrokenDatabase(), capacity=3)
    for i in range(5):
        assert audit.record("user-1", Action.VIEW, f"view {i}") is False
    assert [e["detail"] for e in audit.fallback_entries] == ["view 2", "view 3", "view 4"]


def test_record_error_never_raises():
    audit = AuditLogger(BrokenDatabase(), capacity=2)
    try:
        raise OSError("disk full")
    except OSError as exc:
        audit.record_error(exc, "File upload failed")
    entry = audit.error_entries[0]
    assert entry["context"] == "File upload failed"
    assert entry["error_type"] == "OSError"
    assert "disk full" in entry["stack"]


def test_audit_uses_context_provider():
    captured = []

    class Sink:
        def insert(self, collection, record):
            captured.append(record)

    audit = AuditLogger(Sink(), context_provider=lambda: ("sess-1", "10.0.0.7"))
    audit.record("user-1", Action.LOGIN, "hello")
    assert captured[0]["session_id"] == "sess-1"
    assert captured[0]["origin_address"] == "10.0.0.7"


# ==========================================================
# ✅ TEST 6 – LOCAL BLOB STORE
# ==========================================================
def _drain(writer):
    progress = []
    while True:
        try:
            progress.append(next(writer))
        except StopIteration as done:
            return progress, done.value


def test_blob_put_reports_progress_and_encrypts(tmp_path):
    store = LocalBlobStore(str(tmp_path), KEY, "secret", chunk_size=64)
    data = os.urandom(1000)
    progress, handle = _drain(store.put("documents/u/file.pdf", data, "application/pdf"))

    assert progress[0] == 0 and progress[-1] == 100
    assert progress == sorted(progress)
    assert handle == BlobHandle("documents/u/file.pdf", 1000, "application/pdf")
    with open(tmp_path / "documents" / "u" / "file.pdf", "rb") as fh:
        assert data not in fh.read()
    assert store.open("documents/u/file.pdf") == data


def test_closing_blob_writer_removes_partial_file(tmp_path):
    store = LocalBlobStore(str(tmp_path), KEY, "secret", chunk_size=64)
    writer = store.put("documents/u/big.pdf", os.urandom(1000), "application/pdf")
    next(writer)
    next(writer)
    writer.close()
    assert not store.exists("documents/u/big.pdf")
    assert not os.path.exists(tmp_path / "documents" / "u" / "big.pdf.part")


def test_blob_delete_is_idempotent(tmp_path):
    store = LocalBlobStore(str(tmp_path), KEY, "secret")
    _drain(store.put("documents/u/a.png", b"png", "image/png"))
    store.delete("documents/u/a.png")
    store.delete("documents/u/a.png")
    assert store.open("documents/u/a.png") is None


def test_retrieval_tokens_are_signed(tmp_path):
    store = LocalBlobStore(str(tmp_path), KEY, "secret", base_url="/blob")
    url = store.get_retrieval_url(BlobHandle("documents/u/a.png", 3, "image/png"))
    token = url.rsplit("/", 1)[1]
    assert url.startswith("/blob/")
    assert store.resolve_token(token) == "documents/u/a.png"
    assert store.resolve_token(token[:-2] + "xx") is None
