"""
Document lifecycle: upload, read, download, update, soft delete, listing.

Upload writes the blob first and the metadata row second. There is no
transaction spanning the two stores: a metadata failure after a successful
blob write leaves an orphaned blob, which is recorded through the audit
error path and not reconciled automatically.
"""
from collections import namedtuple
from datetime import timedelta

from blobstore import BlobStoreError
from cache import make_key
from errors import NotFound, PermissionDenied, StorageFailure, ValidationError
from models import Action, DocumentStatus, Permission
from sharing import allows, effective_permission
from utils import format_file_size, generate_storage_path, utcnow
from validators import (
    MAX_FILE_SIZE, validate_category, validate_description, validate_file,
    validate_phone,
)

UploadProgress = namedtuple("UploadProgress", "percent")
UploadComplete = namedtuple("UploadComplete", "document")

UPDATABLE_FIELDS = ("category", "description")
PROFILE_FIELDS = ("first_name", "last_name", "phone_number")
NAME_MAX_LENGTH = 100
ACTIVE = DocumentStatus.ACTIVE.value


class DocumentStore:

    def __init__(self, database, blobs, cache, audit, max_file_size=MAX_FILE_SIZE,
                 allowed_types=None, min_description_length=10, clock=utcnow):
        self.database = database
        self.blobs = blobs
        self.cache = cache
        self.audit = audit
        self.max_file_size = max_file_size
        self.allowed_types = allowed_types
        self.min_description_length = min_description_length
        self.clock = clock

    # ------------------------------------------------------------------
    # profiles and identity
    # ------------------------------------------------------------------
    def get_profile(self, user_id):
        key = make_key(user_id, view="profile")
        profile = self.cache.get(key)
        if profile is None:
            profile = self.database.get_by_id("users", user_id)
            if profile is None:
                raise NotFound("User profile not found.")
            self.cache.set(key, profile)
        return dict(profile)

    def caller_identifiers(self, caller_id):
        """Every subject string a share could have been addressed to for this caller."""
        identifiers = {caller_id}
        try:
            profile = self.get_profile(caller_id)
        except NotFound:
            return identifiers
        if profile.get("email"):
            identifiers.add(profile["email"].lower())
        if profile.get("identity_number"):
            identifiers.add(profile["identity_number"])
        return identifiers

    def update_profile(self, user_id, patch):
        """Change name or phone fields; email and identity number are fixed at signup."""
        patch = dict(patch or {})
        unknown = sorted(set(patch) - set(PROFILE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
        if not patch:
            raise ValidationError("Nothing to update.")

        violations = []
        for name in ("first_name", "last_name"):
            if name not in patch:
                continue
            value = patch[name]
            if value is None:
                continue
            if not isinstance(value, str) or len(value.strip()) > NAME_MAX_LENGTH:
                violations.append(f"{name} must be text of at most {NAME_MAX_LENGTH} characters.")
            else:
                patch[name] = value.strip() or None
        phone = patch.get("phone_number")
        if phone is not None and phone != "" and not validate_phone(phone):
            violations.append("Please enter a valid 10-digit phone number")
        elif "phone_number" in patch:
            patch["phone_number"] = phone or None
        if violations:
            raise ValidationError(violations)

        self.get_profile(user_id)
        self.database.update_by_id("users", user_id, dict(patch, updated_at=self.clock()))
        self.cache.invalidate(user_id)
        self.audit.record(user_id, Action.PROFILE_UPDATE, f"Updated profile: {', '.join(sorted(patch))}")
        return self.get_profile(user_id)

    # ------------------------------------------------------------------
    # upload
    # ------------------------------------------------------------------
    def _validate_upload(self, file_bytes, file_meta, description_meta):
        name = file_meta.get("name") or ""
        mime_type = file_meta.get("mime_type") or ""
        category = description_meta.get("category") or ""
        description = description_meta.get("description") or ""

        violations = validate_file(mime_type, len(file_bytes), self.allowed_types, self.max_file_size)
        violations += validate_description(description, self.min_description_length)
        violations += validate_category(category)
        if not name:
            violations.append("File name is required.")
        if violations:
            raise ValidationError(violations)
        return name, mime_type, category, description.strip()

    def upload_events(self, owner_id, file_bytes, file_meta, description_meta):
        """
        Validate eagerly, then return a generator of UploadProgress events
        ending with one UploadComplete carrying the stored document.

        Closing the generator before UploadComplete abandons the blob write;
        no metadata is written in that case.
        """
        if owner_id is None or file_bytes is None:
            raise TypeError("owner_id and file_bytes are required")
        fields = self._validate_upload(file_bytes, file_meta, description_meta)
        return self._upload_stream(owner_id, file_bytes, *fields)

    def upload(self, owner_id, file_bytes, file_meta, description_meta, on_progress=None):
        for event in self.upload_events(owner_id, file_bytes, file_meta, description_meta):
            if isinstance(event, UploadComplete):
                return event.document
            if on_progress is not None:
                on_progress(event.percent)
        raise StorageFailure("Upload failed. Please try again.")

    @staticmethod
    def _relay(writer):
        try:
            while True:
                try:
                    percent = next(writer)
                except StopIteration as done:
                    return done.value
                yield UploadProgress(percent)
        finally:
            writer.close()

    def _upload_stream(self, owner_id, file_bytes, name, mime_type, category, description):
        now = self.clock()
        path = generate_storage_path(owner_id, name, now)
        try:
            handle = yield from self._relay(self.blobs.put(path, file_bytes, mime_type))
            url = self.blobs.get_retrieval_url(handle)
        except BlobStoreError as exc:
            self.audit.record_error(exc, "File upload failed")
            raise StorageFailure("Upload failed. Please try again.") from exc

        record = {
            "owner_id": owner_id,
            "original_file_name": name,
            "mime_type": mime_type,
            "byte_size": len(file_bytes),
            "blob_retrieval_url": url,
            "blob_storage_path": path,
            "category": category,
            "description": description,
            "status": ACTIVE,
            "shared_with_subjects": [],
            "download_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        try:
            document_id = self.database.insert("documents", record)
        except StorageFailure as exc:
            self.audit.record_error(exc, f"Failed to save document metadata, orphaned blob {path}")
            raise

        self.cache.invalidate(owner_id)
        self.audit.record(owner_id, Action.UPLOAD, f"Uploaded document: {name} ({category}, {format_file_size(len(file_bytes))})", document_id)
        yield UploadComplete(self.database.get_by_id("documents", document_id))

    # ------------------------------------------------------------------
    # access checks
    # ------------------------------------------------------------------
    def _active_document(self, document_id):
        document = self.database.get_by_id("documents", document_id)
        if document is None or document["status"] != ACTIVE:
            raise NotFound("Document not found.")
        return document

    def _deny(self, subject_id, document_id, message):
        self.audit.record(subject_id, Action.ACCESS_DENIED, message, document_id)
        return PermissionDenied(message)

    def _authorize_read(self, document, caller_id):
        """None for the owner, otherwise the caller's matching identifiers."""
        if document["owner_id"] == caller_id:
            return None
        identifiers = self.caller_identifiers(caller_id)
        if identifiers.isdisjoint(document["shared_with_subjects"]):
            raise self._deny(caller_id, document["id"], "You do not have access to this document.")
        return identifiers

    def require_owned(self, owner_id, document_id):
        document = self._active_document(document_id)
        if document["owner_id"] != owner_id:
            raise self._deny(owner_id, document_id, "Only the document owner can do that.")
        return document

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get(self, document_id, caller_id):
        document = self._active_document(document_id)
        self._authorize_read(document, caller_id)

        now = self.clock()
        self.database.update_by_id("documents", document_id, {"last_accessed_at": now})
        document["last_accessed_at"] = now
        self.audit.record(caller_id, Action.VIEW, f"Viewed document: {document['original_file_name']}", document_id)
        return document

    def download(self, document_id, caller_id):
        document = self._active_document(document_id)
        identifiers = self._authorize_read(document, caller_id)
        if identifiers is not None:
            granted = effective_permission(self.database, document_id, identifiers)
            if granted is None or not allows(granted, Permission.DOWNLOAD.value):
                raise self._deny(caller_id, document_id, "Download permission has not been granted for this document.")

        changed = self.database.increment(
            "documents", document_id, "download_count",
            where={"status": ACTIVE}, last_accessed_at=self.clock(),
        )
        if not changed:
            raise NotFound("Document not found.")
        document = self.database.get_by_id("documents", document_id)

        self.cache.invalidate(document["owner_id"])
        self.audit.record(caller_id, Action.DOWNLOAD, f"Downloaded document: {document['original_file_name']}", document_id)
        return document

    def list(self, owner_id, filters=None):
        filters = filters or {}
        category = filters.get("category")
        if category == "all":
            category = None
        limit = filters.get("limit")

        key = make_key(owner_id, category=category, limit=limit)
        documents = self.cache.get(key)
        if documents is None:
            criteria = {"owner_id": owner_id, "status": ACTIVE}
            if category:
                criteria["category"] = category
            documents = self.database.query(
                "documents", criteria, order_by="created_at", descending=True, limit=limit,
            )
            self.cache.set(key, documents)
        return [dict(d, shared_with_subjects=list(d["shared_with_subjects"])) for d in documents]

    def search(self, owner_id, term):
        """Case-insensitive substring match over name, description and category."""
        documents = self.list(owner_id)
        term = (term or "").strip().lower()
        if not term:
            return documents
        return [
            d for d in documents
            if any(term in (d.get(field) or "").lower()
                   for field in ("original_file_name", "description", "category"))
        ]

    def stats(self, owner_id):
        documents = self.list(owner_id)
        cutoff = self.clock() - timedelta(days=30)
        by_category = {}
        for d in documents:
            by_category[d["category"]] = by_category.get(d["category"], 0) + 1
        return {
            "total_documents": len(documents),
            "shared_documents": sum(1 for d in documents if d["shared_with_subjects"]),
            "recent_uploads": sum(1 for d in documents if d["created_at"] and d["created_at"] > cutoff),
            "storage_used": sum(d["byte_size"] for d in documents),
            "documents_by_category": by_category,
        }

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def update(self, owner_id, document_id, patch):
        patch = dict(patch or {})
        unknown = sorted(set(patch) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(unknown)}")
        if not patch:
            raise ValidationError("Nothing to update.")
        violations = [f"{name} must not be empty." for name in sorted(patch) if patch[name] is None]
        if violations:
            raise ValidationError(violations)
        if "category" in patch:
            violations += validate_category(patch["category"])
        if "description" in patch:
            violations += validate_description(patch["description"], self.min_description_length)
        if violations:
            raise ValidationError(violations)
        if "description" in patch:
            patch["description"] = patch["description"].strip()

        self.require_owned(owner_id, document_id)
        self.database.update_by_id("documents", document_id, dict(patch, updated_at=self.clock()))
        self.cache.invalidate(owner_id)
        self.audit.record(owner_id, Action.UPDATE, f"Updated document: {', '.join(sorted(patch))}", document_id)

    def soft_delete(self, owner_id, document_id):
        document = self.require_owned(owner_id, document_id)
        now = self.clock()
        self.database.update_by_id("documents", document_id, {
            "status": DocumentStatus.DELETED.value,
            "deleted_at": now,
            "updated_at": now,
        })
        # blob removal is reconciled later by the reaper
        try:
            self.database.insert("blobDeletions", {
                "blob_storage_path": document["blob_storage_path"],
                "document_id": document_id,
                "requested_at": now,
            })
        except StorageFailure as exc:
            self.audit.record_error(exc, f"Failed to queue blob deletion for {document['blob_storage_path']}")

        self.cache.invalidate(owner_id)
        self.audit.record(owner_id, Action.DELETE, f"Deleted document: {document['original_file_name']}", document_id)
