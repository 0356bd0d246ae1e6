import enum
import uuid
from flask_sqlalchemy import SQLAlchemy

from utils import utcnow

db = SQLAlchemy()


def _new_id():
    return uuid.uuid4().hex


class Category(str, enum.Enum):
    NATIONAL_ID = "national-id"
    TAX_ID = "tax-id"
    TRAVEL_DOCUMENT = "travel-document"
    CERTIFICATE = "certificate"
    OTHER = "other"


class DocumentStatus(str, enum.Enum):
    ACTIVE = "active"
    DELETED = "deleted"


class Permission(str, enum.Enum):
    VIEW = "view"
    DOWNLOAD = "download"


class GrantStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class Action(str, enum.Enum):
    UPLOAD = "UPLOAD"
    VIEW = "VIEW"
    DOWNLOAD = "DOWNLOAD"
    SHARE = "SHARE"
    REVOKE = "REVOKE"
    DELETE = "DELETE"
    UPDATE = "UPDATE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    REGISTER = "REGISTER"
    ACCESS_DENIED = "ACCESS_DENIED"
    PROFILE_UPDATE = "PROFILE_UPDATE"


class Record:
    """Row <-> plain dict conversion shared by every collection."""

    def to_dict(self):
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class User(Record, db.Model):
    __tablename__ = "users"
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    email = db.Column(db.String(200), unique=True, nullable=False)
    identity_number = db.Column(db.String(12), unique=True)
    phone_number = db.Column(db.String(10))
    first_name = db.Column(db.String(100))
    last_name = db.Column(db.String(100))
    password_hash = db.Column(db.String(300), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)
    last_login_at = db.Column(db.DateTime)
    last_logout_at = db.Column(db.DateTime)

    def to_dict(self):
        data = super().to_dict()
        data.pop("password_hash", None)
        return data


class Document(Record, db.Model):
    __tablename__ = "documents"
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    owner_id = db.Column(db.String(32), db.ForeignKey("users.id"), nullable=False, index=True)
    original_file_name = db.Column(db.String(300), nullable=False)
    mime_type = db.Column(db.String(120), nullable=False)
    byte_size = db.Column(db.Integer, nullable=False)
    blob_retrieval_url = db.Column(db.String(500))
    blob_storage_path = db.Column(db.String(500), nullable=False)
    category = db.Column(db.String(40), nullable=False, default=Category.OTHER.value)
    description = db.Column(db.String(1000))
    status = db.Column(db.String(20), nullable=False, default=DocumentStatus.ACTIVE.value, index=True)
    shared_with_subjects = db.Column(db.JSON, nullable=False, default=list)
    download_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)
    last_accessed_at = db.Column(db.DateTime)
    deleted_at = db.Column(db.DateTime)

    def to_dict(self):
        data = super().to_dict()
        data["shared_with_subjects"] = list(data["shared_with_subjects"] or [])
        return data


class ShareGrant(Record, db.Model):
    __tablename__ = "share_grants"
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    document_id = db.Column(db.String(32), db.ForeignKey("documents.id"), nullable=False, index=True)
    owner_id = db.Column(db.String(32), nullable=False)
    granted_to_subject = db.Column(db.String(200), nullable=False, index=True)
    share_method = db.Column(db.String(20), nullable=False)
    permission = db.Column(db.String(20), nullable=False, default=Permission.VIEW.value)
    status = db.Column(db.String(20), nullable=False, default=GrantStatus.ACTIVE.value)
    granted_at = db.Column(db.DateTime, default=utcnow)
    revoked_at = db.Column(db.DateTime)


class ActivityLog(Record, db.Model):
    __tablename__ = "activity_logs"
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    subject_id = db.Column(db.String(200), index=True)
    action = db.Column(db.String(40), nullable=False)
    detail = db.Column(db.String(1000))
    related_document_id = db.Column(db.String(32))
    timestamp = db.Column(db.DateTime, default=utcnow)
    session_id = db.Column(db.String(100))
    origin_address = db.Column(db.String(64))


class BlobDeletion(Record, db.Model):
    __tablename__ = "blob_deletions"
    id = db.Column(db.String(32), primary_key=True, default=_new_id)
    blob_storage_path = db.Column(db.String(500), nullable=False)
    document_id = db.Column(db.String(32))
    status = db.Column(db.String(20), nullable=False, default="pending", index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(1000))
    requested_at = db.Column(db.DateTime, default=utcnow)
    completed_at = db.Column(db.DateTime)


# Logical collection name -> table
COLLECTIONS = {
    "users": User,
    "documents": Document,
    "shareGrants": ShareGrant,
    "activityLogs": ActivityLog,
    "blobDeletions": BlobDeletion,
}
