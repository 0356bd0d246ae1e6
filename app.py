import io
import logging
import uuid
from functools import wraps

from apscheduler.schedulers.background import BackgroundScheduler
from flask import (
    Blueprint, Flask, current_app, has_request_context, jsonify, request,
    send_file, session,
)
from werkzeug.security import check_password_hash, generate_password_hash

from audit import AuditLogger
from blobstore import BlobStoreError, LocalBlobStore
from cache import TTLCache
from config import Config
from database import DocumentDatabase
from documents import DocumentStore
from errors import NotFound, ServiceError, StorageFailure, ValidationError
from models import Action, DocumentStatus, User, db
from reaper import BlobReaper
from sharing import SharingEngine
from utils import load_encryption_key, utcnow
from validators import validate_registration

bp = Blueprint("docs", __name__)


class Services:
    """Per-app service instances, reachable as ``app.extensions["securegov"]``."""

    def __init__(self, database, blobs, cache, audit, documents, sharing, reaper):
        self.database = database
        self.blobs = blobs
        self.cache = cache
        self.audit = audit
        self.documents = documents
        self.sharing = sharing
        self.reaper = reaper
        self.scheduler = None


def services():
    return current_app.extensions["securegov"]


def _request_context():
    if not has_request_context():
        return None, None
    return session.get("session_id"), request.remote_addr


# ==========================================================
# ⚙️ APP SETUP
# ==========================================================
def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    db.init_app(app)

    with app.app_context():
        db.create_all()

    database = DocumentDatabase()
    audit = AuditLogger(
        database,
        capacity=app.config["AUDIT_FALLBACK_CAPACITY"],
        context_provider=_request_context,
    )
    database.on_error = audit.record_error
    cache = TTLCache(app.config["CACHE_TTL_SECONDS"])
    blobs = LocalBlobStore(
        app.config["BLOB_FOLDER"],
        load_encryption_key(app.config["ENCRYPTION_KEY_B64"]),
        app.config["SECRET_KEY"],
        base_url=app.config["BLOB_BASE_URL"],
        chunk_size=app.config["UPLOAD_CHUNK_SIZE"],
    )
    documents = DocumentStore(
        database, blobs, cache, audit,
        max_file_size=app.config["MAX_FILE_SIZE"],
        allowed_types=app.config["ALLOWED_MIME_TYPES"],
        min_description_length=app.config["MIN_DESCRIPTION_LENGTH"],
    )
    sharing = SharingEngine(documents)
    reaper = BlobReaper(database, blobs, audit)
    app.extensions["securegov"] = Services(database, blobs, cache, audit, documents, sharing, reaper)

    app.register_blueprint(bp)
    app.register_error_handler(ServiceError, _service_error)

    # Scheduler setup
    if app.config["BLOB_REAPER_ENABLED"]:
        scheduler = BackgroundScheduler()
        reaper.schedule(scheduler, app, minutes=app.config["BLOB_REAPER_MINUTES"])
        scheduler.start()
        app.extensions["securegov"].scheduler = scheduler

    app.logger.info("blob store at %s, cache ttl %ss", blobs.root, cache.ttl)
    return app


def _service_error(error):
    if isinstance(error, StorageFailure):
        current_app.logger.warning("storage failure surfaced to caller: %r", error.__cause__)
    return jsonify(error.to_dict()), error.status_code


# ==========================================================
# 🔒 HELPER FUNCTIONS
# ==========================================================
def login_required(func):
    """Ensures routes require login; passes the caller's user id."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        user_id = session.get("user_id")
        if not user_id:
            return jsonify({"error": "login required"}), 401
        try:
            services().documents.get_profile(user_id)
        except NotFound:
            session.clear()
            return jsonify({"error": "login required"}), 401
        return func(user_id, *args, **kwargs)
    return wrapper


def _payload():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) and data else request.form


# ==========================================================
# 🚪 AUTHENTICATION ROUTES
# ==========================================================
@bp.route("/signup", methods=["POST"])
def signup():
    data = _payload()
    errors = validate_registration(data)
    if errors:
        raise ValidationError(list(errors.values()))

    email = data["email"].strip().lower()
    identity_number = data.get("identity_number") or None
    if User.query.filter_by(email=email).first():
        return jsonify({"error": "email already exists"}), 400
    if identity_number and User.query.filter_by(identity_number=identity_number).first():
        return jsonify({"error": "identity number already registered"}), 400

    user = User(
        email=email,
        identity_number=identity_number,
        phone_number=data.get("phone_number") or None,
        first_name=data.get("first_name"),
        last_name=data.get("last_name"),
        password_hash=generate_password_hash(data["password"]),
    )
    db.session.add(user)
    db.session.commit()
    services().audit.record(user.id, Action.REGISTER, "Account created successfully")
    return jsonify({"message": "registered", "id": user.id}), 201


@bp.route("/login", methods=["POST"])
def login():
    data = _payload()
    email = data.get("email")
    email = email.strip().lower() if isinstance(email, str) else ""
    password = data.get("password")
    if not isinstance(password, str):
        password = ""

    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        return jsonify({"error": "invalid credentials"}), 401

    user.last_login_at = utcnow()
    db.session.commit()
    session["user_id"] = user.id
    session["session_id"] = uuid.uuid4().hex
    services().audit.record(user.id, Action.LOGIN, f"Successful login from {request.remote_addr}")
    return jsonify({"message": "logged in", "user_id": user.id})


@bp.route("/logout")
def logout():
    user_id = session.get("user_id")
    if user_id:
        services().audit.record(user_id, Action.LOGOUT, f"User logged out from {request.remote_addr}")
        user = db.session.get(User, user_id)
        if user:
            user.last_logout_at = utcnow()
            db.session.commit()
        services().cache.invalidate(user_id)
    session.clear()
    return jsonify({"message": "logged out"})


@bp.route("/profile")
@login_required
def profile(user_id):
    return jsonify(services().documents.get_profile(user_id))


@bp.route("/profile", methods=["PATCH"])
@login_required
def update_profile(user_id):
    return jsonify(services().documents.update_profile(user_id, dict(_payload())))


# ==========================================================
# 📁 DOCUMENT MANAGEMENT ROUTES
# ==========================================================
@bp.route("/documents", methods=["POST"])
@login_required
def upload(user_id):
    if "file" not in request.files:
        return jsonify({"error": "no file provided"}), 400

    file = request.files["file"]
    if not file.filename:
        return jsonify({"error": "empty filename"}), 400

    raw = file.read()
    document = services().documents.upload(
        user_id,
        raw,
        {"name": file.filename, "mime_type": file.mimetype},
        {
            "category": request.form.get("category", "other"),
            "description": request.form.get("description", ""),
        },
    )
    return jsonify(document), 201


@bp.route("/documents")
@login_required
def list_documents(user_id):
    filters = {
        "category": request.args.get("category"),
        "limit": request.args.get("limit", type=int),
    }
    return jsonify(services().documents.list(user_id, filters))


@bp.route("/documents/search")
@login_required
def search_documents(user_id):
    return jsonify(services().documents.search(user_id, request.args.get("q", "")))


@bp.route("/documents/stats")
@login_required
def document_stats(user_id):
    return jsonify(services().documents.stats(user_id))


@bp.route("/documents/<document_id>")
@login_required
def get_document(user_id, document_id):
    return jsonify(services().documents.get(document_id, user_id))


@bp.route("/documents/<document_id>/download")
@login_required
def download(user_id, document_id):
    document = services().documents.download(document_id, user_id)
    return jsonify({"url": document["blob_retrieval_url"], "document": document})


@bp.route("/documents/<document_id>", methods=["PATCH"])
@login_required
def update_document(user_id, document_id):
    services().documents.update(user_id, document_id, dict(_payload()))
    return jsonify({"message": "Document updated successfully!"})


@bp.route("/documents/<document_id>", methods=["DELETE"])
@login_required
def delete_document(user_id, document_id):
    services().documents.soft_delete(user_id, document_id)
    return jsonify({"message": "Document deleted successfully!"})


# ==========================================================
# 🤝 SHARING ROUTES
# ==========================================================
@bp.route("/documents/<document_id>/share", methods=["POST"])
@login_required
def share_document(user_id, document_id):
    data = _payload()
    grant = services().sharing.share(
        user_id, document_id, data.get("target") or "", data.get("permission") or "view",
    )
    return jsonify(grant), 201


@bp.route("/documents/<document_id>/revoke", methods=["POST"])
@login_required
def revoke_share(user_id, document_id):
    data = _payload()
    revoked = services().sharing.revoke(user_id, document_id, data.get("target") or "")
    return jsonify({"revoked": revoked})


@bp.route("/shared")
@login_required
def shared_with_me(user_id):
    profile = services().documents.get_profile(user_id)
    return jsonify(services().sharing.list_shared_with_me(
        profile.get("email") or "", profile.get("identity_number") or "",
    ))


@bp.route("/activity")
@login_required
def activity(user_id):
    limit = request.args.get("limit", 50, type=int)
    return jsonify(services().audit.recent(user_id, limit=limit))


# ==========================================================
# 📦 BLOB RETRIEVAL
# ==========================================================
@bp.route("/blob/<token>")
def blob(token):
    svc = services()
    path = svc.blobs.resolve_token(token)
    if path is None:
        return jsonify({"error": "File not found"}), 404
    rows = svc.database.query(
        "documents", {"blob_storage_path": path, "status": DocumentStatus.ACTIVE.value}, limit=1,
    )
    if not rows:
        return jsonify({"error": "File not found"}), 404
    try:
        data = svc.blobs.open(path)
    except BlobStoreError as exc:
        svc.audit.record_error(exc, "Failed to read blob")
        raise StorageFailure() from exc
    if data is None:
        return jsonify({"error": "File not found"}), 404
    document = rows[0]
    return send_file(
        io.BytesIO(data),
        mimetype=document["mime_type"],
        as_attachment=True,
        download_name=document["original_file_name"],
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_app().run(host="0.0.0.0", port=8080, debug=True)
