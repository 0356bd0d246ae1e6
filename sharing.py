"""
Share grants and the permission checks built on them.

A grant gives one recipient (an email address or an identity number) view
or download access to one document. Grants accumulate: sharing again with a
higher permission adds a grant instead of replacing the old one, and the
recipient's effective permission is the highest of their active grants.
"""
from errors import NotFound, ValidationError
from models import Action, DocumentStatus, GrantStatus, Permission
from utils import mask_identity_number, utcnow
from validators import classify_subject, validate_permission

_RANK = {Permission.VIEW.value: 1, Permission.DOWNLOAD.value: 2}


def normalize_subject(target):
    if not isinstance(target, str):
        return ""
    target = target.strip()
    return target.lower() if "@" in target else target


def effective_permission(database, document_id, identifiers):
    """Highest active permission any of ``identifiers`` holds on the document, or None."""
    identifiers = [i for i in identifiers if i]
    if not identifiers:
        return None
    grants = database.query("shareGrants", {
        "document_id": document_id,
        "granted_to_subject": identifiers,
        "status": GrantStatus.ACTIVE.value,
    })
    best = None
    for grant in grants:
        if best is None or _RANK.get(grant["permission"], 0) > _RANK.get(best, 0):
            best = grant["permission"]
    return best


def allows(granted, required):
    """download implies view."""
    return _RANK.get(granted, 0) >= _RANK[required]


class SharingEngine:

    def __init__(self, store, clock=utcnow):
        self.store = store
        self.clock = clock

    @property
    def database(self):
        return self.store.database

    def share(self, owner_id, document_id, target, permission):
        target = normalize_subject(target)
        violations = validate_permission(permission or "")
        method = classify_subject(target) if target else None
        if method is None:
            violations.append("Share target must be a valid email address or identity number.")
        if violations:
            raise ValidationError(violations)

        document = self.store.require_owned(owner_id, document_id)
        now = self.clock()
        grant = {
            "document_id": document_id,
            "owner_id": owner_id,
            "granted_to_subject": target,
            "share_method": method,
            "permission": permission,
            "status": GrantStatus.ACTIVE.value,
            "granted_at": now,
        }
        subjects = list(document["shared_with_subjects"])
        if target not in subjects:
            subjects.append(target)
        self.database.update_by_id("documents", document_id, {
            "shared_with_subjects": subjects,
            "updated_at": now,
        })
        grant_id = self.database.insert("shareGrants", grant)

        self.store.cache.invalidate(owner_id)
        self.store.audit.record(
            owner_id, Action.SHARE,
            f"Shared document with {mask_identity_number(target)} ({permission})", document_id,
        )
        return dict(grant, id=grant_id)

    def revoke(self, owner_id, document_id, target):
        """Revoke every active grant for ``target`` on the document."""
        target = normalize_subject(target)
        document = self.store.require_owned(owner_id, document_id)
        grants = self.database.query("shareGrants", {
            "document_id": document_id,
            "granted_to_subject": target,
            "status": GrantStatus.ACTIVE.value,
        })
        if not grants:
            raise NotFound("No active share found for that recipient.")

        now = self.clock()
        for grant in grants:
            self.database.update_by_id("shareGrants", grant["id"], {
                "status": GrantStatus.REVOKED.value,
                "revoked_at": now,
            })
        subjects = [s for s in document["shared_with_subjects"] if s != target]
        self.database.update_by_id("documents", document_id, {
            "shared_with_subjects": subjects,
            "updated_at": now,
        })

        self.store.cache.invalidate(owner_id)
        self.store.audit.record(owner_id, Action.REVOKE, f"Revoked access for {mask_identity_number(target)}", document_id)
        return len(grants)

    def list_shared_with_me(self, subject_email, subject_identity_number):
        identifiers = [normalize_subject(i) for i in (subject_email, subject_identity_number)]
        identifiers = [i for i in identifiers if i]
        if not identifiers:
            return []

        grants = self.database.query(
            "shareGrants",
            {"granted_to_subject": identifiers, "status": GrantStatus.ACTIVE.value},
            order_by="granted_at",
            descending=True,
        )
        # newest grant first, so the first one seen per document sets shared_at
        by_document = {}
        for grant in grants:
            entry = by_document.get(grant["document_id"])
            if entry is None:
                by_document[grant["document_id"]] = {
                    "shared_at": grant["granted_at"],
                    "shared_by": grant["owner_id"],
                    "permission": grant["permission"],
                }
            elif _RANK[grant["permission"]] > _RANK[entry["permission"]]:
                entry["permission"] = grant["permission"]

        results = []
        for document_id, entry in by_document.items():
            document = self.database.get_by_id("documents", document_id)
            if document is None or document["status"] != DocumentStatus.ACTIVE.value:
                continue
            document.update(entry)
            results.append(document)
        results.sort(key=lambda d: d["shared_at"], reverse=True)
        return results
