import io
import pytest


def signup(client, email, password="secret1", **extra):
    return client.post("/signup", data={"email": email, "password": password, **extra})


def login(client, email, password="secret1"):
    return client.post("/login", data={"email": email, "password": password})


def upload(client, content=b"%PDF-1.4 passport", name="passport.pdf",
           category="travel-document", description="Passport scan for visa"):
    return client.post(
        "/documents",
        data={
            "file": (io.BytesIO(content), name, "application/pdf"),
            "category": category,
            "description": description,
        },
        content_type="multipart/form-data",
    )


@pytest.fixture
def logged_in(client):
    signup(client, "user@example.com", identity_number="123456789010", phone_number="9876543210")
    login(client, "user@example.com")
    return client

# ----------------------------
# 🧪 BLACK BOX TESTS
# ----------------------------
'''Test Case: User should be able to successfully sign up
    with a valid email and password.'''

def test_signup_success(client):
    response = signup(client, "test@example.com", password="123456")
    assert response.status_code == 201
    assert b"registered" in response.data

'''Test Case: Signing up with an already registered email
    should return an error.'''

def test_signup_existing_email(client):
    signup(client, "test@example.com")
    response = signup(client, "test@example.com", password="abcdefg")
    assert response.status_code == 400
    assert b"exists" in response.data

'''Test Case: Weak passwords and bad identity numbers are rejected.'''

def test_signup_validation(client):
    response = signup(client, "test@example.com", password="1234")
    assert response.status_code == 400
    assert b"at least 6" in response.data
    response = signup(client, "test@example.com", identity_number="123456789012")
    assert response.status_code == 400
    assert b"identity number" in response.data

'''Test Case: User should be able to log in with correct credentials.'''
def test_login_success(client):
    signup(client, "user@example.com")
    response = login(client, "user@example.com")
    assert response.status_code == 200
    assert b"logged in" in response.data

'''Test Case: Login should fail if user provides wrong credentials'''
def test_login_invalid(client):
    signup(client, "user@example.com")
    response = login(client, "user@example.com", password="wrong-one")
    assert response.status_code == 401
    assert b"invalid credentials" in response.data

'''Test Case: Document routes require a session.'''
def test_documents_require_login(client):
    assert client.get("/documents").status_code == 401

'''Test Case: Uploading without a file should return an error.'''

def test_upload_without_file(logged_in):
    response = logged_in.post("/documents", data={})
    assert response.status_code == 400
    assert b"no file" in response.data

'''Test Case: Upload, list, download and fetch the stored bytes back.'''

def test_upload_list_download(logged_in):
    response = upload(logged_in)
    assert response.status_code == 201
    doc_id = response.get_json()["id"]

    listed = logged_in.get("/documents").get_json()
    assert [d["id"] for d in listed] == [doc_id]

    response = logged_in.get(f"/documents/{doc_id}/download")
    assert response.status_code == 200
    body = response.get_json()
    assert body["document"]["download_count"] == 1

    blob = logged_in.get(body["url"])
    assert blob.status_code == 200
    assert blob.data == b"%PDF-1.4 passport"

'''Test Case: A description under ten characters is rejected.'''

def test_upload_short_description(logged_in):
    response = upload(logged_in, description="ok")
    assert response.status_code == 400
    assert b"at least 10" in response.data

'''Test Case: Updating and deleting through the API.'''

def test_update_and_delete(logged_in):
    doc_id = upload(logged_in).get_json()["id"]
    response = logged_in.patch(f"/documents/{doc_id}", json={"category": "national-id"})
    assert response.status_code == 200
    assert logged_in.get(f"/documents/{doc_id}").get_json()["category"] == "national-id"

    assert logged_in.delete(f"/documents/{doc_id}").status_code == 200
    assert logged_in.get(f"/documents/{doc_id}").status_code == 404
    assert logged_in.get("/documents").get_json() == []

'''Test Case: Sharing with another user by email.'''

def test_share_flow(client):
    signup(client, "owner@example.com")
    signup(client, "b@example.com")
    login(client, "owner@example.com")
    doc_id = upload(client).get_json()["id"]
    response = client.post(f"/documents/{doc_id}/share", json={"target": "b@example.com", "permission": "view"})
    assert response.status_code == 201
    client.get("/logout")

    login(client, "b@example.com")
    shared = client.get("/shared").get_json()
    assert [d["id"] for d in shared] == [doc_id]
    assert client.get(f"/documents/{doc_id}").status_code == 200
    response = client.get(f"/documents/{doc_id}/download")
    assert response.status_code == 403
    assert b"Download permission" in response.data

'''Test Case: Activity feed lists the user's actions, newest first.'''

def test_activity_feed(logged_in):
    upload(logged_in)
    actions = [e["action"] for e in logged_in.get("/activity").get_json()]
    assert "UPLOAD" in actions
    assert "LOGIN" in actions

'''Test Case: Search and stats endpoints.'''

def test_search_and_stats(logged_in):
    upload(logged_in)
    upload(logged_in, name="pan.pdf", category="tax-id", description="PAN card for returns")
    found = logged_in.get("/documents/search?q=pan").get_json()
    assert [d["original_file_name"] for d in found] == ["pan.pdf"]
    stats = logged_in.get("/documents/stats").get_json()
    assert stats["total_documents"] == 2

'''Test Case: Non-text JSON values are rejected as bad input,
    never as a server error.'''

def test_non_text_json_values_are_bad_requests(logged_in):
    doc_id = upload(logged_in).get_json()["id"]
    response = logged_in.patch(f"/documents/{doc_id}", json={"description": 12345678901})
    assert response.status_code == 400
    assert b"Description must be text" in response.data
    response = logged_in.post(f"/documents/{doc_id}/share", json={"target": 123456789010, "permission": "view"})
    assert response.status_code == 400
    response = logged_in.post("/login", json={"email": 12345, "password": ["secret1"]})
    assert response.status_code == 401

'''Test Case: Updating the profile is visible on the next read,
    and invalid phone numbers are rejected.'''

def test_profile_update(logged_in):
    assert logged_in.get("/profile").get_json()["first_name"] is None
    response = logged_in.patch("/profile", json={"first_name": "Meera", "phone_number": "9123456780"})
    assert response.status_code == 200
    profile = logged_in.get("/profile").get_json()
    assert profile["first_name"] == "Meera"
    assert profile["phone_number"] == "9123456780"
    assert "password_hash" not in profile

    response = logged_in.patch("/profile", json={"phone_number": "12-34"})
    assert response.status_code == 400
    response = logged_in.patch("/profile", json={"email": "other@example.com"})
    assert response.status_code == 400
    actions = [e["action"] for e in logged_in.get("/activity").get_json()]
    assert "PROFILE_UPDATE" in actions
