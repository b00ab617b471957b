import io
import unittest
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import UploadFile
from fastapi.testclient import TestClient

from folio.app import create_app
from folio.config import Settings, get_settings
from folio.db import InMemoryDbClient
from folio.dependencies import get_db_client, get_media_client
from folio.errors import ValidationError
from folio.media import InMemoryMediaClient, image_constraints
from folio.routes import _store_upload


def make_settings(**overrides) -> Settings:
    values = {
        "use_in_memory_backends": True,
        "jwt_secret": "test-secret",
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


class RecordingStream(io.BytesIO):
    def __init__(self, data):
        super().__init__(data)
        self.sizes = []

    def read(self, size=-1):
        self.sizes.append(size)
        return super().read(size)


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.settings = make_settings()
        self.db = InMemoryDbClient()
        self.media = InMemoryMediaClient()
        self.app = create_app(self.settings)
        self.app.dependency_overrides[get_settings] = lambda: self.settings
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_media_client] = lambda: self.media
        self.client = TestClient(self.app)

    def register(self, user_name="alice", password="s3cret"):
        response = self.client.post(
            "/api/user/register",
            json={"userName": user_name, "password": password, "password2": password},
        )
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def auth_headers(self, user_name="alice"):
        token = self.register(user_name)["token"]
        return {"Authorization": f"Bearer {token}"}

    def create_blog(self, headers, files=None, **fields):
        data = {"title": "Hello", "content": "Some words here", "published": "true"}
        data.update(fields)
        response = self.client.post("/api/blogs", data=data, files=files, headers=headers)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()


class UserRoutesTests(ApiTestCase):
    def test_register_returns_token_and_user(self):
        payload = self.register()
        self.assertIn("token", payload)
        self.assertEqual(payload["user"]["userName"], "alice")
        self.assertNotIn("password", payload["user"])
        self.assertNotIn("passwordHash", payload["user"])

    def test_register_password_mismatch(self):
        response = self.client.post(
            "/api/user/register",
            json={"userName": "bob", "password": "one", "password2": "two"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["message"], "Passwords do not match")
        self.assertEqual(self.db.users, {})

    def test_register_duplicate_username(self):
        self.register("carol")
        response = self.client.post(
            "/api/user/register",
            json={"userName": "carol", "password": "x", "password2": "x"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["message"], "Username already exists")
        self.assertEqual(len(self.db.users), 1)

    def test_register_rejects_blank_username(self):
        response = self.client.post(
            "/api/user/register",
            json={"userName": "   ", "password": "x", "password2": "x"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["message"], "Invalid request")

    def test_login_token_resolves_to_same_identity(self):
        registered = self.register("dave", "pw")
        response = self.client.post(
            "/api/user/login", json={"userName": "dave", "password": "pw"}
        )
        self.assertEqual(response.status_code, 200)
        token = response.json()["token"]

        me = self.client.get("/api/user/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["id"], registered["user"]["id"])
        self.assertEqual(me.json()["userName"], "dave")

    def test_login_wrong_password(self):
        self.register("erin", "right")
        response = self.client.post(
            "/api/user/login", json={"userName": "erin", "password": "wrong"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Invalid credentials")

    def test_login_unknown_user(self):
        response = self.client.post(
            "/api/user/login", json={"userName": "nobody", "password": "pw"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["message"], "Invalid credentials")


class TokenEnforcementTests(ApiTestCase):
    PROTECTED = [
        ("get", "/api/contact/all"),
        ("get", "/api/user/me"),
        ("get", "/api/blogs/mine"),
        ("post", "/api/blogs"),
        ("put", "/api/blogs/abc"),
        ("delete", "/api/blogs/abc"),
        ("post", "/api/projects"),
        ("delete", "/api/projects/abc"),
        ("post", "/api/upload/image"),
        ("post", "/api/upload/video"),
    ]

    def assert_all_rejected(self, headers):
        for method, path in self.PROTECTED:
            response = getattr(self.client, method)(path, headers=headers)
            self.assertEqual(response.status_code, 401, f"{method} {path}")
            self.assertIn("message", response.json())

    def test_missing_header(self):
        self.assert_all_rejected({})

    def test_tampered_token(self):
        token = self.register()["token"]
        head, body, signature = token.split(".")
        tampered = f"{head}.{body}.{signature[::-1]}"
        self.assert_all_rejected({"Authorization": f"Bearer {tampered}"})

    def test_expired_token(self):
        user_id = self.register()["user"]["id"]
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {"_id": user_id, "userName": "alice", "iat": past, "exp": past + timedelta(hours=1)},
            self.settings.jwt_secret,
            algorithm="HS256",
        )
        self.assert_all_rejected({"Authorization": f"Bearer {token}"})

    def test_token_signed_with_other_secret(self):
        user_id = self.register()["user"]["id"]
        token = jwt.encode(
            {"_id": user_id, "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            "some-other-secret",
            algorithm="HS256",
        )
        self.assert_all_rejected({"Authorization": f"Bearer {token}"})

    def test_token_for_unknown_user(self):
        token = jwt.encode(
            {"_id": "missing", "exp": datetime.now(timezone.utc) + timedelta(hours=1)},
            self.settings.jwt_secret,
            algorithm="HS256",
        )
        self.assert_all_rejected({"Authorization": f"Bearer {token}"})

    def test_legacy_scheme_needs_configuration(self):
        token = self.register()["token"]
        response = self.client.get("/api/user/me", headers={"Authorization": f"JWT {token}"})
        self.assertEqual(response.status_code, 401)

        self.settings = make_settings(auth_schemes=["Bearer", "JWT"])
        response = self.client.get("/api/user/me", headers={"Authorization": f"JWT {token}"})
        self.assertEqual(response.status_code, 200)


class ContactRoutesTests(ApiTestCase):
    def test_submit_is_public_and_list_is_newest_first(self):
        for name in ("first", "second"):
            response = self.client.post(
                "/api/contact/submit",
                json={"name": name, "email": f"{name}@example.com", "reason": "hi"},
            )
            self.assertEqual(response.status_code, 201)
            self.assertEqual(response.json()["message"], "Contact submitted successfully")

        response = self.client.get("/api/contact/all", headers=self.auth_headers())
        self.assertEqual(response.status_code, 200)
        self.assertEqual([c["name"] for c in response.json()], ["second", "first"])

    def test_submit_rejects_bad_email(self):
        response = self.client.post(
            "/api/contact/submit",
            json={"name": "x", "email": "not-an-email", "reason": "hi"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.db.contacts, {})


class BlogRoutesTests(ApiTestCase):
    def test_create_derives_excerpt_and_read_time(self):
        headers = self.auth_headers()
        content = "a " * 500
        blog = self.create_blog(headers, content=content)
        self.assertEqual(len(blog["excerpt"]), 300)
        self.assertTrue(blog["excerpt"].endswith("..."))
        self.assertEqual(blog["excerpt"][:297], content[:297])
        self.assertEqual(blog["readTime"], 3)
        self.assertEqual(blog["author"]["userName"], "alice")

    def test_explicit_excerpt_is_kept(self):
        blog = self.create_blog(self.auth_headers(), excerpt="Short intro")
        self.assertEqual(blog["excerpt"], "Short intro")

    def test_long_explicit_excerpt_is_capped(self):
        headers = self.auth_headers()
        blog = self.create_blog(headers, excerpt="e" * 1000)
        self.assertEqual(blog["excerpt"], "e" * 297 + "...")

        response = self.client.put(
            f"/api/blogs/{blog['id']}", data={"excerpt": "f" * 500}, headers=headers
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["excerpt"]), 300)
        self.assertEqual(len(self.db.get_blog(blog["id"]).excerpt), 300)

    def test_tags_are_a_set(self):
        blog = self.create_blog(self.auth_headers(), tags="python, web,python ,")
        self.assertEqual(blog["tags"], ["python", "web"])

    def test_pagination_second_page(self):
        headers = self.auth_headers()
        for i in range(15):
            self.create_blog(headers, title=f"Post {i}")

        response = self.client.get("/api/blogs", params={"page": 2, "limit": 10})
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(len(payload["blogs"]), 5)
        self.assertEqual(payload["pagination"]["totalPages"], 2)
        self.assertEqual(payload["pagination"]["totalItems"], 15)
        self.assertFalse(payload["pagination"]["hasNextPage"])
        self.assertTrue(payload["pagination"]["hasPreviousPage"])

    def test_list_defaults_to_published(self):
        headers = self.auth_headers()
        self.create_blog(headers, title="Live")
        self.create_blog(headers, title="Draft", published="false")

        titles = [b["title"] for b in self.client.get("/api/blogs").json()["blogs"]]
        self.assertEqual(titles, ["Live"])

        drafts = self.client.get("/api/blogs", params={"published": "false"}).json()
        self.assertEqual([b["title"] for b in drafts["blogs"]], ["Draft"])

        everything = self.client.get("/api/blogs", params={"published": "all"}).json()
        self.assertEqual(everything["pagination"]["totalItems"], 2)

        mine = self.client.get("/api/blogs/mine", headers=headers).json()
        self.assertEqual(mine["pagination"]["totalItems"], 2)

    def test_search_is_case_insensitive(self):
        headers = self.auth_headers()
        self.create_blog(headers, title="FastAPI tips")
        self.create_blog(headers, title="Other", tags="Cooking")
        self.create_blog(headers, title="Regex (.*) chars")

        found = self.client.get("/api/blogs", params={"search": "fastapi"}).json()
        self.assertEqual([b["title"] for b in found["blogs"]], ["FastAPI tips"])

        by_tag = self.client.get("/api/blogs", params={"search": "cook"}).json()
        self.assertEqual([b["title"] for b in by_tag["blogs"]], ["Other"])

        literal = self.client.get("/api/blogs", params={"search": "(.*)"}).json()
        self.assertEqual([b["title"] for b in literal["blogs"]], ["Regex (.*) chars"])

    def test_get_missing_blog(self):
        response = self.client.get("/api/blogs/does-not-exist")
        self.assertEqual(response.status_code, 404)

    def test_update_by_non_owner_looks_like_missing(self):
        blog = self.create_blog(self.auth_headers("owner"))
        intruder = self.auth_headers("intruder")

        not_owned = self.client.put(
            f"/api/blogs/{blog['id']}", data={"title": "Hacked"}, headers=intruder
        )
        missing = self.client.put(
            "/api/blogs/no-such-id", data={"title": "Hacked"}, headers=intruder
        )
        self.assertEqual(not_owned.status_code, missing.status_code)
        self.assertEqual(not_owned.json(), missing.json())
        self.assertEqual(self.db.get_blog(blog["id"]).title, "Hello")

        deleted = self.client.delete(f"/api/blogs/{blog['id']}", headers=intruder)
        self.assertEqual(deleted.status_code, 404)
        self.assertIsNotNone(self.db.get_blog(blog["id"]))

    def test_update_rederives_and_touches_updated_at(self):
        headers = self.auth_headers()
        blog = self.create_blog(headers)
        response = self.client.put(
            f"/api/blogs/{blog['id']}",
            data={"content": "word " * 401},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200)
        updated = response.json()
        self.assertEqual(updated["readTime"], 3)
        self.assertEqual(len(updated["excerpt"]), 300)
        self.assertEqual(updated["title"], "Hello")
        self.assertEqual(updated["createdAt"], blog["createdAt"])
        stored = self.db.get_blog(blog["id"])
        self.assertGreater(stored.updated_at, stored.created_at)

    def test_featured_image_attach_keep_and_replace(self):
        headers = self.auth_headers()
        blog = self.create_blog(
            headers,
            files={"featuredImage": ("cover.png", io.BytesIO(b"png-bytes"), "image/png")},
        )
        first_url = blog["featuredImage"]
        self.assertIn("/images/", first_url)

        kept = self.client.put(
            f"/api/blogs/{blog['id']}", data={"title": "Renamed"}, headers=headers
        ).json()
        self.assertEqual(kept["featuredImage"], first_url)

        replaced = self.client.put(
            f"/api/blogs/{blog['id']}",
            data={},
            files={"featuredImage": ("new.jpg", io.BytesIO(b"jpg-bytes"), "image/jpeg")},
            headers=headers,
        ).json()
        self.assertNotEqual(replaced["featuredImage"], first_url)
        self.assertEqual(len(self.media.stored_objects), 1)
        self.assertTrue(replaced["featuredImage"].endswith(next(iter(self.media.stored_objects))))

    def test_rejects_unsupported_image_format(self):
        response = self.client.post(
            "/api/blogs",
            data={"title": "t", "content": "c"},
            files={"featuredImage": ("notes.txt", io.BytesIO(b"text"), "text/plain")},
            headers=self.auth_headers(),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.blogs, {})

    def test_delete_survives_media_failure(self):
        headers = self.auth_headers()
        blog = self.create_blog(
            headers,
            files={"featuredImage": ("cover.png", io.BytesIO(b"png-bytes"), "image/png")},
        )
        self.media.fail_deletes = True

        with self.assertLogs("folio.media", level="ERROR"):
            response = self.client.delete(f"/api/blogs/{blog['id']}", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "Blog deleted successfully")
        self.assertEqual(self.client.get(f"/api/blogs/{blog['id']}").status_code, 404)

    def test_delete_removes_media(self):
        headers = self.auth_headers()
        blog = self.create_blog(
            headers,
            files={"featuredImage": ("cover.png", io.BytesIO(b"png-bytes"), "image/png")},
        )
        self.assertEqual(len(self.media.stored_objects), 1)
        self.client.delete(f"/api/blogs/{blog['id']}", headers=headers)
        self.assertEqual(self.media.stored_objects, {})


class ProjectRoutesTests(ApiTestCase):
    def create_project(self, headers, files=None, **fields):
        data = {"title": "Folio", "description": "Portfolio backend"}
        data.update(fields)
        return self.client.post("/api/projects", data=data, files=files, headers=headers)

    def test_create_with_video_and_lists(self):
        response = self.create_project(
            self.auth_headers(),
            files={"projectVideo": ("demo.mp4", io.BytesIO(b"video"), "video/mp4")},
            technologies='["Python", "FastAPI"]',
            features="Auth,Uploads",
            projectUrl="https://example.com/folio",
            status="in-progress",
        )
        self.assertEqual(response.status_code, 201, response.text)
        project = response.json()
        self.assertIn("/videos/", project["videoUrl"])
        self.assertEqual(project["technologies"], ["Python", "FastAPI"])
        self.assertEqual(project["features"], ["Auth", "Uploads"])
        self.assertEqual(project["status"], "in-progress")
        self.assertEqual(project["projectUrl"], "https://example.com/folio")

    def test_video_alias_field(self):
        response = self.create_project(
            self.auth_headers(),
            files={"video": ("demo.webm", io.BytesIO(b"video"), "video/webm")},
        )
        self.assertEqual(response.status_code, 201)
        self.assertIsNotNone(response.json()["videoUrl"])

    def test_default_status(self):
        response = self.create_project(self.auth_headers())
        self.assertEqual(response.json()["status"], "completed")

    def test_rejects_malformed_links(self):
        response = self.create_project(self.auth_headers(), githubUrl="not a url")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "githubUrl must be a valid URL")
        self.assertEqual(self.db.projects, {})

    def test_rejects_unknown_status(self):
        response = self.create_project(self.auth_headers(), status="abandoned")
        self.assertEqual(response.status_code, 400)

    def test_list_filters_and_search(self):
        headers = self.auth_headers()
        self.create_project(headers, title="One", technologies="Django", status="planned")
        self.create_project(headers, title="Two", technologies="Flask")

        planned = self.client.get("/api/projects", params={"status": "planned"}).json()
        self.assertEqual([p["title"] for p in planned["projects"]], ["One"])

        flask = self.client.get("/api/projects", params={"search": "flask"}).json()
        self.assertEqual([p["title"] for p in flask["projects"]], ["Two"])

    def test_update_and_delete_are_owner_only(self):
        project = self.create_project(self.auth_headers("owner")).json()
        intruder = self.auth_headers("intruder")

        response = self.client.put(
            f"/api/projects/{project['id']}", data={"title": "Mine now"}, headers=intruder
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["message"], "Project not found or unauthorized")
        response = self.client.delete(f"/api/projects/{project['id']}", headers=intruder)
        self.assertEqual(response.status_code, 404)
        self.assertIsNotNone(self.db.get_project(project["id"]))

    def test_update_keeps_video_without_new_file(self):
        headers = self.auth_headers()
        project = self.create_project(
            headers,
            files={"projectVideo": ("demo.mp4", io.BytesIO(b"video"), "video/mp4")},
        ).json()
        response = self.client.put(
            f"/api/projects/{project['id']}",
            data={"status": "completed", "description": "Updated"},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200)
        updated = response.json()
        self.assertEqual(updated["videoUrl"], project["videoUrl"])
        self.assertEqual(updated["description"], "Updated")

    def test_replacing_video_removes_previous_asset(self):
        headers = self.auth_headers()
        project = self.create_project(
            headers,
            files={"projectVideo": ("demo.mp4", io.BytesIO(b"video"), "video/mp4")},
        ).json()
        response = self.client.put(
            f"/api/projects/{project['id']}",
            files={"projectVideo": ("take2.mp4", io.BytesIO(b"video-2"), "video/mp4")},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200)
        new_url = response.json()["videoUrl"]
        self.assertNotEqual(new_url, project["videoUrl"])
        self.assertEqual(list(self.media.stored_objects.values()), [b"video-2"])
        self.assertTrue(new_url.endswith(next(iter(self.media.stored_objects))))

    def test_blank_link_clears_it_and_missing_link_keeps_it(self):
        headers = self.auth_headers()
        project = self.create_project(
            headers,
            projectUrl="https://example.com/folio",
            githubUrl="https://github.com/me/folio",
        ).json()
        response = self.client.put(
            f"/api/projects/{project['id']}",
            data={"projectUrl": ""},
            headers=headers,
        )
        self.assertEqual(response.status_code, 200)
        updated = response.json()
        self.assertIsNone(updated["projectUrl"])
        self.assertEqual(updated["githubUrl"], "https://github.com/me/folio")

    def test_delete_schedules_media_removal(self):
        headers = self.auth_headers()
        project = self.create_project(
            headers,
            files={"projectVideo": ("demo.mp4", io.BytesIO(b"video"), "video/mp4")},
        ).json()
        response = self.client.delete(f"/api/projects/{project['id']}", headers=headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.media.stored_objects, {})
        self.assertEqual(self.client.get(f"/api/projects/{project['id']}").status_code, 404)


class UploadRoutesTests(ApiTestCase):
    def test_image_upload(self):
        response = self.client.post(
            "/api/upload/image",
            files={"image": ("photo.jpg", io.BytesIO(b"jpg"), "image/jpeg")},
            headers=self.auth_headers(),
        )
        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["resourceType"], "image")
        self.assertTrue(payload["publicId"].startswith("portfolio/images/"))
        self.assertTrue(payload["url"].endswith(payload["publicId"]))

    def test_video_upload_rejects_images(self):
        response = self.client.post(
            "/api/upload/video",
            files={"video": ("photo.jpg", io.BytesIO(b"jpg"), "image/jpeg")},
            headers=self.auth_headers(),
        )
        self.assertEqual(response.status_code, 400)

    def test_oversized_upload_is_rejected(self):
        self.settings = make_settings(max_image_bytes=16)
        response = self.client.post(
            "/api/upload/image",
            files={"image": ("photo.jpg", io.BytesIO(b"x" * 100), "image/jpeg")},
            headers=self.auth_headers(),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.media.stored_objects, {})

    def test_upload_reads_at_most_one_byte_past_the_cap(self):
        stream = RecordingStream(b"x" * 100)
        upload = UploadFile(stream, filename="photo.jpg")
        constraints = image_constraints(make_settings(max_image_bytes=16))
        with self.assertRaises(ValidationError):
            _store_upload(self.media, upload, constraints)
        self.assertEqual(stream.sizes, [17])

    def test_health(self):
        self.assertEqual(self.client.get("/api/health").json(), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()
