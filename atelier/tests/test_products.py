import unittest
from unittest.mock import patch

from fastapi.testclient import TestClient

from atelier.app import create_app
from atelier.config import Settings
from atelier.db import InMemoryDbClient
from atelier.errors import StorageError, StoreError
from atelier.identity import InMemoryIdentityClient
from atelier.storage import InMemoryStorageClient, key_from_url


class ProductApiTests(unittest.TestCase):
    def setUp(self):
        self.identity = InMemoryIdentityClient()
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.settings = Settings(use_in_memory_backends=True)
        app = create_app(
            self.settings, identity=self.identity, db=self.db, storage=self.storage
        )
        self.client = TestClient(app)

        admin, token = self.identity.add_user("admin@example.com")
        self.db.create_profile(admin.id, role="admin")
        self.headers = {"Authorization": f"Bearer {token}"}

    def _create(self, files, title="Chair", description="Oak chair"):
        data = {}
        if title is not None:
            data["title"] = title
        if description is not None:
            data["description"] = description
        return self.client.post(
            "/products", data=data, files=files, headers=self.headers
        )

    def _blob(self, url):
        return self.storage.stored_objects[
            (self.settings.products_bucket, key_from_url(url, segments=2))
        ]

    def test_create_product_keeps_image_order(self):
        response = self._create(
            [
                ("files", ("a.png", b"imgA", "image/png")),
                ("files", ("b.jpg", b"imgB", "image/jpeg")),
            ]
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json(), {"ok": True})

        (product,) = self.db.products.values()
        self.assertEqual(product.title, "Chair")
        self.assertEqual(product.description, "Oak chair")
        self.assertEqual(len(product.images), 2)

        listing = self.client.get("/products")
        self.assertEqual(listing.status_code, 200)
        images = listing.json()[0]["product_images"]
        self.assertEqual([image["order_index"] for image in images], [0, 1])
        self.assertEqual(self._blob(images[0]["url"]), (b"imgA", "image/png"))
        self.assertEqual(self._blob(images[1]["url"]), (b"imgB", "image/jpeg"))

    def test_blob_keys_are_scoped_to_the_product(self):
        response = self._create(
            [
                ("files", ("same.png", b"one", "image/png")),
                ("files", ("same.png", b"two", "image/png")),
            ]
        )
        self.assertEqual(response.status_code, 201)
        (product,) = self.db.products.values()
        keys = self.storage.keys(self.settings.products_bucket)
        self.assertEqual(len(set(keys)), 2)
        for key in keys:
            self.assertTrue(key.startswith(f"{product.id}/"))
            self.assertTrue(key.endswith(".png"))

    def test_listing_sorts_images_by_order_index(self):
        product = self.db.create_product("Lamp", "Brass lamp")
        self.db.add_product_images(
            product.id, [("https://x.test/p/2.png", 2), ("https://x.test/p/0.png", 0)]
        )
        self.db.add_product_images(product.id, [("https://x.test/p/1.png", 1)])

        images = self.client.get("/products").json()[0]["product_images"]
        self.assertEqual([image["order_index"] for image in images], [0, 1, 2])

    def test_missing_title_or_description_is_rejected(self):
        files = [("files", ("a.png", b"imgA", "image/png"))]
        for title, description in [(None, "Oak"), ("Chair", None), ("  ", "Oak")]:
            with self.subTest(title=title, description=description):
                response = self._create(files, title=title, description=description)
                self.assertEqual(response.status_code, 400)
                self.assertIn("error", response.json())
        self.assertEqual(self.db.products, {})

    def test_zero_files_is_rejected_without_creating_a_product(self):
        response = self._create(None)
        self.assertEqual(response.status_code, 400)
        self.assertIn("error", response.json())
        self.assertEqual(self.db.products, {})

    def test_too_many_files_is_rejected(self):
        files = [
            ("files", (f"{i}.png", b"x", "image/png"))
            for i in range(self.settings.max_product_files + 1)
        ]
        response = self._create(files)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.products, {})

    def test_oversized_file_is_rejected(self):
        app = create_app(
            Settings(use_in_memory_backends=True, max_upload_bytes=8),
            identity=self.identity,
            db=self.db,
            storage=self.storage,
        )
        client = TestClient(app)
        response = client.post(
            "/products",
            data={"title": "Chair", "description": "Oak chair"},
            files=[("files", ("big.png", b"x" * 9, "image/png"))],
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.products, {})
        self.assertEqual(self.storage.stored_objects, {})

    def test_product_insert_failure_returns_store_message(self):
        with patch.object(
            self.db, "create_product", side_effect=StoreError("relation is read-only")
        ):
            response = self._create([("files", ("a.png", b"imgA", "image/png"))])
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "relation is read-only"})
        self.assertEqual(self.storage.stored_objects, {})

    def test_second_upload_failure_leaves_documented_leftovers(self):
        original_upload = self.storage.upload_bytes
        attempted = []

        def flaky_upload(bucket, key, data, content_type=None):
            attempted.append(key)
            if len(attempted) == 2:
                raise StorageError("upload timed out")
            return original_upload(bucket, key, data, content_type)

        with patch.object(self.storage, "upload_bytes", side_effect=flaky_upload):
            response = self._create(
                [
                    ("files", ("a.png", b"imgA", "image/png")),
                    ("files", ("b.png", b"imgB", "image/png")),
                    ("files", ("c.png", b"imgC", "image/png")),
                ]
            )

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "upload timed out"})
        # The third file is never attempted.
        self.assertEqual(len(attempted), 2)
        # Product row stays, first blob stays unreferenced, no image rows.
        (product,) = self.db.products.values()
        self.assertEqual(product.images, [])
        self.assertEqual(
            self.storage.keys(self.settings.products_bucket), [attempted[0]]
        )

    def test_image_rows_failure_leaves_blobs_orphaned(self):
        with patch.object(
            self.db, "add_product_images", side_effect=StoreError("insert failed")
        ):
            response = self._create(
                [
                    ("files", ("a.png", b"imgA", "image/png")),
                    ("files", ("b.png", b"imgB", "image/png")),
                ]
            )
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "insert failed"})
        self.assertEqual(len(self.db.products), 1)
        self.assertEqual(len(self.storage.keys(self.settings.products_bucket)), 2)

    def test_unexpected_error_is_not_leaked(self):
        with patch.object(
            self.db, "create_product", side_effect=RuntimeError("pool exhausted")
        ):
            response = self._create([("files", ("a.png", b"imgA", "image/png"))])
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Erro interno do servidor"})

    def test_delete_product_removes_blobs_then_row(self):
        self._create(
            [
                ("files", ("a.png", b"imgA", "image/png")),
                ("files", ("b.png", b"imgB", "image/png")),
                ("files", ("c.png", b"imgC", "image/png")),
            ]
        )
        (product,) = self.db.products.values()
        stored_keys = set(self.storage.keys(self.settings.products_bucket))

        with patch.object(
            self.storage,
            "delete_object",
            wraps=self.storage.delete_object,
        ) as delete_object:
            response = self.client.delete(
                f"/products/{product.id}", headers=self.headers
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})
        self.assertEqual(delete_object.call_count, 3)
        deleted = {call.args[1] for call in delete_object.call_args_list}
        self.assertEqual(deleted, stored_keys)
        self.assertEqual(self.db.products, {})
        self.assertEqual(self.storage.stored_objects, {})

    def test_delete_product_ignores_blob_failures(self):
        self._create(
            [
                ("files", ("a.png", b"imgA", "image/png")),
                ("files", ("b.png", b"imgB", "image/png")),
            ]
        )
        (product,) = self.db.products.values()

        with patch.object(
            self.storage, "delete_object", side_effect=StorageError("denied")
        ) as delete_object:
            response = self.client.delete(
                f"/products/{product.id}", headers=self.headers
            )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})
        self.assertEqual(delete_object.call_count, 2)
        self.assertEqual(self.db.products, {})

    def test_delete_product_row_failure_still_answers_ok(self):
        with patch.object(
            self.db, "delete_product", side_effect=StoreError("fk violation")
        ) as delete_product:
            response = self.client.delete("/products/p-1", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})
        delete_product.assert_called_once_with("p-1")

    def test_delete_unknown_product_is_ok(self):
        response = self.client.delete("/products/missing", headers=self.headers)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True})


if __name__ == "__main__":
    unittest.main()
