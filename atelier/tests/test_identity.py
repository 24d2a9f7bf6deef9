import unittest
from unittest.mock import MagicMock, patch

import requests
from fastapi.testclient import TestClient

from atelier.app import create_app
from atelier.config import Settings
from atelier.db import InMemoryDbClient
from atelier.errors import IdentityError
from atelier.identity import SupabaseIdentityClient
from atelier.storage import InMemoryStorageClient, key_from_url


def _response(status_code, payload=None, text=""):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.content = b"{}" if payload is not None else text.encode()
    response.text = text
    response.json.return_value = payload
    if payload is None:
        response.json.side_effect = ValueError("no json")
    return response


class SupabaseIdentityClientTests(unittest.TestCase):
    def setUp(self):
        self.client = SupabaseIdentityClient(
            url="https://project.supabase.test/", service_role_key="service-key"
        )

    def test_create_user_confirms_email(self):
        with patch.object(
            self.client._session,
            "request",
            return_value=_response(200, {"id": "u-1", "email": "a@b.c"}),
        ) as request:
            user = self.client.create_user("a@b.c", "pw")

        self.assertEqual(user.id, "u-1")
        method, url = request.call_args.args
        self.assertEqual(method, "POST")
        self.assertEqual(url, "https://project.supabase.test/auth/v1/admin/users")
        self.assertEqual(
            request.call_args.kwargs["json"],
            {"email": "a@b.c", "password": "pw", "email_confirm": True},
        )
        self.assertEqual(
            request.call_args.kwargs["headers"]["Authorization"], "Bearer service-key"
        )

    def test_sign_in_returns_session(self):
        payload = {"access_token": "jwt", "user": {"id": "u-1", "email": "a@b.c"}}
        with patch.object(
            self.client._session, "request", return_value=_response(200, payload)
        ) as request:
            session = self.client.sign_in_with_password("a@b.c", "pw")
        self.assertEqual(session.access_token, "jwt")
        self.assertEqual(session.user.as_dict(), {"id": "u-1", "email": "a@b.c"})
        self.assertEqual(request.call_args.kwargs["params"], {"grant_type": "password"})

    def test_get_user_sends_callers_token(self):
        with patch.object(
            self.client._session,
            "request",
            return_value=_response(200, {"id": "u-1"}),
        ) as request:
            user = self.client.get_user("caller-jwt")
        self.assertEqual(user.id, "u-1")
        self.assertEqual(
            request.call_args.kwargs["headers"]["Authorization"], "Bearer caller-jwt"
        )

    def test_error_message_comes_from_provider(self):
        with patch.object(
            self.client._session,
            "request",
            return_value=_response(422, {"msg": "Password should be at least 6 characters"}),
        ):
            with self.assertRaises(IdentityError) as ctx:
                self.client.create_user("a@b.c", "pw")
        self.assertEqual(ctx.exception.message, "Password should be at least 6 characters")

    def test_network_error_becomes_identity_error(self):
        with patch.object(
            self.client._session,
            "request",
            side_effect=requests.ConnectionError("refused"),
        ):
            with self.assertRaises(IdentityError):
                self.client.get_user("jwt")

    def test_recover_passes_redirect(self):
        with patch.object(
            self.client._session, "request", return_value=_response(200, {})
        ) as request:
            self.client.send_recovery_email("a@b.c", "https://site.test/reset")
        self.assertEqual(
            request.call_args.kwargs["params"], {"redirect_to": "https://site.test/reset"}
        )

    def test_non_json_body_becomes_identity_error(self):
        with patch.object(
            self.client._session, "request", return_value=_response(200, text="<html>")
        ):
            with self.assertRaises(IdentityError):
                self.client.get_user("jwt")

    def test_non_object_body_becomes_identity_error(self):
        for payload in ([], "jwt", {"access_token": "jwt", "user": ["u-1"]}):
            with self.subTest(payload=payload):
                with patch.object(
                    self.client._session,
                    "request",
                    return_value=_response(200, payload),
                ):
                    with self.assertRaises(IdentityError):
                        self.client.sign_in_with_password("a@b.c", "pw")

    def test_empty_token_never_reaches_provider(self):
        with patch.object(self.client._session, "request") as request:
            with self.assertRaises(IdentityError):
                self.client.get_user("")
        request.assert_not_called()


class SupabaseIdentityContractTests(unittest.TestCase):
    """Provider misbehaviour must still map to the 401 contract."""

    def setUp(self):
        self.identity = SupabaseIdentityClient(
            url="https://project.supabase.test", service_role_key="SERVICE-KEY"
        )
        app = create_app(
            Settings(use_in_memory_backends=True),
            identity=self.identity,
            db=InMemoryDbClient(),
            storage=InMemoryStorageClient(),
        )
        self.client = TestClient(app)

    def test_html_user_response_is_invalid_token(self):
        with patch.object(
            self.identity._session, "request", return_value=_response(200, text="<html>")
        ):
            response = self.client.get("/me", headers={"Authorization": "Bearer jwt"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Token inválido"})

    def test_list_token_response_is_invalid_login(self):
        with patch.object(
            self.identity._session, "request", return_value=_response(200, [])
        ):
            response = self.client.post(
                "/auth/login", json={"email": "a@b.c", "password": "pw"}
            )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"error": "Login inválido"})

    def test_blank_bearer_does_not_send_service_key(self):
        for header in ("Bearer ", "Bearer    ", "Bearer"):
            with self.subTest(header=header):
                with patch.object(self.identity._session, "request") as request:
                    response = self.client.get(
                        "/me", headers={"Authorization": header}
                    )
                self.assertEqual(response.status_code, 401)
                self.assertEqual(response.json(), {"error": "Token inválido"})
                request.assert_not_called()


class KeyFromUrlTests(unittest.TestCase):
    def test_single_segment(self):
        self.assertEqual(
            key_from_url("https://x.test/storage/v1/object/public/photos/abc.jpg"),
            "abc.jpg",
        )

    def test_product_folder(self):
        self.assertEqual(
            key_from_url(
                "https://x.test/storage/v1/object/public/products/p-1/abc.png?t=1",
                segments=2,
            ),
            "p-1/abc.png",
        )


if __name__ == "__main__":
    unittest.main()
