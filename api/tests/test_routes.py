"""
Integration tests for the HTTP API.

The application runs with its real lifespan; only the translation endpoint is
faked (see conftest).
"""

import pytest
from tests.fakes import drain

API = "/api/v1"


def _headers(user_id: str) -> dict:
    return {"X-User-Id": user_id}


def _create_conversation(client, creator: str, *members: str) -> str:
    response = client.post(
        f"{API}/conversations",
        json={"memberIds": list(members), "name": "Team"},
        headers=_headers(creator),
    )
    assert response.status_code == 201
    return response.json()["data"]["id"]


def _set_language(client, user_id: str, language: str) -> None:
    response = client.put(
        f"{API}/users/me/language",
        json={"preferredLanguage": language},
        headers=_headers(user_id),
    )
    assert response.status_code == 200


@pytest.mark.integration
class TestIdentity:
    def test_missing_user_header_is_rejected(self, test_client):
        response = test_client.get(f"{API}/conversations")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_ERROR"


@pytest.mark.integration
class TestConversationRoutes:
    def test_create_and_list(self, test_client):
        conversation_id = _create_conversation(test_client, "alice", "bob")

        response = test_client.get(f"{API}/conversations", headers=_headers("bob"))

        assert response.status_code == 200
        ids = [conversation["id"] for conversation in response.json()["data"]]
        assert conversation_id in ids

    def test_create_requires_another_member(self, test_client):
        response = test_client.post(
            f"{API}/conversations",
            json={"memberIds": ["alice", " "]},
            headers=_headers("alice"),
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR_MEMBERIDS"

    def test_language_preference_round_trip(self, test_client):
        default = test_client.get(f"{API}/users/me/language", headers=_headers("zoe"))
        assert default.json()["preferredLanguage"] == "en"

        _set_language(test_client, "zoe", "JA")

        response = test_client.get(f"{API}/users/me/language", headers=_headers("zoe"))
        assert response.json()["preferredLanguage"] == "ja"

    def test_unsupported_language_preference(self, test_client):
        response = test_client.put(
            f"{API}/users/me/language",
            json={"preferredLanguage": "xx"},
            headers=_headers("zoe"),
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "UNSUPPORTED_LANGUAGE"
        assert response.json()["error"]["context"] == {"language": "xx"}


@pytest.mark.integration
class TestMessageRoutes:
    def test_send_delivers_translation_to_recipient(self, test_client):
        from polychat.main import app

        _set_language(test_client, "bob", "es")
        conversation_id = _create_conversation(test_client, "alice", "bob")
        registry = app.state.connection_registry
        bob_connection = registry.add_connection("bob-device", "bob")

        response = test_client.post(
            f"{API}/conversations/{conversation_id}/messages",
            json={"content": "Hello", "originalLanguage": "en"},
            headers=_headers("alice"),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["content"] == "Hello"
        assert len(body["deliveries"]) == 2
        frames = drain(bob_connection)
        assert frames[-1]["data"]["content"] == "Hola"
        assert frames[-1]["data"]["isTranslated"] is True

    def test_blank_message_is_rejected(self, test_client):
        conversation_id = _create_conversation(test_client, "alice", "bob")

        response = test_client.post(
            f"{API}/conversations/{conversation_id}/messages",
            json={"content": "   "},
            headers=_headers("alice"),
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR_CONTENT"
        assert response.json()["error"]["context"] == {"field": "content"}

    def test_non_member_cannot_send(self, test_client):
        conversation_id = _create_conversation(test_client, "alice", "bob")

        response = test_client.post(
            f"{API}/conversations/{conversation_id}/messages",
            json={"content": "Hello"},
            headers=_headers("mallory"),
        )

        assert response.status_code == 403

    def test_history_is_members_only(self, test_client):
        conversation_id = _create_conversation(test_client, "alice", "bob")
        test_client.post(
            f"{API}/conversations/{conversation_id}/messages",
            json={"content": "Hello"},
            headers=_headers("alice"),
        )

        history = test_client.get(
            f"{API}/conversations/{conversation_id}/messages",
            headers=_headers("bob"),
        )
        forbidden = test_client.get(
            f"{API}/conversations/{conversation_id}/messages",
            headers=_headers("mallory"),
        )

        assert [m["content"] for m in history.json()["data"]] == ["Hello"]
        assert forbidden.status_code == 403

    def test_translate_stored_message(self, test_client):
        conversation_id = _create_conversation(test_client, "alice", "bob")
        sent = test_client.post(
            f"{API}/conversations/{conversation_id}/messages",
            json={"content": "Hello"},
            headers=_headers("alice"),
        ).json()

        response = test_client.post(
            f"{API}/messages/{sent['data']['id']}/translate",
            json={"targetLanguage": "es"},
            headers=_headers("bob"),
        )

        assert response.status_code == 200
        assert response.json()["data"]["translatedContent"] == "Hola"

    def test_typing_indicator(self, test_client):
        from polychat.main import app

        conversation_id = _create_conversation(test_client, "alice", "bob")
        registry = app.state.connection_registry
        bob_connection = registry.add_connection("bob-typing", "bob")
        registry.subscribe(conversation_id, "bob-typing")

        response = test_client.post(
            f"{API}/conversations/{conversation_id}/typing",
            json={"isTyping": True},
            headers=_headers("alice"),
        )

        assert response.status_code == 200
        assert response.json()["data"]["delivered"] == 1
        assert drain(bob_connection)[0]["type"] == "typing"


@pytest.mark.integration
class TestTranslateRoutes:
    def test_translate_text(self, test_client):
        response = test_client.post(
            f"{API}/translate",
            json={"text": "Hello", "targetLanguage": "es"},
            headers=_headers("alice"),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["translatedText"] == "Hola"
        assert data["detectedLanguage"] == "en"
        assert data["errorType"] is None

    def test_translate_rejects_unsupported_target(self, test_client):
        response = test_client.post(
            f"{API}/translate",
            json={"text": "Hello", "targetLanguage": "xx"},
            headers=_headers("alice"),
        )

        assert response.status_code == 400

    def test_translate_rejects_blank_text(self, test_client):
        response = test_client.post(
            f"{API}/translate",
            json={"text": " ", "targetLanguage": "es"},
            headers=_headers("alice"),
        )

        assert response.status_code == 422

    def test_supported_languages(self, test_client):
        response = test_client.get(
            f"{API}/translate/languages", headers=_headers("alice")
        )

        codes = {language["code"] for language in response.json()["data"]}
        assert {"en", "es", "ja"} <= codes


@pytest.mark.integration
class TestRealtimeRoutes:
    def test_subscribe_and_unsubscribe_own_connection(self, test_client):
        from polychat.main import app

        conversation_id = _create_conversation(test_client, "alice", "bob")
        registry = app.state.connection_registry
        registry.add_connection("alice-web", "alice")

        subscribed = test_client.post(
            f"{API}/realtime/alice-web/subscribe",
            json={"conversationId": conversation_id},
            headers=_headers("alice"),
        )
        assert subscribed.status_code == 200
        assert registry.get_subscribers(conversation_id) == {"alice-web"}

        unsubscribed = test_client.post(
            f"{API}/realtime/alice-web/unsubscribe",
            json={"conversationId": conversation_id},
            headers=_headers("alice"),
        )
        assert unsubscribed.status_code == 200
        assert registry.get_subscribers(conversation_id) == set()

    def test_cannot_subscribe_someone_elses_connection(self, test_client):
        from polychat.main import app

        conversation_id = _create_conversation(test_client, "alice", "bob")
        app.state.connection_registry.add_connection("alice-web", "alice")

        response = test_client.post(
            f"{API}/realtime/alice-web/subscribe",
            json={"conversationId": conversation_id},
            headers=_headers("bob"),
        )

        assert response.status_code == 403

    def test_subscribe_unknown_connection(self, test_client):
        response = test_client.post(
            f"{API}/realtime/ghost/subscribe",
            json={"conversationId": "conv-1"},
            headers=_headers("alice"),
        )

        assert response.status_code == 404

    def test_subscribe_requires_membership(self, test_client):
        from polychat.main import app

        conversation_id = _create_conversation(test_client, "alice", "bob")
        app.state.connection_registry.add_connection("carol-web", "carol")

        response = test_client.post(
            f"{API}/realtime/carol-web/subscribe",
            json={"conversationId": conversation_id},
            headers=_headers("carol"),
        )

        assert response.status_code == 403

    def test_stream_requires_membership(self, test_client):
        response = test_client.get(
            f"{API}/realtime",
            params={"conversationId": "not-mine"},
            headers=_headers("alice"),
        )

        assert response.status_code == 403

    def test_stats(self, test_client):
        from polychat.main import app

        app.state.connection_registry.add_connection("alice-web", "alice")

        response = test_client.get(f"{API}/realtime/stats", headers=_headers("alice"))

        assert response.json()["data"]["connections"] == 1


@pytest.mark.integration
class TestOperationalRoutes:
    def test_health(self, test_client):
        response = test_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["services"] == {"translation": "healthy", "realtime": "healthy"}

    def test_health_probe_reports_degraded_translator(
        self, test_client, completion_endpoint
    ):
        from tests.fakes import error_response

        completion_endpoint.failures = [error_response(401)]

        response = test_client.get("/health", params={"probe": "true"})

        assert response.status_code == 503
        assert response.json()["services"]["translation"] == "degraded"

    def test_probes(self, test_client):
        assert test_client.get("/health/live").json() == {"status": "alive"}
        assert test_client.get("/health/ready").json() == {"status": "ready"}

    def test_metrics_endpoint(self, test_client):
        test_client.post(
            f"{API}/translate",
            json={"text": "Hello", "targetLanguage": "es"},
            headers=_headers("alice"),
        )

        response = test_client.get("/metrics")

        assert response.status_code == 200
        assert "polychat_translation_requests_total" in response.text
