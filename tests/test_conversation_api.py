from inline_snapshot import Is, snapshot

from forgechat.router.api.params import ConversationInfo, GetModesResponse, QueryConversations

API_BASE_URL = "/api/v1/conversation"


def create_conversation(client) -> str:
    response = client.post(
        f"{API_BASE_URL}/create",
    )
    assert response.status_code == 200
    return response.json()["conversation_id"]


def test_hello(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Hello World"}


def test_crud_conversation(client):
    response = client.post(
        f"{API_BASE_URL}/delete/not-exists",
    )
    assert response.status_code == 404

    response = client.get(
        f"{API_BASE_URL}/info/not-exists",
    )
    assert response.status_code == 404

    response = client.get(
        f"{API_BASE_URL}/list",
    )
    assert response.status_code == 200
    response_data = QueryConversations.model_validate(response.json())
    assert len(response_data.datas) == 0

    conversation_id = create_conversation(client)

    response = client.get(
        f"{API_BASE_URL}/list",
    )
    assert response.status_code == 200
    response_data = QueryConversations.model_validate(response.json())
    assert len(response_data.datas) == 1
    assert response_data.datas[0].messages is None

    response = client.get(
        f"{API_BASE_URL}/info/{conversation_id}",
    )
    assert response.status_code == 200
    response_data = ConversationInfo.model_validate(response.json())
    assert response_data == snapshot(
        Is(
            ConversationInfo(
                conversation_id=conversation_id,
                title="Untitled",
                messages=[],
                metadata={},
                created_at=response_data.created_at,
                updated_at=response_data.updated_at,
            )
        )
    )

    response = client.post(
        f"{API_BASE_URL}/delete/{conversation_id}",
    )
    assert response.status_code == 204
    response = client.get(
        f"{API_BASE_URL}/info/{conversation_id}",
    )
    assert response.status_code == 404


def test_list_pagination(client):
    ids = [create_conversation(client) for _ in range(3)]

    response = client.get(f"{API_BASE_URL}/list", params={"limit": 2, "order": "asc"})
    assert response.status_code == 200
    page = QueryConversations.model_validate(response.json())
    assert [c.conversation_id for c in page.datas] == ids[:2]
    assert page.has_more

    response = client.get(f"{API_BASE_URL}/list", params={"limit": 2, "offset": 2, "order": "asc"})
    page = QueryConversations.model_validate(response.json())
    assert [c.conversation_id for c in page.datas] == ids[2:]
    assert not page.has_more


def test_list_rejects_bad_ordering(client):
    response = client.get(f"{API_BASE_URL}/list", params={"order": "sideways"})
    assert response.status_code == 400

    response = client.get(f"{API_BASE_URL}/list", params={"order_by": "title"})
    assert response.status_code == 400


def test_get_modes(client):
    response = client.get("/api/config/modes")
    assert response.status_code == 200
    modes = GetModesResponse.model_validate(response.json())
    assert modes.default_mode == "chat"
    assert {m.mode.value: m.tools for m in modes.modes} == snapshot(
        {
            "chat": ["read_artifact", "list_artifacts"],
            "agent": ["create_artifact", "update_artifact", "read_artifact", "list_artifacts"],
        }
    )
