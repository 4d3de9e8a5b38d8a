import time

from conftest import SESSION_TTL, SHOP, stored_segment

SESSIONS = "/api/v1/editor/sessions"


def open_session(client, **body):
    response = client.post(SESSIONS, json=body)
    assert response.status_code == 201
    return response.json()


def first_condition(view):
    return view["tree"]["groups"][0]["conditions"][0]


def edit(client, session_id, *edits):
    return client.post(f"{SESSIONS}/{session_id}/edits", json={"edits": list(edits)})


def wait_for_preview(client, session_id, status="ready", timeout=2.0):
    deadline = time.time() + timeout
    while True:
        preview = client.get(f"{SESSIONS}/{session_id}/preview").json()
        if preview["status"] == status or time.time() > deadline:
            return preview
        time.sleep(0.02)


def test_new_session_starts_empty(client, matching_service):
    view = open_session(client)
    assert view["isEmpty"] is True
    assert view["canRemoveGroup"] is False
    assert view["removableConditionGroups"] == []
    assert view["preview"]["status"] == "idle"
    assert first_condition(view)["field"] == "totalSpent"
    assert first_condition(view)["operator"] == "eq"
    assert matching_service.calls == []


def test_session_from_template(client):
    view = open_session(client, templateId="high-value")
    assert view["name"] == "High Value Customers"
    assert view["isEmpty"] is False
    assert first_condition(view)["value"] == 500


def test_unknown_template(client):
    response = client.post(SESSIONS, json={"templateId": "nope"})
    assert response.status_code == 404


def test_session_from_stored_segment(client, storage):
    segment = stored_segment(storage, [{"field": "rfmSegment", "operator": "in", "value": "CHAMPIONS,LOYAL"}])
    view = open_session(client, segmentId=segment.id)
    assert view["segmentId"] == segment.id
    assert first_condition(view)["value"] == ["CHAMPIONS", "LOYAL"]

    response = client.post(SESSIONS, json={"segmentId": "missing"})
    assert response.status_code == 404


def test_edits_update_tree_and_preview(client, matching_service):
    view = open_session(client)
    condition_id = first_condition(view)["id"]

    response = edit(
        client,
        view["id"],
        {"op": "set_operator", "conditionId": condition_id, "operator": "gte"},
        {"op": "set_value", "conditionId": condition_id, "value": "250"},
    )
    assert response.status_code == 200
    updated = response.json()
    assert first_condition(updated)["operator"] == "gte"
    assert first_condition(updated)["value"] == 250
    assert updated["isEmpty"] is False
    assert updated["preview"]["status"] in ("pending", "loading", "ready")

    preview = wait_for_preview(client, view["id"])
    assert preview["status"] == "ready"
    assert preview["result"]["count"] == 3
    # both edits landed inside one debounce window
    assert len(matching_service.calls) == 1


def test_illegal_edits_are_ignored(client):
    view = open_session(client)
    condition_id = first_condition(view)["id"]

    response = edit(client, view["id"], {"op": "set_operator", "conditionId": condition_id, "operator": "contains"})
    assert response.status_code == 200
    assert first_condition(response.json())["operator"] == "eq"

    group_id = view["tree"]["groups"][0]["id"]
    response = edit(client, view["id"], {"op": "remove_condition", "groupId": group_id, "conditionId": condition_id})
    assert len(response.json()["tree"]["groups"][0]["conditions"]) == 1


def test_unknown_edit_op_is_rejected(client):
    view = open_session(client)
    response = edit(client, view["id"], {"op": "explode"})
    assert response.status_code == 422


def test_group_edits(client):
    view = open_session(client)
    group_id = view["tree"]["groups"][0]["id"]

    view = edit(client, view["id"], {"op": "add_group"}, {"op": "add_condition", "groupId": group_id}).json()
    assert len(view["tree"]["groups"]) == 2
    assert view["canRemoveGroup"] is True
    assert view["removableConditionGroups"] == [group_id]

    view = edit(
        client,
        view["id"],
        {"op": "set_tree_logic", "logic": "OR"},
        {"op": "set_group_logic", "groupId": group_id, "logic": "OR"},
        {"op": "remove_group", "groupId": group_id},
    ).json()
    assert view["tree"]["logic"] == "OR"
    assert len(view["tree"]["groups"]) == 1
    assert view["tree"]["groups"][0]["id"] != group_id


def test_clearing_last_value_returns_preview_to_idle(client):
    view = open_session(client, templateId="high-value")
    condition_id = first_condition(view)["id"]

    view = edit(client, view["id"], {"op": "set_value", "conditionId": condition_id, "value": "abc"}).json()
    assert first_condition(view)["value"] is None
    assert view["isEmpty"] is True
    assert view["preview"]["status"] == "idle"


def test_preview_error_and_retry(client, matching_service):
    matching_service.error = "Query engine unavailable"
    view = open_session(client, templateId="repeat-buyers")

    preview = client.post(f"{SESSIONS}/{view['id']}/preview/retry").json()
    assert preview["status"] == "error"
    assert preview["error"] == "Query engine unavailable"

    matching_service.error = None
    preview = client.post(f"{SESSIONS}/{view['id']}/preview/retry").json()
    assert preview["status"] == "ready"
    assert preview["result"]["count"] == 3


def test_save_new_segment(client, storage):
    view = open_session(client, templateId="champions")

    response = client.patch(f"{SESSIONS}/{view['id']}", json={"name": "My champions", "isActive": False})
    assert response.json()["name"] == "My champions"

    response = client.post(f"{SESSIONS}/{view['id']}/save")
    assert response.status_code == 200
    segment = response.json()
    assert segment["name"] == "My champions"
    assert segment["isActive"] is False
    assert storage.segments[segment["id"]].filters == {
        "logic": "AND",
        "conditions": [{"field": "rfmSegment", "operator": "eq", "value": "CHAMPIONS"}],
    }

    view = client.get(f"{SESSIONS}/{view['id']}").json()
    assert view["segmentId"] == segment["id"]

    # saving again updates the same segment
    response = client.post(f"{SESSIONS}/{view['id']}/save")
    assert response.json()["id"] == segment["id"]
    assert len(storage.segments) == 1


def test_save_requires_name_and_conditions(client, storage):
    view = open_session(client)
    response = client.post(f"{SESSIONS}/{view['id']}/save")
    assert response.status_code == 400

    client.patch(f"{SESSIONS}/{view['id']}", json={"name": "Empty"})
    response = client.post(f"{SESSIONS}/{view['id']}/save")
    assert response.status_code == 400
    assert response.json()["detail"] == "Please add at least one filter condition"
    assert storage.segments == {}


def test_save_failure_keeps_tree(client, storage):
    view = open_session(client, templateId="at-risk")
    storage.error = "Database unavailable"

    response = client.post(f"{SESSIONS}/{view['id']}/save")
    assert response.status_code == 502

    after = client.get(f"{SESSIONS}/{view['id']}").json()
    assert after["tree"] == view["tree"]
    assert after["lastError"] == "Database unavailable"
    assert after["segmentId"] is None


def test_sessions_are_scoped_to_shop(client):
    view = open_session(client)
    response = client.get(f"{SESSIONS}/{view['id']}", headers={"X-Shopify-Shop-Domain": "other.myshopify.com"})
    assert response.status_code == 404


def test_close_session(client, editor):
    view = open_session(client, templateId="high-value")
    assert len(editor) == 1

    assert client.delete(f"{SESSIONS}/{view['id']}").status_code == 200
    assert len(editor) == 0
    assert client.get(f"{SESSIONS}/{view['id']}").status_code == 404


def test_idle_session_expires(client, editor, clock):
    view = open_session(client, templateId="high-value")
    session = editor.get(view["id"], SHOP)

    clock.advance(SESSION_TTL + 1)
    assert client.get(f"{SESSIONS}/{view['id']}").status_code == 404
    assert session.preview.debouncer.closed
    assert len(editor) == 0


def test_activity_keeps_session_alive(client, editor, clock):
    view = open_session(client)
    for _ in range(3):
        clock.advance(SESSION_TTL - 1)
        assert client.get(f"{SESSIONS}/{view['id']}").status_code == 200
    assert len(editor) == 1
