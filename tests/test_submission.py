"""Tests for submission checks and side-effect planning."""

from __future__ import annotations

import pytest
import requests

from modal_builder.models import (
    ByContext,
    ByField,
    Condition,
    ConditionValue,
    EmailNotification,
    EntityOperation,
    Field,
    FieldTemplate,
    ModalConfig,
    StatusUpdate,
    Step,
    ValidationRules,
    Webhook,
)
from modal_builder.submission import (
    WebhookRequest,
    check_field_value,
    dispatch_webhook,
    is_unanswered,
    map_field_values,
    plan_submission,
    render_template,
    resolve_path,
    validate_submission,
)


def _config(**overrides) -> ModalConfig:
    base = dict(
        name="Intake",
        description="Collect info",
        fields=(
            Field(id="title", label="Title", required=True),
            Field(id="amount", type="number", label="Amount", validation=ValidationRules(min=1, max=10)),
            Field(
                id="reason",
                label="Reason",
                conditions=(
                    Condition(id="c", target_field_id="amount", operator="greater_than", value=ConditionValue("number", 5)),
                ),
            ),
        ),
        entity_operations=(
            EntityOperation(id="create", type="create", entity="Proposal", field_mappings={"title": "name", "reason": "why"}),
        ),
    )
    base.update(overrides)
    return ModalConfig(**base)


@pytest.mark.parametrize(
    "item, value, message",
    [
        (Field(id="a", label="Name", required=True), "", "Name is required"),
        (Field(id="a", label="", required=True), None, "a is required"),
        (Field(id="a", label="A", validation=ValidationRules(required=True, error_message="Fill me")), [], "Fill me"),
        (Field(id="a", type="number", label="A"), "abc", "Enter a valid number"),
        (Field(id="a", type="number", label="A", validation=ValidationRules(min=2)), "1", "Must be at least 2"),
        (Field(id="a", type="number", label="A", validation=ValidationRules(max=2.5)), 3, "Must be at most 2.5"),
        (Field(id="a", type="date", label="A"), "soon", "Enter a valid date"),
        (
            Field(id="a", type="date", label="A", validation=ValidationRules(min_date="2024-01-01")),
            "2023-12-31",
            "Must be on or after 2024-01-01",
        ),
        (
            Field(id="a", type="date", label="A", validation=ValidationRules(max_date="2024-01-01")),
            "2024-02-01T10:00:00",
            "Must be on or before 2024-01-01",
        ),
        (Field(id="a", label="A", validation=ValidationRules(min_length=3)), "ab", "Must be at least 3 characters"),
        (Field(id="a", label="A", validation=ValidationRules(max_length=1)), "ab", "Must be at most 1 characters"),
        (Field(id="a", label="A", validation=ValidationRules(pattern=r"^\d+$")), "x1", "Invalid format"),
        (
            Field(id="a", label="A", validation=ValidationRules(pattern=r"^\d+$", error_message="Digits only")),
            "x1",
            "Digits only",
        ),
    ],
)
def test_check_field_value_messages(item, value, message) -> None:
    assert check_field_value(item, value) == message


@pytest.mark.parametrize(
    "item, value",
    [
        (Field(id="a", label="A"), ""),
        (Field(id="a", type="number", label="A", validation=ValidationRules(min=1, max=10)), "10"),
        (Field(id="a", label="A", validation=ValidationRules(pattern="([")), "anything"),
        (Field(id="a", type="checkbox", label="A", required=True), True),
    ],
)
def test_check_field_value_accepts(item, value) -> None:
    assert check_field_value(item, value) is None


@pytest.mark.parametrize(
    "value, expected",
    [(None, True), ("", True), (False, True), ([], True), ({}, True), (0, False), (["x"], False)],
)
def test_is_unanswered(value, expected) -> None:
    assert is_unanswered(value) is expected


def test_zero_satisfies_a_required_number() -> None:
    item = Field(id="a", type="number", label="Count", required=True)

    assert check_field_value(item, 0) is None
    assert check_field_value(Field(id="b", label="Tags", required=True), []) == "Tags is required"


def test_hidden_fields_are_not_validated() -> None:
    config = _config(
        fields=_config().fields[:2]
        + (
            Field(
                id="reason",
                label="Reason",
                required=True,
                conditions=(
                    Condition(id="c", target_field_id="amount", operator="greater_than", value=ConditionValue("number", 5)),
                ),
            ),
        )
    )

    assert validate_submission(config, {"title": "x", "amount": 2}) == {}
    assert validate_submission(config, {"title": "x", "amount": 7}) == {"reason": "Reason is required"}


def test_step_validation_only_checks_that_step() -> None:
    config = _config(
        steps=(Step(id="s1", title="One"), Step(id="s2", title="Two")),
        fields=(
            Field(id="title", label="Title", required=True, step_id="s1"),
            Field(id="notes", label="Notes", required=True, step_id="s2"),
            Field(id="orphan", label="Orphan", required=True),
        ),
    )

    assert validate_submission(config, {}, step_index=0) == {"title": "Title is required"}
    assert validate_submission(config, {"title": "x"}, step_index=0) == {}
    assert validate_submission(config, {"title": "x"}) == {"notes": "Notes is required"}


def test_render_template_fills_values_and_context() -> None:
    text = "Hi {{ title }} from {{context.user.name}} ({{missing}})"

    assert render_template(text, {"title": "Plan"}, {"user": {"name": "Sam"}}) == "Hi Plan from Sam ()"


def test_resolve_path_walks_mappings_and_lists() -> None:
    source = {"record": {"ids": ["a", "b"]}}

    assert resolve_path(source, "record.ids.1") == "b"
    assert resolve_path(source, "record.ids.7") is None
    assert resolve_path(source, "record.missing.deep") is None


def test_map_field_values_groups_by_mapping_type() -> None:
    config = ModalConfig(
        fields=(
            Field(id="a", label="A", mapping_type="entity", target_entity="Person", target_attribute="name"),
            Field(id="b", label="B", mapping_type="custom_json", custom_json_path="meta.score"),
            Field(id="c", label="C"),
        )
    )

    mapped = map_field_values(config, {"a": "Ada", "b": 9, "c": "ignored"})

    assert mapped.entities == {"Person": {"name": "Ada"}}
    assert mapped.custom_json == {"meta": {"score": 9}}


def test_plan_maps_visible_values_only() -> None:
    plan = plan_submission(_config(), {"title": "Roof", "amount": 2, "reason": "stale"})

    assert plan.values == {"title": "Roof", "amount": 2}
    assert len(plan.entity_requests) == 1
    request = plan.entity_requests[0]
    assert (request.entity, request.action, request.data) == ("Proposal", "create", {"name": "Roof"})
    assert plan.errors == []


def test_plan_drops_answers_behind_a_hidden_field() -> None:
    fields = (
        Field(id="x", label="X"),
        Field(
            id="a",
            label="A",
            conditions=(Condition(id="c1", target_field_id="x", operator="equals", value=ConditionValue("string", "yes")),),
        ),
        Field(
            id="b",
            label="B",
            required=True,
            conditions=(Condition(id="c2", target_field_id="a", operator="equals", value=ConditionValue("string", "foo")),),
        ),
    )
    operation = EntityOperation(id="op", type="create", entity="Proposal", field_mappings={"x": "x", "b": "secret"})
    config = _config(fields=fields, entity_operations=(operation,))

    plan = plan_submission(config, {"x": "no", "a": "foo", "b": "secret"})

    assert plan.values == {"x": "no"}
    assert plan.entity_requests[0].data == {"x": "no"}
    assert validate_submission(config, {"x": "no", "a": "foo"}) == {}


def test_plan_skips_operations_whose_conditions_fail() -> None:
    operation = EntityOperation(
        id="big",
        type="create",
        entity="Review",
        field_mappings={"amount": "value"},
        conditions=(Condition(id="c", target_field_id="amount", operator="greater_than", value=ConditionValue("number", 8)),),
    )

    plan = plan_submission(_config(entity_operations=(operation,)), {"title": "x", "amount": 3})

    assert plan.skipped_operations == ["big"]
    assert plan.is_empty is True


def test_update_operations_need_a_record_id() -> None:
    by_context = EntityOperation(
        id="upd", type="update", entity="Proposal", field_mappings={"title": "name"}, id_resolution=ByContext("record.id")
    )
    by_field = EntityOperation(
        id="upd2", type="update", entity="Proposal", field_mappings={"title": "name"}, id_resolution=ByField("title")
    )
    config = _config(entity_operations=(by_context, by_field))

    plan = plan_submission(config, {"title": "P-7"}, {"record": {"id": 42}})
    assert [request.record_id for request in plan.entity_requests] == ["42", "P-7"]

    plan = plan_submission(config, {"title": "P-7"})
    assert [request.operation_id for request in plan.entity_requests] == ["upd2"]
    assert plan.errors == ["Operation upd: could not resolve the record id to update."]


def test_template_defaults_run_only_without_configured_operations() -> None:
    template = FieldTemplate(
        id="t", default_operations=(EntityOperation(id="tpl", type="create", entity="Invoice", field_mappings={"doc": "file"}),)
    )
    fields = (Field(id="doc", type="file", label="Doc", template=template),)

    plan = plan_submission(_config(fields=fields, entity_operations=()), {"doc": "scan.pdf"})
    assert [(request.entity, request.data) for request in plan.entity_requests] == [("Invoice", {"file": "scan.pdf"})]

    plan = plan_submission(_config(fields=fields), {"doc": "scan.pdf"})
    assert [request.entity for request in plan.entity_requests] == ["Proposal"]


def test_webhooks_emails_and_status_updates() -> None:
    config = _config(
        webhooks=(
            Webhook(id="w1", url="https://hooks.test/{{title}}", include_context=True),
            Webhook(id="w2", url="https://hooks.test/custom", custom_payload='{"t": "{{title}}"}'),
            Webhook(id="off", url="https://hooks.test/off", enabled=False),
        ),
        email_notifications=(
            EmailNotification(id="e1", to="team@test", subject="New {{title}}", body="See below", include_form_data=True),
            EmailNotification(id="e2", to=""),
        ),
        status_updates=(
            StatusUpdate(id="s1", entity="Proposal", target_field="status", new_value="submitted", id_resolution=ByContext("id")),
            StatusUpdate(id="s2", entity="Proposal", target_field="status", new_value="x"),
        ),
    )

    plan = plan_submission(config, {"title": "Roof", "amount": 2}, {"id": "r1"})

    first, second = plan.webhook_requests
    assert first.url == "https://hooks.test/Roof"
    assert first.body == {"modal": "Intake", "formData": {"title": "Roof", "amount": 2}, "context": {"id": "r1"}}
    assert second.body == {"t": "Roof"}
    assert [email.email_id for email in plan.email_requests] == ["e1"]
    assert plan.email_requests[0].subject == "New Roof"
    assert plan.email_requests[0].body == "See below\n\nTitle: Roof\nAmount: 2"
    assert [(status.record_id, status.data) for status in plan.status_requests] == [("r1", {"status": "submitted"})]
    assert plan.errors == ["Status update s2: could not resolve the record id."]
    assert plan.to_dict()["values"] == {"title": "Roof", "amount": 2}


class _FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class _FakeSession:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return _FakeResponse(self.status_code)


def test_dispatch_webhook_sends_json_bodies() -> None:
    session = _FakeSession()
    request = WebhookRequest(webhook_id="w", url="https://hooks.test", method="POST", headers={"X": "1"}, body={"a": 1})

    response = dispatch_webhook(request, session=session, timeout=3)

    assert response.status_code == 200
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "https://hooks.test")
    assert kwargs == {"headers": {"X": "1"}, "timeout": 3, "json": {"a": 1}}


def test_dispatch_webhook_sends_text_and_raises_on_failure() -> None:
    session = _FakeSession(status_code=500)
    request = WebhookRequest(webhook_id="w", url="https://hooks.test", method="PUT", headers={}, body="plain")

    with pytest.raises(requests.HTTPError):
        dispatch_webhook(request, session=session)

    assert session.calls[0][2]["data"] == b"plain"
