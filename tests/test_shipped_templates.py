from __future__ import annotations

from pathlib import Path

import pytest

from pathtrace.config import load_config
from pathtrace.errors import UnknownTriggerError
from pathtrace.pipeline.reconciliation import coerce_steps, coerce_trace, iter_annotated, reconcile_trace
from pathtrace.schemas.annotated import AnnotatedDecision
from pathtrace.templates.compiler import template_debug_summary

ROOT = Path(__file__).resolve().parents[1]
CONFIG = ROOT / "config" / "pathtrace.yml"


@pytest.fixture(scope="module")
def cfg():
    return load_config(CONFIG)


@pytest.fixture(scope="module")
def registry(cfg):
    return cfg.registry()


def _nodes(result):
    return {n.id: n for n in iter_annotated(result.root)}


def _opportunity_steps(recent_change=False, tasks_found=True):
    steps = [
        {"serviceName": "express", "functionName": "webhook_received"},
        {"serviceName": "express", "functionName": "rate_limit_check"},
        {"serviceName": "express", "functionName": "validate_timestamp"},
        {"serviceName": "express", "functionName": "idempotency_check"},
        {"serviceName": "express", "functionName": "test_mode_filter", "output": {"isInAllowlist": True}},
        {"qualifiedName": "ghlOpportunityService:processOpportunityStageChange"},
        {"qualifiedName": "ghlOpportunityService:checkGracePeriod", "output": {"recentChangesFound": recent_change}},
    ]
    if recent_change:
        steps.append({"qualifiedName": "ghlOpportunityService:deletePreviousStageTasks"})
    steps.append({"qualifiedName": "supabase:getTaskTemplates", "output": {"tasksFound": tasks_found}})
    if tasks_found:
        steps += [
            {"qualifiedName": "supabase:recordStageChange"},
            {"qualifiedName": "ghl:createTasks"},
            {"qualifiedName": "supabase:updateStageChangeTaskIds"},
        ]
    return coerce_steps(steps)


def test_shipped_templates_load(registry):
    assert sorted(registry.keys()) == [
        "calendar-entry-deleted",
        "document-created",
        "invoice-created",
        "matter-closed",
        "matter-stage-change",
        "meeting-scheduled",
        "opportunity-stage-changed",
        "task-completed",
        "task-completion",
        "task-created",
        "task-deleted",
    ]
    for template in registry:
        summary = template_debug_summary(template)
        assert summary["node_counts"]["outcome"] >= 1
        assert sum(summary["node_counts"].values()) == template.node_count


def test_duplicated_subtree_falls_back_to_reachable_outcome(registry, cfg):
    trace = coerce_trace(
        {
            "endpoint": "/webhooks/ghl/opportunity-stage-changed",
            "status": "completed",
            "responseBody": {"success": True, "tasksCreated": 3},
        }
    )
    result = reconcile_trace(registry, trace, _opportunity_steps(), cfg.classifiers())
    nodes = _nodes(result)

    assert result.trigger_key == "opportunity-stage-changed"
    assert result.result_action == "tasks_created"
    assert result.current_id == "tasks_created"
    assert nodes["tasks_created"].match_status == "current"
    assert nodes["tasks_created_after_delete"].match_status == "not-taken"
    # Same executed step, but only the copy under the active branch counts.
    assert nodes["get_templates"].match_status == "taken"
    assert nodes["get_templates_after_delete"].match_status == "not-taken"
    assert nodes["delete_previous_tasks"].match_status == "not-taken"


def test_no_tasks_outcome_under_active_branch(registry, cfg):
    trace = coerce_trace(
        {
            "endpoint": "/webhooks/ghl/opportunity-stage-changed",
            "status": "completed",
            "responseBody": {"success": True, "tasksCreated": 0},
        }
    )
    result = reconcile_trace(registry, trace, _opportunity_steps(tasks_found=False), cfg.classifiers())
    nodes = _nodes(result)

    assert result.result_action == "no_tasks"
    assert result.current_id == "no_tasks"
    assert nodes["no_tasks_after_delete"].match_status == "not-taken"
    assert nodes["record_stage_change"].match_status == "not-taken"


def test_grace_period_path(registry, cfg):
    trace = coerce_trace(
        {
            "endpoint": "/webhooks/ghl/opportunity-stage-changed",
            "status": "completed",
            "responseBody": {"success": True, "tasksCreated": 2},
        }
    )
    result = reconcile_trace(registry, trace, _opportunity_steps(recent_change=True), cfg.classifiers())
    nodes = _nodes(result)

    assert result.current_id == "tasks_created_after_delete"
    assert nodes["delete_previous_tasks"].match_status == "taken"
    assert nodes["get_templates"].match_status == "not-taken"
    assert nodes["tasks_created"].match_status == "not-taken"


def _invoice_steps(emailed: bool):
    steps = [
        {"qualifiedName": "express:webhook_received", "output": {"objectKey": "custom_objects.invoices"}},
        {"qualifiedName": "processing:check_self_update", "output": {"skipped": False}},
        {"qualifiedName": "express:route_event_type"},
        {"qualifiedName": "processing:check_object_type", "output": {"isInvoice": True}},
        {"qualifiedName": "ghl:waitForOpportunityAssociation", "output": {"found": True}},
        {"qualifiedName": "supabase:calculateInvoiceTotal"},
        {"qualifiedName": "ghl:getOpportunity"},
        {
            "qualifiedName": "confido:createInvoice",
            "details": [{"operation": "confido.createInvoice", "output": {"action": "invoice_created"}}],
        },
        {"qualifiedName": "supabase:saveInvoiceToSupabase"},
        {"qualifiedName": "ghl:updateCustomObject"},
    ]
    if emailed:
        steps.append({"qualifiedName": "email:sendInvoiceEmail", "output": {"emailSent": True}})
    return coerce_steps(steps)


def test_invoice_created_with_email(registry, cfg):
    trace = coerce_trace(
        {
            "endpoint": "/webhooks/ghl/custom-object-created",
            "status": "completed",
            "requestBody": {"objectKey": "custom_objects.invoices"},
            "responseBody": {"success": True, "action": "invoice_created_with_email"},
        }
    )
    result = reconcile_trace(registry, trace, _invoice_steps(emailed=True), cfg.classifiers())
    nodes = _nodes(result)

    assert result.trigger_key == "invoice-created"
    assert result.current_id == "invoice_emailed"
    assert nodes["send_email"].match_status == "taken"
    assert nodes["invoice_created"].match_status == "not-taken"

    confido = nodes["confido_result"]
    assert isinstance(confido, AnnotatedDecision)
    created = next(b for b in confido.branches if b.label == "Created")
    assert created.active and created.taken

    # Virtual decision carries the payload of the step it stands for.
    self_update = nodes["self_update"]
    assert self_update.is_taken
    assert self_update.step_data is not None
    assert self_update.step_data.qualified_name == "processing:check_self_update"


def test_invoice_created_without_email(registry, cfg):
    trace = coerce_trace(
        {
            "endpoint": "/webhooks/ghl/custom-object-created",
            "status": "completed",
            "responseBody": {"success": True, "invoiceId": "inv-9"},
        }
    )
    result = reconcile_trace(registry, trace, _invoice_steps(emailed=False), cfg.classifiers())
    nodes = _nodes(result)

    assert result.trigger_key == "invoice-created"
    assert result.result_action == "invoice_created"
    assert result.current_id == "invoice_created"
    assert nodes["send_email"].match_status == "not-taken"
    assert nodes["invoice_emailed"].match_status == "not-taken"

    details = nodes["invoice_created"].details
    assert len(details) == 1
    assert details[0].model_dump(by_alias=True)["parentStepName"] == "confido:createInvoice"


def test_unregistered_custom_object_has_no_diagnostic(registry, cfg):
    trace = coerce_trace(
        {
            "endpoint": "/webhooks/ghl/custom-object-created",
            "requestBody": {"objectKey": "custom_objects.vendors"},
        }
    )
    with pytest.raises(UnknownTriggerError) as exc_info:
        reconcile_trace(registry, trace, [], cfg.classifiers())
    assert exc_info.value.trigger_key == "custom-object-created"


def test_shared_endpoint_needs_trigger_name(registry, cfg):
    assert registry.shared_endpoints() == {
        "/webhooks/calendar": ["calendar-entry-deleted", "meeting-scheduled"],
        "/webhooks/matters": ["matter-closed", "matter-stage-change"],
        "/webhooks/tasks": ["task-completion", "task-deleted"],
    }

    anonymous = coerce_trace({"endpoint": "/webhooks/tasks", "status": "completed", "responseBody": {"success": True}})
    assert registry.resolve_trigger(anonymous) == "tasks"
    with pytest.raises(UnknownTriggerError):
        reconcile_trace(registry, anonymous, [], cfg.classifiers())

    named = coerce_trace({"endpoint": "/webhooks/tasks", "triggerName": "task-deleted"})
    assert registry.resolve(named).id == "task-deleted"

    # A single declaring template still resolves by endpoint alone.
    assert registry.resolve_trigger(coerce_trace({"endpoint": "/webhooks/documents"})) == "document-created"


def test_document_created_in_root_folder(registry, cfg):
    trace = coerce_trace({"triggerName": "document-created", "status": "completed", "resultAction": "task_created"})
    steps = coerce_steps(
        [
            {"stepName": "webhook_received"},
            {"stepName": "validation"},
            {"stepName": "idempotency_check"},
            {"stepName": "fetch_matter", "output": {"status": "Open"}},
            {"stepName": "fetch_document", "output": {"parentFolder": "root"}},
        ]
    )
    result = reconcile_trace(registry, trace, steps, cfg.classifiers())
    nodes = _nodes(result)

    assert result.current_id == "task_created"
    assert nodes["fetch_document"].match_status == "taken"
    assert nodes["closed"].match_status == "not-taken"
    assert nodes["in_folder"].match_status == "not-taken"


def test_meeting_scheduled_links_stage_tasks(registry, cfg):
    trace = coerce_trace({"triggerName": "meeting-scheduled", "resultAction": "tasks_linked_and_updated"})
    steps = coerce_steps([{"stepName": "webhook_received"}, {"stepName": "validation"}, {"stepName": "idempotency_check"}])
    result = reconcile_trace(registry, trace, steps, cfg.classifiers())
    nodes = _nodes(result)

    assert result.current_id == "tasks_linked"
    assert nodes["tasks_updated"].match_status == "not-taken"
    assert nodes["tasks_created"].match_status == "not-taken"
    assert [b.match_value for b in nodes["existing_tasks"].branches] == ["calendar", "stage", "none"]
