import threading
from datetime import timedelta
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

import pytest

from studio.core import metrics
from studio.services.catalog import AccessOperation, ApprovalStatus, AssetCatalog, AssetType, Project
from studio.services.delivery import AccessContext, DeliveryWorkflow, Role, verify_retrieval_signature
from studio.services.errors import AccessDenied, InvalidTransition, NotFound, ValidationError
from studio.services.notifications import NotificationKind, OutboxNotifier

SECRET = "test-secret"
EDITOR = AccessContext(actor_id="editor-1", role=Role.team, display_name="Editor One")
ADMIN = AccessContext(actor_id="admin-1", role=Role.admin)
CLIENT = AccessContext(actor_id="client-1", role=Role.client, display_name="Dana Client")
OTHER_CLIENT = AccessContext(actor_id="client-2", role=Role.client)


@pytest.fixture
def notifier() -> OutboxNotifier:
    return OutboxNotifier()


@pytest.fixture
def workflow(catalog: AssetCatalog, notifier: OutboxNotifier) -> DeliveryWorkflow:
    return DeliveryWorkflow(
        catalog,
        notifier=notifier,
        retrieval_ttl_seconds=600,
        auto_deliver_on_download=True,
        secret_key=SECRET,
    )


@pytest.fixture
def deliverable(workflow: DeliveryWorkflow, ingest_ready, project: Project):
    asset = ingest_ready("final-cut.jpg")
    result = workflow.mark_deliverable(project.id, [asset.id], timedelta(days=7), actor=EDITOR)
    assert not result.failed
    workflow.notifier.drain()
    return result.succeeded[0]


def test_mark_deliverable_reports_each_item(
    workflow: DeliveryWorkflow, catalog: AssetCatalog, ingest_ready, project: Project, notifier: OutboxNotifier, clock
) -> None:
    ready = ingest_ready("ready.jpg")
    not_ready = catalog.ingest(project_id=project.id, uploader_id="editor-1", filename="raw.jpg", mime_type="image/jpeg", size_bytes=1)
    other_project = catalog.register_project(Project(id=uuid4(), name="Other", client_id="client-2"))
    foreign = ingest_ready("foreign.jpg", project_id=other_project.id)
    missing = uuid4()

    result = workflow.mark_deliverable(
        project.id,
        [ready.id, not_ready.id, foreign.id, missing, ready.id],
        timedelta(days=3),
        actor=EDITOR,
        message="First cut is ready",
    )

    assert [asset.id for asset in result.succeeded] == [ready.id]
    marked = result.succeeded[0]
    assert marked.asset_type == AssetType.deliverable
    assert marked.approval_status == ApprovalStatus.pending
    assert marked.expires_at == clock.current + timedelta(days=3)

    errors = {failure.asset_id: type(failure.error) for failure in result.failed}
    assert errors == {not_ready.id: InvalidTransition, foreign.id: ValidationError, missing: NotFound}
    assert catalog.get(not_ready.id).asset_type == AssetType.raw

    sent = notifier.drain()
    assert len(sent) == 1
    assert sent[0].kind == NotificationKind.deliverable_ready
    assert sent[0].recipient_id == "client-1"
    assert sent[0].asset_ids == (ready.id,)
    assert sent[0].message == "First cut is ready"
    assert metrics.snapshot()["deliverables_marked"] == 1


def test_mark_deliverable_rejects_non_positive_expiry(workflow: DeliveryWorkflow, ingest_ready, project: Project) -> None:
    asset = ingest_ready()
    with pytest.raises(ValidationError):
        workflow.mark_deliverable(project.id, [asset.id], timedelta(0))


def test_refresh_never_shortens_expiry_and_keeps_approval(
    workflow: DeliveryWorkflow, deliverable, project: Project, clock
) -> None:
    original_expiry = deliverable.expires_at
    shorter = workflow.mark_deliverable(project.id, [deliverable.id], timedelta(days=1)).succeeded[0]
    assert shorter.expires_at == original_expiry

    workflow.approve(deliverable.id, actor=CLIENT)
    longer = workflow.mark_deliverable(project.id, [deliverable.id], timedelta(days=30)).succeeded[0]
    assert longer.expires_at == clock.current + timedelta(days=30)
    assert longer.approval_status == ApprovalStatus.approved


def test_approve_happy_path_and_double_approve(
    workflow: DeliveryWorkflow, deliverable, notifier: OutboxNotifier, clock
) -> None:
    approved = workflow.approve(deliverable.id, actor=CLIENT)
    assert approved.approval_status == ApprovalStatus.approved
    assert approved.approved_by == "client-1"
    assert approved.approved_at == clock.current

    sent = notifier.drain()
    assert [(item.kind, item.recipient_id) for item in sent] == [(NotificationKind.deliverable_approved, "editor-1")]

    with pytest.raises(InvalidTransition):
        workflow.approve(deliverable.id, actor=CLIENT)


def test_approve_requires_deliverable(workflow: DeliveryWorkflow, ingest_ready) -> None:
    asset = ingest_ready()
    with pytest.raises(InvalidTransition):
        workflow.approve(asset.id, actor=EDITOR)


def test_request_revision_validates_comment_first(workflow: DeliveryWorkflow, ingest_ready) -> None:
    asset = ingest_ready()
    # Not a deliverable either, but the blank comment is reported.
    with pytest.raises(ValidationError):
        workflow.request_revision(asset.id, "   ", actor=EDITOR)


def test_revision_then_redeliver_round_trip(
    workflow: DeliveryWorkflow, deliverable, notifier: OutboxNotifier, clock
) -> None:
    revised = workflow.request_revision(deliverable.id, "Warmer grade please", actor=CLIENT)
    assert revised.approval_status == ApprovalStatus.revision_requested
    assert [(note.author_name, note.text) for note in revised.annotations] == [("Dana Client", "Warmer grade please")]
    assert notifier.drain()[0].kind == NotificationKind.deliverable_revision_requested

    with pytest.raises(InvalidTransition):
        workflow.approve(deliverable.id, actor=CLIENT)

    clock.advance(days=1)
    result = workflow.redeliver([deliverable.id], timedelta(days=2), actor=EDITOR)
    assert not result.failed
    again = result.succeeded[0]
    assert again.approval_status == ApprovalStatus.pending
    assert again.expires_at == clock.current + timedelta(days=2)
    assert notifier.drain()[0].recipient_id == "client-1"

    nothing_to_do = workflow.redeliver([deliverable.id], None)
    assert type(nothing_to_do.failed[0].error) is InvalidTransition

    assert workflow.approve(deliverable.id, actor=CLIENT).approval_status == ApprovalStatus.approved


def test_mark_delivered_requires_approval(workflow: DeliveryWorkflow, deliverable, clock) -> None:
    with pytest.raises(InvalidTransition):
        workflow.mark_delivered(deliverable.id)
    workflow.approve(deliverable.id, actor=CLIENT)
    delivered = workflow.mark_delivered(deliverable.id, actor=EDITOR)
    assert delivered.approval_status == ApprovalStatus.delivered
    assert delivered.delivered_at == clock.current


def test_expire_and_sweep(workflow: DeliveryWorkflow, deliverable, ingest_ready, clock) -> None:
    with pytest.raises(InvalidTransition):
        workflow.expire(deliverable.id)
    plain = ingest_ready("plain.jpg")
    with pytest.raises(InvalidTransition):
        workflow.expire(plain.id)

    workflow.approve(deliverable.id, actor=CLIENT)
    clock.advance(days=7)
    expired = workflow.sweep_expired()
    assert expired == [deliverable.id]

    record = workflow.catalog.get(deliverable.id)
    assert record.access_revoked is True
    assert record.approval_status == ApprovalStatus.approved

    assert workflow.expire(deliverable.id).version == record.version
    assert workflow.sweep_expired() == []
    assert metrics.snapshot()["deliverables_expired"] == 1


def test_redeliver_restores_revoked_access(workflow: DeliveryWorkflow, deliverable, clock) -> None:
    workflow.approve(deliverable.id, actor=CLIENT)
    clock.advance(days=8)
    workflow.sweep_expired()

    result = workflow.redeliver([deliverable.id], timedelta(days=1))
    restored = result.succeeded[0]
    assert restored.access_revoked is False
    assert restored.approval_status == ApprovalStatus.approved
    assert restored.expires_at == clock.current + timedelta(days=1)
    workflow.access(deliverable.id, AccessOperation.download, CLIENT)


def test_refresh_after_expiry_restores_access(workflow: DeliveryWorkflow, deliverable, project: Project, clock) -> None:
    clock.advance(days=8)
    workflow.sweep_expired()
    refreshed = workflow.mark_deliverable(project.id, [deliverable.id], timedelta(days=3)).succeeded[0]
    assert refreshed.access_revoked is False
    assert refreshed.expires_at == clock.current + timedelta(days=3)


def test_access_boundary_rules(workflow: DeliveryWorkflow, deliverable, ingest_ready) -> None:
    ref = workflow.access(deliverable.id, AccessOperation.view, CLIENT)
    assert ref.operation == AccessOperation.view
    assert workflow.catalog.get(deliverable.id).view_count == 1

    with pytest.raises(AccessDenied) as denied:
        workflow.access(deliverable.id, AccessOperation.download, CLIENT)
    assert denied.value.reason == "not_approved"
    assert workflow.catalog.get(deliverable.id).download_count == 0

    plain = ingest_ready("plain.jpg")
    with pytest.raises(AccessDenied) as denied:
        workflow.access(plain.id, AccessOperation.view, CLIENT)
    assert denied.value.reason == "not_deliverable"

    with pytest.raises(NotFound):
        workflow.access(deliverable.id, AccessOperation.view, OTHER_CLIENT)

    # Operators bypass approval and expiry checks.
    workflow.access(plain.id, AccessOperation.download, EDITOR)
    assert workflow.catalog.get(plain.id).download_count == 1

    snapshot = metrics.snapshot()
    assert snapshot["access_view"] == 1
    assert snapshot["access_download"] == 1
    assert snapshot["access_denied_not_approved"] == 1
    assert snapshot["access_denied_not_deliverable"] == 1


def test_download_after_approval_auto_delivers(workflow: DeliveryWorkflow, deliverable, clock) -> None:
    workflow.approve(deliverable.id, actor=CLIENT)
    ref = workflow.access(deliverable.id, AccessOperation.download, CLIENT)

    record = workflow.catalog.get(deliverable.id)
    assert record.download_count == 1
    assert record.approval_status == ApprovalStatus.delivered

    # Delivered still downloads.
    workflow.access(deliverable.id, AccessOperation.download, CLIENT)
    assert workflow.catalog.get(deliverable.id).download_count == 2

    query = parse_qs(urlparse(ref.url).query)
    assert ref.url.startswith(f"/api/v1/files/{deliverable.id}?")
    assert ref.expires_at == clock.current + timedelta(seconds=600)
    assert verify_retrieval_signature(
        deliverable.id,
        operation=query["op"][0],
        exp=int(query["exp"][0]),
        sig=query["sig"][0],
        now=clock.current,
        secret_key=SECRET,
    )
    assert not verify_retrieval_signature(
        deliverable.id,
        operation="view",
        exp=int(query["exp"][0]),
        sig=query["sig"][0],
        now=clock.current,
        secret_key=SECRET,
    )
    assert not verify_retrieval_signature(
        deliverable.id,
        operation=query["op"][0],
        exp=int(query["exp"][0]),
        sig=query["sig"][0],
        now=clock.current + timedelta(hours=1),
        secret_key=SECRET,
    )


def test_auto_deliver_can_be_disabled(catalog: AssetCatalog, ingest_ready, project: Project) -> None:
    workflow = DeliveryWorkflow(catalog, auto_deliver_on_download=False, secret_key=SECRET)
    asset = ingest_ready()
    workflow.mark_deliverable(project.id, [asset.id], timedelta(days=1))
    workflow.approve(asset.id, actor=CLIENT)
    workflow.access(asset.id, AccessOperation.download, CLIENT)
    assert catalog.get(asset.id).approval_status == ApprovalStatus.approved


def test_expired_is_reported_before_not_approved(workflow: DeliveryWorkflow, deliverable, clock) -> None:
    clock.advance(days=7)
    # Due but not yet swept.
    with pytest.raises(AccessDenied) as denied:
        workflow.access(deliverable.id, AccessOperation.download, CLIENT)
    assert denied.value.reason == "expired"

    workflow.sweep_expired()
    with pytest.raises(AccessDenied) as denied:
        workflow.access(deliverable.id, AccessOperation.view, CLIENT)
    assert denied.value.reason == "expired"
    workflow.access(deliverable.id, AccessOperation.view, ADMIN)


def test_concurrent_approve_and_revision_have_one_winner(workflow: DeliveryWorkflow, deliverable) -> None:
    for _ in range(20):
        barrier = threading.Barrier(2)
        outcomes: dict[str, object] = {}

        def run(name: str, action) -> None:
            barrier.wait()
            try:
                outcomes[name] = action()
            except InvalidTransition as exc:
                outcomes[name] = exc

        threads = [
            threading.Thread(target=run, args=("approve", lambda: workflow.approve(deliverable.id, actor=CLIENT))),
            threading.Thread(
                target=run,
                args=("revise", lambda: workflow.request_revision(deliverable.id, "Swap the logo", actor=CLIENT)),
            ),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        failures = [value for value in outcomes.values() if isinstance(value, InvalidTransition)]
        assert len(failures) == 1
        final = workflow.catalog.get(deliverable.id)
        assert final.approval_status in (ApprovalStatus.approved, ApprovalStatus.revision_requested)

        # Back to pending for the next round.
        if final.approval_status == ApprovalStatus.approved:
            workflow.catalog.reclassify(deliverable.id, AssetType.raw)
            workflow.mark_deliverable(final.project_id, [deliverable.id], timedelta(days=7))
        else:
            workflow.redeliver([deliverable.id], timedelta(days=7))


def test_annotations(workflow: DeliveryWorkflow, deliverable, ingest_ready, project: Project, notifier) -> None:
    with pytest.raises(ValidationError):
        workflow.add_annotation(deliverable.id, "Nice", actor=CLIENT, timecode_seconds=3.0)
    with pytest.raises(ValidationError):
        workflow.add_annotation(deliverable.id, "", actor=CLIENT)

    noted = workflow.add_annotation(deliverable.id, "Love the colours", actor=CLIENT)
    assert noted.annotations[-1].text == "Love the colours"
    assert notifier.drain()[0].recipient_id == "editor-1"

    reply = workflow.add_annotation(deliverable.id, "Thanks!", actor=EDITOR)
    assert reply.annotations[-1].author_name == "Editor One"
    assert notifier.drain()[0].recipient_id == "client-1"

    resolved = workflow.resolve_annotation(deliverable.id, 0, actor=CLIENT)
    assert resolved.annotations[0].resolved is True
    assert workflow.resolve_annotation(deliverable.id, 0, actor=CLIENT).version == resolved.version
    with pytest.raises(NotFound):
        workflow.resolve_annotation(deliverable.id, 5, actor=CLIENT)

    plain = ingest_ready("plain.jpg")
    with pytest.raises(InvalidTransition):
        workflow.add_annotation(plain.id, "Hello", actor=EDITOR)

    clip = ingest_ready("clip.mp4", mime_type="video/mp4", duration_seconds=30.0)
    workflow.mark_deliverable(project.id, [clip.id], timedelta(days=1))
    timed = workflow.request_revision(clip.id, "Trim the intro", actor=CLIENT, timecode_seconds=4.5)
    assert timed.annotations[-1].timecode_seconds == 4.5
    with pytest.raises(ValidationError):
        workflow.add_annotation(clip.id, "Too far", actor=CLIENT, timecode_seconds=31.0)
    with pytest.raises(ValidationError):
        workflow.add_annotation(clip.id, "Negative", actor=CLIENT, timecode_seconds=-1.0)


def test_notifier_failures_do_not_break_transitions(catalog: AssetCatalog, ingest_ready, project: Project) -> None:
    class Broken:
        def notify(self, notification) -> None:
            raise RuntimeError("queue down")

    workflow = DeliveryWorkflow(catalog, notifier=Broken(), secret_key=SECRET)
    asset = ingest_ready()
    result = workflow.mark_deliverable(project.id, [asset.id], timedelta(days=1))
    assert result.succeeded
    assert workflow.approve(asset.id, actor=CLIENT).approval_status == ApprovalStatus.approved


def test_visible_assets_scope_clients_to_their_deliverables(
    workflow: DeliveryWorkflow, deliverable, ingest_ready, project: Project
) -> None:
    ingest_ready("internal.jpg")
    assert len(workflow.visible_assets(project.id, EDITOR)) == 2
    assert [asset.id for asset in workflow.visible_assets(project.id, CLIENT)] == [deliverable.id]
    with pytest.raises(NotFound):
        workflow.visible_assets(project.id, OTHER_CLIENT)
    assert workflow.visible_asset(deliverable.id, CLIENT).id == deliverable.id


def test_clients_stop_seeing_deliverables_once_expiry_passes(
    workflow: DeliveryWorkflow, deliverable, project: Project, clock
) -> None:
    clock.advance(days=8)
    assert not workflow.catalog.get(deliverable.id).access_revoked
    assert workflow.visible_assets(project.id, CLIENT) == ()
    with pytest.raises(NotFound):
        workflow.visible_asset(deliverable.id, CLIENT)
    assert workflow.visible_asset(deliverable.id, EDITOR).id == deliverable.id
    assert [asset.id for asset in workflow.visible_assets(project.id, EDITOR)] == [deliverable.id]


def test_team_members_are_scoped_to_their_projects(
    workflow: DeliveryWorkflow, deliverable, ingest_ready, project: Project
) -> None:
    outsider = AccessContext(actor_id="editor-2", role=Role.team)
    assert workflow.in_scope(project, EDITOR)
    assert workflow.in_scope(project, ADMIN)
    assert not workflow.in_scope(project, outsider)

    with pytest.raises(NotFound):
        workflow.visible_assets(project.id, outsider)
    with pytest.raises(NotFound):
        workflow.approve(deliverable.id, actor=outsider)
    with pytest.raises(NotFound):
        workflow.mark_deliverable(project.id, [ingest_ready("other.jpg").id], timedelta(days=1), actor=outsider)

    result = workflow.redeliver([deliverable.id], timedelta(days=1), actor=outsider)
    assert [type(failure.error) for failure in result.failed] == [NotFound]
    assert workflow.catalog.get(deliverable.id).version == deliverable.version
