import base64
from unittest.mock import Mock, patch
from uuid import UUID

from botocore.exceptions import ClientError

from tests.dispatch.base import *  # noqa: F401,F403
from app.core.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UpstreamError,
)
from app.schemas.works import (
    Coordinates,
    IssueReport,
    LocationUpdate,
    PhotoPayload,
    ResumeWork,
    WorkCreate,
    WorkMatchCreate,
    WorkStart,
)
from app.services import work_lifecycle


def _photo() -> PhotoPayload:
    return PhotoPayload(file_name="before.jpg", mime_type="image/jpeg", content_base64=base64.b64encode(b"jpeg").decode())


class WorkCreationTests(DispatchTestBase):
    def test_create_work_assigns_token_and_returns_nearby_candidates(self):
        client_id = self._make_client()
        near_id = self._make_technician("Near Tech", specialization=["Plumbing", "electrical"], lat=12.98, lng=77.60)
        self._make_technician("Far Tech", specialization=["plumbing"], lat=28.61, lng=77.21)
        self._make_technician("Nowhere Tech", specialization=["plumbing"])

        with self.SessionLocal() as db:
            result = work_lifecycle.create_work(
                db,
                self._actor("CLIENT", client_id),
                WorkCreate(
                    service_type="Leak fix",
                    specialization=" Plumbing ",
                    coordinates=Coordinates(lat=12.97, lng=77.59),
                    date="5/11/2026",
                ),
            )

        work = result["work"]
        self.assertRegex(work["token"], r"^REQ-\d{4}-00001$")
        self.assertEqual(work["status"], "open")
        self.assertEqual(work["specialization"], ["plumbing"])
        self.assertEqual(work["location"], "12 MG Road, Bengaluru")
        self.assertEqual(work["date"], "2026-11-05")
        candidates = result["matchingTechnicians"]
        self.assertEqual([row["id"] for row in candidates], [near_id])
        self.assertEqual(candidates[0]["employeeStatus"], "available")
        self.assertLess(candidates[0]["distanceKm"], 2.0)

    def test_create_work_requires_coordinates(self):
        client_id = self._make_client()
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidInputError):
                work_lifecycle.create_work(
                    db,
                    self._actor("CLIENT", client_id),
                    WorkCreate(service_type="Leak fix", specialization=["plumbing"]),
                )
            self.assertEqual(db.query(WorkRequest).count(), 0)

    def test_create_work_with_named_technician_books_it(self):
        client_id = self._make_client()
        tech_id = self._make_technician()

        with self.SessionLocal() as db:
            result = work_lifecycle.create_work(
                db,
                self._actor("CLIENT", client_id),
                WorkCreate(
                    service_type="Leak fix",
                    specialization=["plumbing"],
                    coordinates=Coordinates(lat=12.97, lng=77.59),
                    technician_id=tech_id,
                ),
            )

        self.assertEqual(result["work"]["status"], "taken")
        self.assertEqual(result["work"]["assignedTechnician"], tech_id)
        with self.SessionLocal() as db:
            booking = db.query(Booking).one()
            self.assertEqual(str(booking.technician_id), tech_id)
            self.assertEqual(str(booking.id), result["work"]["bookingId"])
            history = [row.to_status for row in db.query(WorkStatusHistory).order_by(WorkStatusHistory.created_at).all()]
            self.assertEqual(sorted(history), ["open", "taken"])
            self.assertEqual(db.query(Notification).filter(Notification.recipient_role == "TECHNICIAN").count(), 1)

    def test_text_match_creates_open_work_and_filters_by_location(self):
        client_id = self._make_client()
        match_id = self._make_technician("Indira Nagar Tech", specialization=["electrical"], location="Indiranagar, Bengaluru")
        self._make_technician("Pune Tech", specialization=["electrical"], location="Pune")

        with self.SessionLocal() as db:
            result = work_lifecycle.find_matching_technicians(
                db,
                self._actor("CLIENT", client_id),
                WorkMatchCreate(specialization="Electrical", location="  INDIRANAGAR ", date="2026-11-05"),
            )

        self.assertEqual(result["work"]["location"], "indiranagar")
        self.assertEqual(result["work"]["serviceType"], "electrical")
        self.assertEqual([row["id"] for row in result["matchingTechnicians"]], [match_id])
        self.assertNotIn("distanceKm", result["matchingTechnicians"][0])


class ApproveWorkTests(DispatchTestBase):
    def test_approve_sweeps_open_works_of_same_service_type_only(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        target = self._make_work(client_id, service_type="AC repair")
        sibling = self._make_work(client_id, service_type="AC repair")
        other_type = self._make_work(client_id, service_type="Plumbing")

        with self.SessionLocal() as db:
            result = work_lifecycle.approve_work(db, self._actor("TECHNICIAN", tech_id), target)

        self.assertEqual(result["work"]["status"], "approved")
        self.assertEqual(result["unavailable"], [sibling])
        self.assertEqual(self._work(target).assigned_technician_id, UUID(tech_id))
        self.assertEqual(self._work(sibling).status, "unavailable")
        self.assertEqual(self._work(other_type).status, "open")
        with self.SessionLocal() as db:
            swept = db.query(WorkStatusHistory).filter(WorkStatusHistory.work_id == UUID(sibling)).one()
            self.assertEqual((swept.from_status, swept.to_status), ("open", "unavailable"))
            tech = db.get(User, UUID(tech_id))
            self.assertTrue(tech.on_duty)
            titles = {row.title for row in db.query(Notification).all()}
            self.assertEqual(titles, {"Work approved", "Technician assigned"})

    def test_sweep_ignores_service_type_case(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        target = self._make_work(client_id, service_type="AC repair")
        sibling = self._make_work(client_id, service_type="ac Repair")

        with self.SessionLocal() as db:
            result = work_lifecycle.approve_work(db, self._actor("TECHNICIAN", tech_id), target)

        self.assertEqual(result["unavailable"], [sibling])
        self.assertEqual(self._work(sibling).status, "unavailable")

    def test_second_approval_of_same_work_is_invalid_state(self):
        client_id = self._make_client()
        first = self._make_technician("First Tech")
        second = self._make_technician("Second Tech")
        work_id = self._make_work(client_id)

        with self.SessionLocal() as db:
            work_lifecycle.approve_work(db, self._actor("TECHNICIAN", first), work_id)
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidStateError) as ctx:
                work_lifecycle.approve_work(db, self._actor("TECHNICIAN", second), work_id)

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.current_status, "approved")
        self.assertEqual(self._work(work_id).assigned_technician_id, UUID(first))

    def test_stale_reader_loses_the_compare_and_swap(self):
        client_id = self._make_client()
        first = self._make_technician("First Tech")
        second = self._make_technician("Second Tech")
        work_id = self._make_work(client_id)

        with self.SessionLocal() as stale:
            self.assertEqual(stale.get(WorkRequest, UUID(work_id)).status, "open")
            with self.SessionLocal() as fresh:
                work_lifecycle.approve_work(fresh, self._actor("TECHNICIAN", first), work_id)
            with self.assertRaises(InvalidStateError) as ctx:
                work_lifecycle.approve_work(stale, self._actor("TECHNICIAN", second), work_id)

        self.assertEqual(ctx.exception.current_status, "approved")
        work = self._work(work_id)
        self.assertEqual(work.assigned_technician_id, UUID(first))
        with self.SessionLocal() as db:
            approvals = db.query(WorkStatusHistory).filter(WorkStatusHistory.to_status == "approved").count()
        self.assertEqual(approvals, 1)

    def test_busy_technician_cannot_approve_second_work(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        first = self._make_work(client_id, service_type="AC repair")
        second = self._make_work(client_id, service_type="Plumbing")

        with self.SessionLocal() as db:
            work_lifecycle.approve_work(db, self._actor("TECHNICIAN", tech_id), first)
        with self.SessionLocal() as db:
            with self.assertRaises(ConflictError):
                work_lifecycle.approve_work(db, self._actor("TECHNICIAN", tech_id), second)
        self.assertEqual(self._work(second).status, "open")

    def test_inactive_technician_is_forbidden(self):
        client_id = self._make_client()
        tech_id = self._make_technician(is_active=False)
        work_id = self._make_work(client_id)
        with self.SessionLocal() as db:
            with self.assertRaises(ForbiddenError):
                work_lifecycle.approve_work(db, self._actor("TECHNICIAN", tech_id), work_id)

    def test_unknown_work_is_not_found(self):
        tech_id = self._make_technician()
        with self.SessionLocal() as db:
            with self.assertRaises(NotFoundError):
                work_lifecycle.approve_work(db, self._actor("TECHNICIAN", tech_id), "6f1c2f2e-6a55-4f55-9d43-5fe4f3e1c000")


class LocationAndStartTests(DispatchTestBase):
    def test_first_location_update_dispatches_approved_work(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="approved", assigned_technician_id=tech_id)

        with self.SessionLocal() as db:
            first = work_lifecycle.update_location(db, self._actor("TECHNICIAN", tech_id), LocationUpdate(lat=12.9, lng=77.5))
        with self.SessionLocal() as db:
            second = work_lifecycle.update_location(db, self._actor("TECHNICIAN", tech_id), LocationUpdate(lat=12.91, lng=77.51))

        self.assertEqual(first["workStatus"], "dispatch")
        self.assertEqual(second["workStatus"], "dispatch")
        with self.SessionLocal() as db:
            tech = db.get(User, UUID(tech_id))
            self.assertEqual((tech.lat, tech.lng), (12.91, 77.51))
            self.assertIsNotNone(tech.last_location_update)
            dispatches = db.query(WorkStatusHistory).filter(WorkStatusHistory.to_status == "dispatch").count()
            self.assertEqual(dispatches, 1)
        work_events = [item for item in self.published if item[0] == f"work:{work_id}" and item[1] == "locationUpdate"]
        self.assertEqual(len(work_events), 2)
        self.assertEqual(work_events[-1][2]["lat"], 12.91)

    def test_location_update_without_active_work_is_forbidden(self):
        tech_id = self._make_technician()
        with self.SessionLocal() as db:
            with self.assertRaises(ForbiddenError):
                work_lifecycle.update_location(db, self._actor("TECHNICIAN", tech_id), LocationUpdate(lat=12.9, lng=77.5))

    def test_start_stores_before_photo_and_moves_to_inprogress(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="dispatch", assigned_technician_id=tech_id)
        storage = Mock()
        storage.upload.return_value = "http://cdn.local/work_before_photos/before.jpg"

        with patch("app.services.work_photos.get_s3_storage", return_value=storage):
            with self.SessionLocal() as db:
                result = work_lifecycle.start_work(
                    db, self._actor("TECHNICIAN", tech_id), work_id, WorkStart(before_photo=_photo())
                )

        self.assertEqual(result["work"]["status"], "inprogress")
        self.assertEqual(result["beforePhoto"], "http://cdn.local/work_before_photos/before.jpg")
        self.assertEqual(storage.upload.call_args.kwargs["folder"], "work_before_photos")
        work = self._work(work_id)
        self.assertIsNotNone(work.started_at)
        self.assertEqual(work.before_photo, "http://cdn.local/work_before_photos/before.jpg")

    def test_failed_photo_upload_leaves_work_untouched(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="approved", assigned_technician_id=tech_id)
        storage = Mock()
        storage.upload.side_effect = ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")

        with patch("app.services.work_photos.get_s3_storage", return_value=storage):
            with self.SessionLocal() as db:
                with self.assertRaises(UpstreamError) as ctx:
                    work_lifecycle.start_work(db, self._actor("TECHNICIAN", tech_id), work_id, WorkStart(before_photo=_photo()))

        self.assertEqual(ctx.exception.status_code, 502)
        self.assertEqual(self._work(work_id).status, "approved")

    def test_only_assigned_technician_can_start(self):
        client_id = self._make_client()
        owner = self._make_technician("Owner Tech")
        intruder = self._make_technician("Other Tech")
        work_id = self._make_work(client_id, status="approved", assigned_technician_id=owner)
        with self.SessionLocal() as db:
            with self.assertRaises(ForbiddenError):
                work_lifecycle.start_work(db, self._actor("TECHNICIAN", intruder), work_id, WorkStart())
        self.assertEqual(self._work(work_id).status, "approved")

    def test_start_from_completed_is_invalid_state(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="completed", assigned_technician_id=tech_id)
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidStateError) as ctx:
                work_lifecycle.start_work(db, self._actor("TECHNICIAN", tech_id), work_id, WorkStart())
        self.assertEqual(ctx.exception.current_status, "completed")


class IssueAndResumeTests(DispatchTestBase):
    def test_need_parts_holds_work_and_files_admin_notification(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="inprogress", assigned_technician_id=tech_id)

        with self.SessionLocal() as db:
            result = work_lifecycle.report_issue(
                db,
                self._actor("TECHNICIAN", tech_id),
                work_id,
                IssueReport(issue_type="need_parts", remarks="  Compressor valve (2x) missing  "),
            )

        self.assertEqual(result["workStatus"], "onhold_parts")
        self.assertEqual(result["remarks"], "  Compressor valve (2x) missing  ")
        with self.SessionLocal() as db:
            issue = db.query(AdminNotification).one()
            self.assertEqual(issue.work_id, UUID(work_id))
            self.assertEqual(issue.technician_id, UUID(tech_id))
            self.assertEqual(issue.issue_type, "need_parts")
            self.assertEqual(issue.remarks, "  Compressor valve (2x) missing  ")
            self.assertEqual(str(issue.id), result["adminNotificationId"])

    def test_missing_remarks_fall_back_to_default_text(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="inprogress", assigned_technician_id=tech_id)
        with self.SessionLocal() as db:
            result = work_lifecycle.report_issue(
                db, self._actor("TECHNICIAN", tech_id), work_id, IssueReport(issue_type="customer_unavailable")
            )
        self.assertEqual(result["workStatus"], "rescheduled")
        self.assertEqual(result["remarks"], "Customer not available at site")

    def test_unknown_issue_type_is_rejected(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="inprogress", assigned_technician_id=tech_id)
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidInputError):
                work_lifecycle.report_issue(db, self._actor("TECHNICIAN", tech_id), work_id, IssueReport(issue_type="rain"))
        self.assertEqual(self._work(work_id).status, "inprogress")

    def test_issue_on_approved_work_is_invalid_state(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="approved", assigned_technician_id=tech_id)
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidStateError) as ctx:
                work_lifecycle.report_issue(db, self._actor("TECHNICIAN", tech_id), work_id, IssueReport(issue_type="need_parts"))
        self.assertEqual(ctx.exception.current_status, "approved")
        with self.SessionLocal() as db:
            self.assertEqual(db.query(AdminNotification).count(), 0)

    def test_escalation_from_hold_then_technician_resume(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="onhold_parts", assigned_technician_id=tech_id)
        actor = self._actor("TECHNICIAN", tech_id)

        with self.SessionLocal() as db:
            escalated = work_lifecycle.report_issue(db, actor, work_id, IssueReport(issue_type="need_specialist"))
        self.assertEqual(escalated["workStatus"], "escalated")
        with self.SessionLocal() as db:
            resumed = work_lifecycle.resume_work(db, actor, work_id, ResumeWork(comment="parts arrived"))
        self.assertEqual(resumed["work"]["status"], "inprogress")

    def test_admin_can_resume_and_client_cannot(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        admin_id = self._make_admin()
        work_id = self._make_work(client_id, status="rescheduled", assigned_technician_id=tech_id)

        with self.SessionLocal() as db:
            with self.assertRaises(ForbiddenError):
                work_lifecycle.resume_work(db, self._actor("CLIENT", client_id), work_id, ResumeWork())
        with self.SessionLocal() as db:
            result = work_lifecycle.resume_work(db, self._actor("ADMIN", admin_id), work_id, ResumeWork())
        self.assertEqual(result["work"]["status"], "inprogress")
        with self.SessionLocal() as db:
            self.assertEqual(
                db.query(Notification).filter(Notification.recipient_id == UUID(tech_id)).one().title,
                "Work resumed by admin",
            )

    def test_resume_blocked_while_technician_is_busy_elsewhere(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        held = self._make_work(client_id, status="onhold_parts", assigned_technician_id=tech_id)
        self._make_work(client_id, status="inprogress", assigned_technician_id=tech_id, service_type="Plumbing")
        with self.SessionLocal() as db:
            with self.assertRaises(ConflictError):
                work_lifecycle.resume_work(db, self._actor("TECHNICIAN", tech_id), held, ResumeWork())
        self.assertEqual(self._work(held).status, "onhold_parts")

    def test_resume_of_active_work_is_invalid_state(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="inprogress", assigned_technician_id=tech_id)
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidStateError):
                work_lifecycle.resume_work(db, self._actor("TECHNICIAN", tech_id), work_id, ResumeWork())


class SavedLocationTests(DispatchTestBase):
    def test_save_and_read_location(self):
        client_id = self._make_client()
        actor = self._actor("CLIENT", client_id)
        with self.SessionLocal() as db:
            with self.assertRaises(NotFoundError):
                work_lifecycle.get_location(db, actor)
        with self.SessionLocal() as db:
            work_lifecycle.save_location(db, actor, LocationUpdate(lat=19.07, lng=72.87))
        with self.SessionLocal() as db:
            stored = work_lifecycle.get_location(db, actor)
        self.assertEqual(stored["coordinates"], {"lat": 19.07, "lng": 72.87})
        self.assertIsNotNone(stored["lastUpdated"])

    def test_out_of_range_coordinates_are_rejected(self):
        client_id = self._make_client()
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidInputError):
                work_lifecycle.save_location(db, self._actor("CLIENT", client_id), LocationUpdate(lat=91, lng=0))
