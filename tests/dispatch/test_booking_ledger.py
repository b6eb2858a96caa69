from uuid import UUID

from tests.dispatch.base import *  # noqa: F401,F403
from app.core.errors import ConflictError, ForbiddenError, InvalidInputError, InvalidStateError
from app.schemas.works import BookingCreate, Coordinates
from app.services import booking_ledger


def _payload(work_id: str, technician_id: str, **fields) -> BookingCreate:
    fields.setdefault("coordinates", Coordinates(lat=12.97, lng=77.59))
    fields.setdefault("date", "05-11-2026")
    return BookingCreate(work_id=work_id, technician_id=technician_id, **fields)


class BookingLedgerTests(DispatchTestBase):
    def test_booking_takes_open_work_and_writes_ledger_row(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id)

        with self.SessionLocal() as db:
            result = booking_ledger.book_technician(
                db,
                self._actor("CLIENT", client_id),
                _payload(work_id, tech_id, time="10:30", service_charge="350.00"),
            )

        self.assertEqual(result["work"]["status"], "taken")
        self.assertEqual(result["work"]["assignedTechnician"], tech_id)
        self.assertEqual(result["work"]["location"], "12 MG Road, Bengaluru")
        self.assertEqual(result["booking"]["status"], "taken")
        self.assertEqual(result["booking"]["date"], "2026-11-05")
        self.assertEqual(result["booking"]["serviceCharge"], 350.0)
        with self.SessionLocal() as db:
            booking = db.query(Booking).one()
            self.assertEqual(booking.work_id, UUID(work_id))
            titles = sorted(row.title for row in db.query(Notification).all())
            self.assertEqual(titles, ["New booking", "Technician booked"])
        self.assertIn((f"technician:{tech_id}", "booking"), [(item[0], item[1]) for item in self.published])

    def test_explicit_address_skips_geocoding(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id)
        with self.SessionLocal() as db:
            result = booking_ledger.book_technician(
                db, self._actor("CLIENT", client_id), _payload(work_id, tech_id, address="Flat 4, Lake View")
            )
        self.assertEqual(result["booking"]["address"], "Flat 4, Lake View")
        self.assertEqual(result["work"]["location"], "Flat 4, Lake View")

    def test_busy_technician_cannot_be_booked(self):
        client_id = self._make_client()
        other_client = self._make_client("Other Client")
        tech_id = self._make_technician()
        self._make_work(other_client, status="inprogress", assigned_technician_id=tech_id)
        work_id = self._make_work(client_id)

        with self.SessionLocal() as db:
            with self.assertRaises(ConflictError):
                booking_ledger.book_technician(db, self._actor("CLIENT", client_id), _payload(work_id, tech_id))

        self.assertEqual(self._work(work_id).status, "open")
        with self.SessionLocal() as db:
            self.assertEqual(db.query(Booking).count(), 0)

    def test_duplicate_active_booking_is_rejected(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        first = self._make_work(client_id, service_type="AC repair")
        second = self._make_work(client_id, service_type="ac repair")
        actor = self._actor("CLIENT", client_id)

        with self.SessionLocal() as db:
            booking_ledger.book_technician(db, actor, _payload(first, tech_id))
        with self.SessionLocal() as db:
            db.query(Booking).update({Booking.status: "dispatch"})
            db.commit()
        with self.SessionLocal() as db:
            with self.assertRaises(ConflictError) as ctx:
                booking_ledger.book_technician(db, actor, _payload(second, tech_id))

        self.assertIn("active booking", ctx.exception.detail)
        self.assertEqual(self._work(second).status, "open")

    def test_only_owner_can_book(self):
        owner = self._make_client()
        stranger = self._make_client("Stranger Client")
        tech_id = self._make_technician()
        work_id = self._make_work(owner)
        with self.SessionLocal() as db:
            with self.assertRaises(ForbiddenError):
                booking_ledger.book_technician(db, self._actor("CLIENT", stranger), _payload(work_id, tech_id))

    def test_booking_requires_date_and_coordinates(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id)
        actor = self._actor("CLIENT", client_id)
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidInputError):
                booking_ledger.book_technician(db, actor, _payload(work_id, tech_id, date=None))
            with self.assertRaises(InvalidInputError):
                booking_ledger.book_technician(db, actor, _payload(work_id, tech_id, coordinates=None))

    def test_booking_finished_work_is_invalid_state(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id, status="completed", assigned_technician_id=self._make_technician("Old Tech"))
        with self.SessionLocal() as db:
            with self.assertRaises(InvalidStateError) as ctx:
                booking_ledger.book_technician(db, self._actor("CLIENT", client_id), _payload(work_id, tech_id))
        self.assertEqual(ctx.exception.current_status, "completed")

    def test_booking_status_follows_the_work(self):
        client_id = self._make_client()
        tech_id = self._make_technician()
        work_id = self._make_work(client_id)
        with self.SessionLocal() as db:
            booking_ledger.book_technician(db, self._actor("CLIENT", client_id), _payload(work_id, tech_id))

        response = self.client.post(
            f"/api/technician/works/{work_id}/start",
            json={},
            headers=self._auth_headers("TECHNICIAN", sub=tech_id),
        )

        self.assertEqual(response.status_code, 200, response.text)
        with self.SessionLocal() as db:
            self.assertEqual(db.query(Booking).one().status, "inprogress")
