import os
import unittest

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test")
os.environ.setdefault("S3_SECRET_KEY", "test")
os.environ.setdefault("S3_BUCKET", "test")

from app.core.errors import InvalidStateError
from app.services.work_status import (
    ISSUE_STATUS,
    WorkStatus,
    ensure_transition,
    parse_status,
    requires_technician,
    sources_for,
    transition_allowed,
)


class WorkStatusTableTests(unittest.TestCase):
    def test_forward_path(self):
        path = ["open", "approved", "dispatch", "inprogress", "completed", "confirm"]
        for source, target in zip(path, path[1:]):
            self.assertTrue(transition_allowed(source, target), f"{source} -> {target}")

    def test_holds_only_from_inprogress_or_another_hold(self):
        for hold in ("onhold_parts", "escalated", "rescheduled"):
            self.assertTrue(transition_allowed("inprogress", hold))
            self.assertTrue(transition_allowed(hold, "inprogress"))
            self.assertFalse(transition_allowed("approved", hold))
            self.assertFalse(transition_allowed(hold, "completed"))

    def test_terminal_and_unknown_statuses(self):
        self.assertFalse(transition_allowed("confirm", "open"))
        self.assertFalse(transition_allowed("completed", "inprogress"))
        self.assertFalse(transition_allowed("open", "open"))
        self.assertFalse(transition_allowed("bogus", "open"))
        self.assertIsNone(parse_status("bogus"))
        self.assertEqual(parse_status(" Dispatch "), WorkStatus.DISPATCH)

    def test_sources_for(self):
        self.assertEqual(sources_for(WorkStatus.TAKEN), ["open", "unavailable"])
        self.assertEqual(sources_for(WorkStatus.COMPLETED), ["inprogress"])
        self.assertEqual(sources_for(WorkStatus.OPEN), [])

    def test_ensure_transition_reports_current_status(self):
        self.assertEqual(ensure_transition("open", "taken"), WorkStatus.TAKEN)
        with self.assertRaises(InvalidStateError) as ctx:
            ensure_transition("completed", "taken")
        self.assertEqual(ctx.exception.current_status, "completed")
        self.assertEqual(ctx.exception.status_code, 400)

    def test_issue_map_and_assignee_rule(self):
        self.assertEqual(ISSUE_STATUS["need_parts"], WorkStatus.ONHOLD_PARTS)
        self.assertEqual(ISSUE_STATUS["need_specialist"], WorkStatus.ESCALATED)
        self.assertEqual(ISSUE_STATUS["customer_unavailable"], WorkStatus.RESCHEDULED)
        self.assertFalse(requires_technician("open"))
        self.assertFalse(requires_technician("unavailable"))
        self.assertTrue(requires_technician("taken"))
        self.assertTrue(requires_technician("confirm"))


if __name__ == "__main__":
    unittest.main()
