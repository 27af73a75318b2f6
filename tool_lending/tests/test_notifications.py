import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update

from tool_lending.models.lending_models import BorrowRecord, Notification, NotificationType
from tool_lending.services.borrow_service import find_overdue_records, run_overdue_sweep
from tool_lending.tests.support import LendingTestCase


class NotificationTests(LendingTestCase):
    def _age_notifications(self):
        base = datetime(2026, 3, 1, tzinfo=timezone.utc)
        with self.SessionLocal() as db:
            ids = db.execute(select(Notification.id).order_by(Notification.message)).scalars().all()
            for offset, notification_id in enumerate(ids):
                db.execute(
                    update(Notification)
                    .where(Notification.id == notification_id)
                    .values(created_at=base + timedelta(minutes=offset))
                )
            db.commit()

    def test_list_notifications_newest_first_with_tool(self):
        tool = self.create_tool("Circular Saw")
        self.borrow(tool["id"], name="Dana", purpose="decking")
        self._age_notifications()

        response = self.client.get("/api/notifications")
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        notifications = body["notifications"]
        self.assertEqual(
            [n["message"] for n in notifications],
            [
                'Tool "Circular Saw" borrowed by Dana for decking',
                'New tool "Circular Saw" has been added to the system',
            ],
        )
        self.assertTrue(all(n["read"] is False for n in notifications))
        self.assertEqual(notifications[0]["tool"]["name"], "Circular Saw")
        self.assertIsNotNone(notifications[0]["borrowRecordId"])
        self.assertIsNone(notifications[1]["borrowRecordId"])

    def test_mark_read_is_idempotent(self):
        self.create_tool()
        notification = self.client.get("/api/notifications").json()["notifications"][0]

        first = self.client.patch(f"/api/notifications/{notification['id']}/read")
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json(), {"success": True, "message": "Notification marked as read"})

        again = self.client.put(f"/api/notifications/{notification['id']}/read")
        self.assertEqual(again.status_code, 200)
        self.assertTrue(again.json()["success"])

        listed = self.client.get("/api/notifications").json()["notifications"]
        self.assertTrue(listed[0]["read"])

    def test_mark_read_unknown_notification(self):
        response = self.client.patch("/api/notifications/missing/read")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"success": False, "message": "Notification not found"})

    def test_overdue_sweep_flags_each_record_once(self):
        tool = self.create_tool("Angle Grinder")
        record = self.borrow(tool["id"], name="Eve").json()["borrowRecord"]
        fresh_tool = self.create_tool("Socket Set")
        self.borrow(fresh_tool["id"], name="Finn")

        now = datetime.now(timezone.utc)
        with self.SessionLocal() as db:
            db.execute(
                update(BorrowRecord)
                .where(BorrowRecord.id == record["id"])
                .values(borrowed_at=now - timedelta(days=10))
            )
            db.commit()

        with self.SessionLocal() as db:
            overdue = find_overdue_records(db, now - timedelta(days=7))
            self.assertEqual([found.id for found, _tool in overdue], [record["id"]])

            self.assertEqual(run_overdue_sweep(db, timedelta(days=7), now=now), 1)
            self.assertEqual(run_overdue_sweep(db, timedelta(days=7), now=now), 0)

            flagged = db.execute(
                select(Notification).where(Notification.type == NotificationType.OVERDUE)
            ).scalars().all()
            self.assertEqual(len(flagged), 1)
            self.assertEqual(flagged[0].borrow_record_id, record["id"])
            self.assertEqual(flagged[0].message, 'Tool "Angle Grinder" borrowed by Eve is overdue')

    def test_overdue_sweep_endpoint_skips_returned_records(self):
        tool = self.create_tool()
        late = self.borrow(tool["id"]).json()["borrowRecord"]
        other = self.create_tool("Socket Set")
        returned = self.borrow(other["id"], name="Gus").json()["borrowRecord"]
        self.client.post("/api/return", json={"borrowRecordId": returned["id"]})

        long_ago = datetime.now(timezone.utc) - timedelta(days=30)
        with self.SessionLocal() as db:
            db.execute(update(BorrowRecord).values(borrowed_at=long_ago))
            db.commit()

        first = self.client.post("/api/notifications/run")
        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["created"], 1)
        self.assertTrue(first.json()["success"])

        second = self.client.post("/api/notifications/run")
        self.assertEqual(second.json()["created"], 0)

        overdue = [
            n for n in self.client.get("/api/notifications").json()["notifications"] if n["type"] == "overdue"
        ]
        self.assertEqual([n["borrowRecordId"] for n in overdue], [late["id"]])


if __name__ == "__main__":
    unittest.main()
