import unittest

from sqlalchemy import select, update

from tool_lending.models.lending_models import BorrowRecord, BorrowStatus, Tool, ToolStatus
from tool_lending.services.borrow_service import borrow_tool
from tool_lending.services.errors import ConflictError
from tool_lending.services.tool_service import get_tool
from tool_lending.tests.support import LendingTestCase


class BorrowFlowTests(LendingTestCase):
    def test_borrow_and_return_drill(self):
        tool = self.create_tool("Drill")

        borrowed = self.borrow(tool["id"], name="Alice", location="Bay 3", purpose="shelving")
        self.assertEqual(borrowed.status_code, 200)
        body = borrowed.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["message"], "Tool borrowed successfully")
        record = body["borrowRecord"]
        self.assertEqual(record["toolId"], tool["id"])
        self.assertEqual(record["borrowerName"], "Alice")
        self.assertEqual(record["borrowerLocation"], "Bay 3")
        self.assertEqual(record["purpose"], "shelving")
        self.assertEqual(record["status"], "active")
        self.assertIsNone(record["returnedAt"])

        self.assertEqual(self.client.get(f"/api/tools/{tool['id']}").json()["tool"]["status"], "borrowed")
        active = self.client.get("/api/borrow-records/active").json()["records"]
        self.assertEqual([item["id"] for item in active], [record["id"]])
        self.assertEqual(active[0]["tool"]["name"], "Drill")

        returned = self.client.post("/api/return", json={"borrowRecordId": record["id"]})
        self.assertEqual(returned.status_code, 200)
        returned_record = returned.json()["borrowRecord"]
        self.assertEqual(returned_record["status"], "returned")
        self.assertIsNotNone(returned_record["returnedAt"])

        self.assertEqual(self.client.get(f"/api/tools/{tool['id']}").json()["tool"]["status"], "available")
        self.assertEqual(self.client.get("/api/borrow-records/active").json()["records"], [])
        self.assertEqual(len(self.client.get("/api/borrow-records").json()["records"]), 1)

        messages = [n["message"] for n in self.client.get("/api/notifications").json()["notifications"]]
        self.assertIn('Tool "Drill" borrowed by Alice for shelving', messages)
        self.assertIn('Tool "Drill" returned by Alice', messages)

    def test_borrow_record_aliases(self):
        tool = self.create_tool()
        borrowed = self.client.post(
            "/api/borrow-records",
            json={"toolId": tool["id"], "borrowerName": "Ben", "borrowerLocation": "Yard", "purpose": "fence"},
        )
        self.assertEqual(borrowed.status_code, 200)
        record_id = borrowed.json()["borrowRecord"]["id"]

        returned = self.client.post("/api/borrow-records/return", json={"borrowRecordId": record_id})
        self.assertEqual(returned.status_code, 200)
        self.assertEqual(returned.json()["borrowRecord"]["status"], "returned")

    def test_borrow_requires_all_fields(self):
        tool = self.create_tool()
        payloads = [
            {},
            {"toolId": tool["id"], "borrowerName": "Alice", "borrowerLocation": "Bay 3"},
            {"toolId": tool["id"], "borrowerName": "  ", "borrowerLocation": "Bay 3", "purpose": "x"},
        ]
        for payload in payloads:
            response = self.client.post("/api/borrow", json=payload)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(
                response.json()["message"],
                "All fields are required: toolId, borrowerName, borrowerLocation, purpose",
            )

    def test_borrow_unknown_tool(self):
        response = self.borrow("zzzzzz")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"success": False, "message": "Tool not found"})

    def test_second_borrow_is_rejected(self):
        tool = self.create_tool()
        self.assertEqual(self.borrow(tool["id"], name="Alice").status_code, 200)

        second = self.borrow(tool["id"], name="Bob")
        self.assertEqual(second.status_code, 400)
        self.assertEqual(second.json()["message"], "Tool is currently borrowed")

        active = self.client.get("/api/borrow-records/active").json()["records"]
        self.assertEqual(len(active), 1)
        self.assertEqual(active[0]["borrowerName"], "Alice")

    def test_stale_session_cannot_double_borrow(self):
        tool = self.create_tool()
        stale = self.SessionLocal()
        fresh = self.SessionLocal()
        try:
            stale_tool = get_tool(stale, tool["id"])
            self.assertEqual(stale_tool.status, ToolStatus.AVAILABLE)

            borrow_tool(fresh, tool["id"], "Bob", "Bay 1", "framing")

            # the stale session still believes the tool is available
            self.assertEqual(stale_tool.status, ToolStatus.AVAILABLE)
            with self.assertRaises(ConflictError):
                borrow_tool(stale, tool["id"], "Carol", "Bay 2", "decking")
        finally:
            stale.close()
            fresh.close()

        with self.SessionLocal() as db:
            active = db.execute(
                select(BorrowRecord).where(BorrowRecord.status == BorrowStatus.ACTIVE)
            ).scalars().all()
            self.assertEqual([record.borrower_name for record in active], ["Bob"])
            self.assertEqual(db.get(Tool, tool["id"]).status, ToolStatus.BORROWED)

    def test_active_record_index_blocks_second_active_record(self):
        tool = self.create_tool()
        self.assertEqual(self.borrow(tool["id"], name="Alice").status_code, 200)
        with self.SessionLocal() as db:
            db.execute(update(Tool).where(Tool.id == tool["id"]).values(status=ToolStatus.AVAILABLE))
            db.commit()

        response = self.borrow(tool["id"], name="Bob")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Tool already has an active borrow record")

        with self.SessionLocal() as db:
            # the failed borrow rolled back its status change too
            self.assertEqual(db.get(Tool, tool["id"]).status, ToolStatus.AVAILABLE)
            active = db.execute(
                select(BorrowRecord).where(BorrowRecord.status == BorrowStatus.ACTIVE)
            ).scalars().all()
            self.assertEqual(len(active), 1)

    def test_double_return_is_rejected(self):
        tool = self.create_tool()
        record = self.borrow(tool["id"]).json()["borrowRecord"]

        first = self.client.post("/api/return", json={"borrowRecordId": record["id"]})
        self.assertEqual(first.status_code, 200)

        second = self.client.post("/api/return", json={"borrowRecordId": record["id"]})
        self.assertEqual(second.status_code, 404)
        self.assertEqual(second.json(), {"success": False, "message": "Active borrow record not found"})

        return_notes = [
            n for n in self.client.get("/api/notifications").json()["notifications"] if n["type"] == "return"
        ]
        self.assertEqual(len(return_notes), 1)

    def test_return_requires_record_id(self):
        for payload in ({}, {"borrowRecordId": ""}, {"borrowRecordId": "   "}):
            response = self.client.post("/api/return", json=payload)
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json()["message"], "Borrow record ID is required")

    def test_return_unknown_record(self):
        response = self.client.post("/api/return", json={"borrowRecordId": "does-not-exist"})
        self.assertEqual(response.status_code, 404)

    def test_return_from_maintenance_makes_tool_available(self):
        tool = self.create_tool()
        record = self.borrow(tool["id"]).json()["borrowRecord"]

        to_maintenance = self.client.put(f"/api/tools/{tool['id']}", json={"status": "maintenance"})
        self.assertEqual(to_maintenance.status_code, 200)
        self.assertEqual(to_maintenance.json()["tool"]["status"], "maintenance")

        # an active record keeps maintenance from being cleared by edit
        cleared = self.client.put(f"/api/tools/{tool['id']}", json={"status": "available"})
        self.assertEqual(cleared.status_code, 400)

        returned = self.client.post("/api/return", json={"borrowRecordId": record["id"]})
        self.assertEqual(returned.status_code, 200)
        self.assertEqual(self.client.get(f"/api/tools/{tool['id']}").json()["tool"]["status"], "available")

    def test_maintenance_back_to_borrowed_with_active_record(self):
        tool = self.create_tool()
        self.borrow(tool["id"])
        self.client.put(f"/api/tools/{tool['id']}", json={"status": "maintenance"})

        response = self.client.put(f"/api/tools/{tool['id']}", json={"status": "borrowed"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["tool"]["status"], "borrowed")


if __name__ == "__main__":
    unittest.main()
