from datetime import date, timedelta
from decimal import Decimal

import pytest

from tests.conftest import auth_headers


PO_URL = "/api/v1/purchase-orders"
RECEIVING_URL = "/api/v1/invoice-receivings"
FAR_FUTURE = (date.today() + timedelta(days=720)).isoformat()


@pytest.fixture
def headers():
    return auth_headers()


async def create_po(client, seed, headers, **overrides):
    paracetamol, amoxicillin = seed["products"]
    body = {
        "principalId": seed["principal_id"],
        "poDate": "2024-01-15",
        "items": [
            {"productId": paracetamol, "quantity": 100, "unitPrice": "10.00"},
            {"productId": amoxicillin, "quantity": 50, "foc": 5, "unitPrice": "20.00"},
        ],
    }
    body.update(overrides)
    response = await client.post(PO_URL, json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["purchaseOrder"]


async def ordered_po(client, seed, headers):
    po = await create_po(client, seed, headers)
    for action in ("submit", "approve", "send"):
        response = await client.post(f"{PO_URL}/{po['id']}/{action}", headers=headers)
        assert response.status_code == 200, response.text
    return response.json()["purchaseOrder"]


async def receive(client, headers, po, lines, **overrides):
    body = {
        "purchaseOrderId": po["id"],
        "poVersion": po["version"],
        "invoiceNumber": "INV-1001",
        "invoiceDate": date.today().isoformat(),
        "receivedProducts": [
            {"productId": product_id, "receivedQty": qty, "batchNumber": f"B-{i}", "expiryDate": FAR_FUTURE}
            for i, (product_id, qty) in enumerate(lines)
        ],
        "documents": [{"name": "invoice.pdf", "documentType": "Invoice"}],
    }
    body.update(overrides)
    return await client.post(RECEIVING_URL, json=body, headers=headers)


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["checks"]["database"] == "connected"


async def test_requests_need_a_token(client, seed):
    response = await client.post(PO_URL, json={"principalId": seed["principal_id"], "items": []})
    assert response.status_code in (401, 403)


async def test_create_purchase_order(client, seed, headers):
    po = await create_po(client, seed, headers)

    assert po["poNumber"] == "PO/ACME/20240115/0001"
    assert po["status"] == "draft"
    assert po["version"] == 1
    assert po["toEmails"] == ["orders@acme.example.com"]
    assert Decimal(po["subTotal"]) == Decimal("1900.00")
    assert Decimal(po["grandTotal"]) == Decimal("1995.00")
    assert [item["lineNumber"] for item in po["items"]] == [1, 2]
    assert po["items"][0]["productName"] == "Paracetamol 500mg"
    assert [entry["action"] for entry in po["workflowHistory"]] == ["created"]

    second = await create_po(client, seed, headers)
    assert second["poNumber"] == "PO/ACME/20240115/0002"


async def test_create_rejects_bad_lines(client, seed, headers):
    paracetamol, _ = seed["products"]
    body = {
        "principalId": seed["principal_id"],
        "items": [
            {"productId": paracetamol, "quantity": 10, "foc": 11, "unitPrice": "1.00"},
            {"productId": paracetamol, "quantity": 10, "unitPrice": "1.00"},
        ],
    }
    response = await client.post(PO_URL, json=body, headers=headers)

    assert response.status_code == 400
    payload = response.json()
    assert payload["kind"] == "ValidationFailed"
    assert {(e["path"], e["kind"]) for e in payload["errors"]} == {
        ("items[0].foc", "InvalidFoc"),
        ("items[1].productId", "DuplicateProduct"),
    }


async def test_malformed_body_uses_error_shape(client, seed, headers):
    response = await client.post(PO_URL, json={"principalId": seed["principal_id"]}, headers=headers)

    assert response.status_code == 422
    assert response.json()["kind"] == "ValidationFailed"
    assert response.json()["errors"][0]["path"] == "items"


async def test_update_draft_and_version_check(client, seed, headers):
    po = await create_po(client, seed, headers)
    paracetamol, _ = seed["products"]

    response = await client.put(
        f"{PO_URL}/{po['id']}",
        json={
            "version": po["version"],
            "notes": "Deliver to cold store",
            "items": [{"productId": paracetamol, "quantity": 20, "unitPrice": "10.00"}],
        },
        headers=headers,
    )
    assert response.status_code == 200, response.text
    updated = response.json()["purchaseOrder"]
    assert updated["version"] == po["version"] + 1
    assert updated["notes"] == "Deliver to cold store"
    assert len(updated["items"]) == 1
    assert Decimal(updated["subTotal"]) == Decimal("200.00")
    assert updated["workflowHistory"][-1]["action"] == "updated"
    assert set(updated["workflowHistory"][-1]["changes"]["fields"]) == {"notes", "items"}

    stale = await client.put(f"{PO_URL}/{po['id']}", json={"version": po["version"], "notes": "x"}, headers=headers)
    assert stale.status_code == 409
    assert stale.json()["kind"] == "VersionConflict"


async def test_only_drafts_can_be_edited_or_deleted(client, seed, headers):
    po = await create_po(client, seed, headers)
    await client.post(f"{PO_URL}/{po['id']}/submit", headers=headers)

    response = await client.put(f"{PO_URL}/{po['id']}", json={"notes": "late"}, headers=headers)
    assert response.status_code == 409
    assert response.json()["kind"] == "InvalidTransition"

    response = await client.delete(f"{PO_URL}/{po['id']}", headers=headers)
    assert response.status_code == 409

    draft = await create_po(client, seed, headers)
    assert (await client.delete(f"{PO_URL}/{draft['id']}", headers=headers)).status_code == 204
    assert (await client.get(f"{PO_URL}/{draft['id']}", headers=headers)).status_code == 404


async def test_illegal_action_is_409(client, seed, headers):
    po = await create_po(client, seed, headers)

    response = await client.post(f"{PO_URL}/{po['id']}/approve", headers=headers)

    assert response.status_code == 409
    assert response.json()["kind"] == "InvalidTransition"
    assert "draft" in response.json()["message"]


async def test_reject_requires_remarks(client, seed, headers):
    po = await create_po(client, seed, headers)
    await client.post(f"{PO_URL}/{po['id']}/submit", headers=headers)

    response = await client.post(f"{PO_URL}/{po['id']}/reject", headers=headers)
    assert response.status_code == 400
    assert response.json()["kind"] == "RemarksRequired"

    response = await client.post(
        f"{PO_URL}/{po['id']}/actions",
        json={"action": "reject", "remarks": "Rates above contract"},
        headers=headers,
    )
    assert response.status_code == 200
    rejected = response.json()["purchaseOrder"]
    assert rejected["status"] == "rejected"
    assert rejected["workflowHistory"][-1]["remarks"] == "Rates above contract"


async def test_permission_denied(client, seed, headers):
    po = await create_po(client, seed, headers)
    await client.post(f"{PO_URL}/{po['id']}/submit", headers=headers)

    viewer = auth_headers(["purchase_orders:view"])
    response = await client.post(f"{PO_URL}/{po['id']}/approve", headers=viewer)
    assert response.status_code == 403
    assert response.json()["kind"] == "PermissionDenied"

    response = await client.get(f"{PO_URL}/{po['id']}/allowed-actions", headers=viewer)
    assert response.status_code == 200
    assert response.json()["allowedActions"] == []

    response = await client.get(f"{PO_URL}/{po['id']}/allowed-actions", headers=headers)
    assert response.json()["allowedActions"] == ["approve", "reject", "cancel"]


async def test_send_emails_the_principal(client, seed, headers, mailer):
    po = await ordered_po(client, seed, headers)

    assert po["status"] == "ordered"
    assert po["sentAt"] is not None
    assert len(mailer.sent) == 1
    assert mailer.sent[0].to == ["orders@acme.example.com"]
    assert mailer.sent[0].cc == ["accounts@acme.example.com"]


async def test_email_failure_is_a_warning(client, seed, headers, mailer):
    mailer.fail = True
    po = await create_po(client, seed, headers)
    await client.post(f"{PO_URL}/{po['id']}/submit", headers=headers)
    await client.post(f"{PO_URL}/{po['id']}/approve", headers=headers)

    response = await client.post(f"{PO_URL}/{po['id']}/send", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["purchaseOrder"]["status"] == "ordered"
    assert len(body["warnings"]) == 1
    assert "could not be delivered" in body["warnings"][0]
    assert "purchase_order.email_failed" in [event["kind"] for event in body["events"]]


async def test_receiving_requires_an_ordered_po(client, seed, headers):
    po = await create_po(client, seed, headers)
    paracetamol, _ = seed["products"]

    response = await receive(client, headers, po, [(paracetamol, 10)])
    assert response.status_code == 409
    assert response.json()["kind"] == "InvalidTransition"


async def test_receiving_rejects_excess_quantity(client, seed, headers):
    po = await ordered_po(client, seed, headers)
    paracetamol, _ = seed["products"]

    response = await receive(client, headers, po, [(paracetamol, 101)])

    assert response.status_code == 400
    errors = response.json()["errors"]
    assert errors[0]["path"] == "receivedProducts[0].receivedQty"
    assert errors[0]["kind"] == "QuantityOutOfRange"


async def test_stale_po_version_is_409(client, seed, headers):
    po = await ordered_po(client, seed, headers)
    paracetamol, _ = seed["products"]

    first = await receive(client, headers, po, [(paracetamol, 60)])
    assert first.status_code == 201

    # Still carrying the version from before the first receipt
    second = await receive(client, headers, po, [(paracetamol, 40)], invoiceNumber="INV-1002")
    assert second.status_code == 409
    assert second.json()["kind"] == "VersionConflict"


async def test_full_procurement_cycle(client, seed, headers):
    paracetamol, amoxicillin = seed["products"]
    po = await ordered_po(client, seed, headers)

    # Partial receipt
    response = await receive(client, headers, po, [(paracetamol, 60)])
    assert response.status_code == 201, response.text
    first = response.json()
    assert first["purchaseOrderStatus"] == "partial_received"
    assert first["reconciliation"]["totalReceived"] == 60
    assert first["reconciliation"]["totalBacklog"] == 90
    assert first["events"][0]["kind"] == "invoice_receiving.created"
    assert first["receiving"]["receivedProducts"][0]["remainingQuantity"] == 100
    assert Decimal(first["receiving"]["invoiceAmount"]) == Decimal("600.00")
    po_version = first["poVersion"]
    assert po_version > po["version"]

    # The rest, with the amoxicillin split over two batches
    response = await receive(
        client, headers, {"id": po["id"], "version": po_version},
        [(paracetamol, 40), (amoxicillin, 30), (amoxicillin, 20)],
        invoiceNumber="INV-1002",
    )
    assert response.status_code == 201, response.text
    second = response.json()
    assert second["purchaseOrderStatus"] == "received"
    assert second["reconciliation"]["fullyReceived"] is True
    assert second["warnings"] == []

    po_state = (await client.get(f"{PO_URL}/{po['id']}", headers=headers)).json()
    assert [item["receivedQty"] for item in po_state["items"]] == [100, 50]
    assert [item["backlogQty"] for item in po_state["items"]] == [0, 0]

    # Completion is blocked until QC has passed
    response = await client.post(f"{PO_URL}/{po['id']}/complete", headers=headers)
    assert response.status_code == 409

    first_id = first["receiving"]["id"]
    second_id = second["receiving"]["id"]

    response = await client.post(f"{RECEIVING_URL}/{first_id}/submit-qc", headers=headers)
    assert response.status_code == 200, response.text
    assert response.json()["purchaseOrderStatus"] == "qc_pending"
    assert (await client.post(f"{RECEIVING_URL}/{second_id}/submit-qc", headers=headers)).status_code == 200

    for receiving_id, line_count in ((first_id, 1), (second_id, 3)):
        for index in range(line_count):
            response = await client.put(
                f"{RECEIVING_URL}/{receiving_id}/products/{index}/qc",
                json={"qcStatus": "passed", "qcRemarks": "COA verified"},
                headers=headers,
            )
            assert response.status_code == 200, response.text

    response = await client.post(f"{RECEIVING_URL}/{first_id}/finalize-qc", headers=headers)
    assert response.status_code == 200
    assert response.json()["receiving"]["status"] == "completed"
    assert response.json()["purchaseOrderStatus"] == "qc_pending"

    response = await client.post(
        f"{RECEIVING_URL}/{second_id}/finalize-qc", json={"remarks": "All batches cleared"}, headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["purchaseOrderStatus"] == "completed"

    po_state = (await client.get(f"{PO_URL}/{po['id']}", headers=headers)).json()
    assert po_state["status"] == "completed"
    assert po_state["completedAt"] is not None
    assert [entry["action"] for entry in po_state["workflowHistory"]] == [
        "created", "submit", "approve", "send", "receive", "receive", "submit_to_qc", "complete",
    ]


async def test_failed_qc_drops_receipt_from_po(client, seed, headers):
    paracetamol, _ = seed["products"]
    po = await ordered_po(client, seed, headers)

    created = (await receive(client, headers, po, [(paracetamol, 60)])).json()
    receiving_id = created["receiving"]["id"]

    await client.post(f"{RECEIVING_URL}/{receiving_id}/submit-qc", headers=headers)
    await client.put(
        f"{RECEIVING_URL}/{receiving_id}/products/0/qc",
        json={"qcStatus": "failed", "qcRemarks": "Seal broken"},
        headers=headers,
    )
    response = await client.post(f"{RECEIVING_URL}/{receiving_id}/finalize-qc", headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["receiving"]["status"] == "rejected"
    assert body["reconciliation"]["totalReceived"] == 0
    assert body["purchaseOrderStatus"] == "ordered"


async def test_update_and_delete_draft_receiving(client, seed, headers):
    paracetamol, _ = seed["products"]
    po = await ordered_po(client, seed, headers)

    created = (await receive(client, headers, po, [(paracetamol, 60)])).json()
    receiving_id = created["receiving"]["id"]

    response = await client.put(
        f"{RECEIVING_URL}/{receiving_id}",
        json={
            "poVersion": created["poVersion"],
            "receivedProducts": [
                {"productId": paracetamol, "receivedQty": 100, "batchNumber": "B-9", "expiryDate": FAR_FUTURE},
            ],
        },
        headers=headers,
    )
    assert response.status_code == 200, response.text
    updated = response.json()
    # The receiving's own earlier quantity is not counted against it
    assert updated["receiving"]["receivedProducts"][0]["alreadyReceived"] == 0
    assert updated["reconciliation"]["totalReceived"] == 100
    assert updated["purchaseOrderStatus"] == "partial_received"

    response = await client.get(f"{RECEIVING_URL}/{receiving_id}", headers=headers)
    assert response.status_code == 200
    assert response.json()["totalReceivedQty"] == 100

    response = await client.delete(f"{RECEIVING_URL}/{receiving_id}", headers=headers)
    assert response.status_code == 200
    deleted = response.json()
    assert deleted["receiving"] is None
    assert deleted["reconciliation"]["totalReceived"] == 0
    assert deleted["purchaseOrderStatus"] == "ordered"
    assert (await client.get(f"{RECEIVING_URL}/{receiving_id}", headers=headers)).status_code == 404


@pytest.mark.parametrize("field", ["qcRequired", "receivedDate", "invoiceNumber", "zeroReceivingAcknowledged"])
async def test_update_receiving_rejects_null_for_required_fields(client, seed, headers, field):
    paracetamol, _ = seed["products"]
    po = await ordered_po(client, seed, headers)
    created = (await receive(client, headers, po, [(paracetamol, 60)])).json()

    response = await client.put(
        f"{RECEIVING_URL}/{created['receiving']['id']}",
        json={"poVersion": created["poVersion"], field: None},
        headers=headers,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["kind"] == "ValidationFailed"
    assert body["errors"][0]["path"] == field
    assert "not set to null" in body["errors"][0]["msg"]

    # The receiving is untouched
    response = await client.get(f"{RECEIVING_URL}/{created['receiving']['id']}", headers=headers)
    assert response.json()["totalReceivedQty"] == 60
