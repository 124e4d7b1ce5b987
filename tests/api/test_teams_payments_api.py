"""
API tests for team and payment endpoints.
"""

from registrations_service.models.registration import RegistrationStatus


class TestTeamEndpoints:

    def test_create_and_join(self, client, team_event, attendee):
        client.current["actor"] = attendee("a")
        created = client.post(f"/api/v1/events/{team_event}/teams", json={"team_name": "Foo"})
        invite_code = created.json()["invite_code"]

        client.current["actor"] = attendee("b")
        joined = client.post(f"/api/v1/events/{team_event}/teams/join", json={"invite_code": invite_code})

        assert created.status_code == 201
        assert joined.status_code == 200
        assert [m["user_id"] for m in joined.json()["members"]] == ["user-a", "user-b"]

    def test_team_full(self, client, team_event, attendee):
        client.current["actor"] = attendee("a")
        invite_code = client.post(f"/api/v1/events/{team_event}/teams", json={"team_name": "Foo"}).json()["invite_code"]

        statuses = []
        for key in ("b", "c", "d"):
            client.current["actor"] = attendee(key)
            response = client.post(f"/api/v1/events/{team_event}/teams/join", json={"invite_code": invite_code})
            statuses.append(response.status_code)

        assert statuses == [200, 200, 409]

    def test_blank_team_name(self, client, team_event, attendee):
        client.current["actor"] = attendee("a")

        response = client.post(f"/api/v1/events/{team_event}/teams", json={"team_name": "  "})

        assert response.status_code == 422
        assert response.json()["error_code"] == "INVALID_TEAM_NAME"

    def test_unknown_invite_code(self, client, team_event, attendee):
        client.current["actor"] = attendee("b")

        response = client.post(f"/api/v1/events/{team_event}/teams/join", json={"invite_code": "NOPE42"})

        assert response.status_code == 404
        assert response.json()["error_code"] == "TEAM_NOT_FOUND"

    def test_outsiders_do_not_see_invite_code(self, client, team_event, attendee, organizer):
        client.current["actor"] = attendee("a")
        team_id = client.post(f"/api/v1/events/{team_event}/teams", json={"team_name": "Foo"}).json()["id"]

        client.current["actor"] = attendee("z")
        outsider_view = client.get(f"/api/v1/teams/{team_id}").json()
        listed = client.get(f"/api/v1/events/{team_event}/teams").json()
        client.current["actor"] = organizer
        organizer_view = client.get(f"/api/v1/teams/{team_id}").json()

        assert "invite_code" not in outsider_view
        assert "email" not in outsider_view["members"][0]
        assert "invite_code" not in listed[0]
        assert len(organizer_view["invite_code"]) == 6
        assert organizer_view["members"][0]["email"] == "a@example.com"


class TestPaymentEndpoints:

    def test_order_then_gateway_callback(self, client, paid_event, register, attendee, organizer, gateway, run):
        a = run(register(paid_event, attendee("a"), promo_code="HALF"))
        client.current["actor"] = organizer
        assert client.post(f"/api/v1/registrations/{a.id}/approve").json()["status"] == "awaiting_payment"

        client.current["actor"] = attendee("a")
        order = client.post(f"/api/v1/registrations/{a.id}/payment-order").json()

        client.current["actor"] = gateway
        completed = client.post(f"/api/v1/payments/{a.id}/complete", json={
            "transaction_id": "pay_123", "order_id": "order_123", "amount": "50.00", "currency": "INR",
        })

        assert order["requires_payment"] is True
        assert order["amount_minor"] == 5000
        assert order["receipt"] == f"receipt_{a.id}"
        assert completed.status_code == 200
        assert completed.json()["status"] == "approved"
        assert completed.json()["payment_details"]["transaction_id"] == "pay_123"

    def test_attendee_cannot_call_gateway_callback(self, client, create_event, insert_registration, attendee):
        event_id = create_event()
        registration_id = insert_registration(event_id, "a", status=RegistrationStatus.AWAITING_PAYMENT)
        client.current["actor"] = attendee("a")

        response = client.post(f"/api/v1/payments/{registration_id}/complete", json={
            "transaction_id": "pay_123", "amount": "0",
        })

        assert response.status_code == 403

    def test_order_before_approval(self, client, paid_event, register, attendee, run):
        a = run(register(paid_event, attendee("a")))
        client.current["actor"] = attendee("a")

        response = client.post(f"/api/v1/registrations/{a.id}/payment-order")

        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_TRANSITION"

    def test_zero_price_order(self, client, paid_event, insert_registration, attendee):
        registration_id = insert_registration(
            paid_event, "a", status=RegistrationStatus.AWAITING_PAYMENT, promo_code="FREE"
        )
        client.current["actor"] = attendee("a")

        data = client.post(f"/api/v1/registrations/{registration_id}/payment-order").json()

        assert data["requires_payment"] is False
        assert data["registration"]["status"] == "approved"
