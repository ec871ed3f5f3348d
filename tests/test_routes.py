# tests/test_routes.py
"""
HTTP surface through the Flask test client.
"""
import json
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from blueprints.payments import sign_payload, SIGNATURE_HEADER
from extensions import db
from models import (
    User, Plan, Investment, InvestmentStatus, Transaction, TransactionType, TransactionStatus, WebhookEvent,
)
from utils import utcnow


def _signed_post(client, provider, payload, secret="test-webhook-secret"):
    body = json.dumps(payload).encode()
    return client.post(
        f"/api/payments/callback/{provider}",
        data=body,
        content_type="application/json",
        headers={SIGNATURE_HEADER: sign_payload(secret, body)},
    )


class TestAuthRoutes:

    def test_signup_with_referral_code(self, client, make_user):
        sponsor = make_user(username="sponsor")
        response = client.post("/api/signup", json={
            "username": "newbie",
            "firstName": "New",
            "lastName": "Member",
            "email": "Newbie@Example.com",
            "password": "secret123",
            "referralCode": sponsor.referral_code.lower(),
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body["user"]["sponsorId"] == sponsor.id
        assert body["user"]["email"] == "newbie@example.com"
        assert body["user"]["walletBalance"] == "0.00"
        assert len(body["user"]["referralCode"]) == 8

    def test_signup_unknown_referral_code(self, client):
        response = client.post("/api/signup", json={
            "username": "lost", "firstName": "L", "lastName": "T",
            "email": "lost@example.com", "password": "secret123", "referralCode": "NOPE0000",
        })
        assert response.status_code == 400
        assert response.get_json()["error"] == "Sponsor does not exist"

    def test_signup_duplicate_email(self, client, make_user):
        make_user(username="taken")
        response = client.post("/api/signup", json={
            "username": "other", "firstName": "O", "lastName": "T",
            "email": "taken@example.com", "password": "secret123",
        })
        assert response.status_code == 400

    def test_signup_requires_fields(self, client):
        assert client.post("/api/signup", json={"username": "x"}).status_code == 400

    def test_login_me_logout(self, client, make_user):
        user = make_user()
        assert client.get("/api/me").get_json() == {"authenticated": False}

        response = client.post("/api/login", json={"username": user.username, "password": "secret123"})
        assert response.status_code == 200
        assert client.get("/api/me").get_json()["user"]["id"] == user.id

        client.post("/api/logout")
        assert client.get("/api/me").get_json() == {"authenticated": False}

    def test_login_wrong_password(self, client, make_user):
        user = make_user()
        response = client.post("/api/login", json={"username": user.username, "password": "nope"})
        assert response.status_code == 401


class TestUserRoutes:

    def test_requires_session(self, client):
        assert client.get("/api/user/dashboard").status_code == 401
        assert client.get("/api/user/genealogy").status_code == 401

    def test_plans_are_public(self, client, plan):
        body = client.get("/api/plans").get_json()
        assert [p["name"] for p in body["plans"]] == ["Starter"]

    def test_purchase_and_dashboard(self, client, login, make_chain, plan):
        sponsor, investor = make_chain(2)
        investor.wallet.balance = Decimal("500.00")
        db.session.commit()
        login(investor)

        response = client.post("/api/user/investments", json={"planId": plan.id, "amount": "500.00"})
        assert response.status_code == 201

        stats = client.get("/api/user/dashboard").get_json()["stats"]
        assert stats["activeInvestments"] == 1
        assert stats["totalInvested"] == "500.00"
        assert stats["walletBalance"] == "0.00"

        investments = client.get("/api/user/investments").get_json()["investments"]
        assert investments[0]["plan"]["name"] == "Starter"

    def test_purchase_errors_map_to_status(self, client, login, make_user, plan):
        user = make_user(balance="50.00")
        login(user)

        assert client.post("/api/user/investments", json={"planId": plan.id, "amount": "200.00"}).status_code == 400
        assert client.post("/api/user/investments", json={"planId": 999, "amount": "200.00"}).status_code == 404
        assert client.post("/api/user/investments", json={"planId": plan.id, "amount": "abc"}).status_code == 400

    def test_commissions_listing(self, client, login, make_chain, plan):
        sponsor, investor = make_chain(2)
        investor.wallet.balance = Decimal("1000.00")
        db.session.commit()
        login(investor)
        client.post("/api/user/investments", json={"planId": plan.id, "amount": "1000.00"})
        client.post("/api/logout")

        login(sponsor)
        body = client.get("/api/user/commissions").get_json()
        assert body["total"] == "100.00"
        assert body["totalsByLevel"] == {"1": "100.00"}

    def test_genealogy(self, client, login, make_chain):
        users = make_chain(8)
        login(users[0])

        tree = client.get("/api/user/genealogy?depth=2").get_json()["tree"]
        assert tree["id"] == users[0].id
        assert tree["children"][0]["children"][0]["level"] == 2
        assert tree["children"][0]["children"][0]["children"] == []

        assert client.get("/api/user/genealogy?depth=-1").status_code == 400
        clamped = client.get("/api/user/genealogy?depth=50").get_json()
        assert clamped["depth"] == 5

    def test_genealogy_layout(self, client, login, make_chain):
        users = make_chain(3)
        login(users[0])

        body = client.get("/api/user/genealogy/layout?width=300&height=300").get_json()
        assert [n["id"] for n in body["nodes"]] == [u.id for u in users]
        assert len(body["edges"]) == 2
        assert client.get("/api/user/genealogy/layout?width=0").status_code == 400
        assert client.get("/api/user/genealogy/layout?width=nan").status_code == 400
        assert client.get("/api/user/genealogy/layout?height=inf").status_code == 400

    def test_network(self, client, login, make_chain):
        users = make_chain(3)
        login(users[1])
        network = client.get("/api/user/network").get_json()["network"]
        assert network["sponsor_id"] == users[0].id
        assert network["direct_recruits_count"] == 1

    def test_withdrawal_request(self, client, login, make_user):
        user = make_user(balance="100.00")
        login(user)

        response = client.post("/api/user/withdrawals", json={"amount": "25.00", "destination": "TAddr"})
        assert response.status_code == 201
        assert response.get_json()["withdrawal"]["status"] == "pending"

        history = client.get("/api/user/withdrawals").get_json()
        assert history["pendingTotal"] == "25.00"

    def test_referrals_grouped_by_level(self, client, login, make_user, make_investment):
        root = make_user()
        left = make_user(sponsor=root)
        right = make_user(sponsor=root)
        grandchild = make_user(sponsor=left)
        make_investment(grandchild)
        login(root)

        body = client.get("/api/user/referrals").get_json()
        assert body["total"] == 3
        assert [m["id"] for m in body["referrals"]["1"]] == [left.id, right.id]
        assert body["referrals"]["2"][0]["id"] == grandchild.id
        assert body["referrals"]["2"][0]["sponsorId"] == left.id
        assert body["referrals"]["2"][0]["isActive"] is True

        shallow = client.get("/api/user/referrals?depth=1").get_json()
        assert list(shallow["referrals"]) == ["1"]

    def test_update_profile(self, client, login, make_user):
        user = make_user()
        login(user)

        response = client.put("/api/user/profile", json={"firstName": "Ada", "country": "Kenya", "phone": "+254700000001"})
        assert response.status_code == 200
        body = response.get_json()["user"]
        assert body["firstName"] == "Ada"
        assert body["country"] == "Kenya"
        assert body["username"] == user.username

        assert client.put("/api/user/profile", json={"phone": "12"}).status_code == 400
        assert client.put("/api/user/profile", json={"lastName": " "}).status_code == 400

    def test_change_password(self, client, login, make_user):
        user = make_user()
        login(user)

        wrong = client.put("/api/user/password", json={"currentPassword": "nope", "newPassword": "another1"})
        assert wrong.status_code == 400
        short = client.put("/api/user/password", json={"currentPassword": "secret123", "newPassword": "abc"})
        assert short.status_code == 400

        changed = client.put("/api/user/password", json={"currentPassword": "secret123", "newPassword": "another1"})
        assert changed.status_code == 200
        client.post("/api/logout")

        assert client.post("/api/login", json={"username": user.username, "password": "secret123"}).status_code == 401
        login(user, password="another1")


class TestPaymentRoutes:

    def test_methods(self, client):
        body = client.get("/api/payments/methods").get_json()
        assert {m["id"] for m in body["methods"]} == {"paypal", "pesapal", "coinbase", "crypto"}

    def test_manual_deposit_stays_pending(self, client, login, make_user, wallet_balance):
        user = make_user()
        login(user)

        response = client.post("/api/payments/deposits", json={"amount": "100.00", "proof": "0xabc"})
        assert response.status_code == 201
        assert response.get_json()["deposit"]["status"] == "pending"
        assert wallet_balance(user) == Decimal("0.00")

    def test_manual_deposit_below_minimum(self, client, login, make_user):
        login(make_user())
        response = client.post("/api/payments/deposits", json={"amount": "5.00", "proof": "0xabc"})
        assert response.status_code == 400

    def test_signed_callback_credits_once(self, client, make_user, wallet_balance):
        user = make_user()
        payload = {"reference": "PP-900", "userId": user.id, "amount": "120.00", "status": "completed"}

        first = _signed_post(client, "paypal", payload)
        second = _signed_post(client, "paypal", payload)

        assert first.status_code == 200
        assert second.get_json()["duplicate"] is True
        assert wallet_balance(user) == Decimal("120.00")
        assert WebhookEvent.query.filter_by(reference="PP-900").count() == 1

    def test_bad_signature_rejected(self, client, make_user, wallet_balance):
        user = make_user()
        payload = {"reference": "PP-901", "userId": user.id, "amount": "120.00", "status": "completed"}

        response = _signed_post(client, "paypal", payload, secret="wrong")
        assert response.status_code == 401
        assert wallet_balance(user) == Decimal("0.00")

    def test_unknown_provider(self, client):
        assert _signed_post(client, "venmo", {"reference": "x"}).status_code == 404

    def test_failed_gateway_status_recorded(self, client, make_user, wallet_balance):
        user = make_user()
        payload = {"reference": "PS-1", "userId": user.id, "amount": "120.00", "status": "failed"}

        assert _signed_post(client, "pesapal", payload).status_code == 200
        event = WebhookEvent.query.filter_by(reference="PS-1").one()
        assert event.processed and event.status == "failed"
        assert wallet_balance(user) == Decimal("0.00")

    def test_failed_event_can_be_retried(self, client, make_user, wallet_balance):
        user = make_user()
        failed = {"reference": "PS-2", "userId": user.id, "amount": "120.00", "status": "failed"}
        completed = dict(failed, status="completed")

        assert _signed_post(client, "pesapal", failed).status_code == 200
        assert _signed_post(client, "pesapal", completed).status_code == 200

        event = WebhookEvent.query.filter_by(reference="PS-2").one()
        assert event.status == "success"
        assert wallet_balance(user) == Decimal("120.00")

    def test_event_in_progress_is_not_processed_twice(self, client, make_user, wallet_balance):
        user = make_user()
        db.session.add(WebhookEvent(provider="paypal", reference="PP-950", payload={}, status="pending"))
        db.session.commit()

        payload = {"reference": "PP-950", "userId": user.id, "amount": "120.00", "status": "completed"}
        response = _signed_post(client, "paypal", payload)

        assert response.get_json()["duplicate"] is True
        assert wallet_balance(user) == Decimal("0.00")

    def test_one_event_per_provider_reference(self, app):
        db.session.add(WebhookEvent(provider="paypal", reference="PP-951", payload={}))
        db.session.commit()
        db.session.add(WebhookEvent(provider="paypal", reference="PP-951", payload={}))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()

    def test_callback_cannot_resettle_manual_deposit(self, client, make_user, wallet_balance):
        user = make_user()
        deposit = Transaction(
            wallet_id=user.wallet.id,
            user_id=user.id,
            type=TransactionType.DEPOSIT.value,
            amount=Decimal("5000.00"),
            status=TransactionStatus.PENDING.value,
            payment_method="crypto",
            reference="DEP-X",
        )
        db.session.add(deposit)
        db.session.commit()

        for amount in ("1.00", "5000.00"):
            payload = {"reference": "DEP-X", "userId": user.id, "amount": amount, "status": "completed"}
            response = _signed_post(client, "paypal", payload)
            assert response.status_code == 400

        assert db.session.get(Transaction, deposit.id).status == TransactionStatus.PENDING.value
        assert wallet_balance(user) == Decimal("0.00")


class TestAdminRoutes:

    def test_requires_admin(self, client, login, make_user):
        login(make_user())
        assert client.get("/admin/data").status_code == 403

    def test_dashboard_data(self, client, login, make_user):
        login(make_user(role="admin"))
        body = client.get("/admin/data").get_json()
        assert body["total_users"] == 1
        assert body["commission_schedule"]["max_level"] == 5

    def test_plan_create_and_toggle(self, client, login, make_user):
        login(make_user(role="admin"))
        response = client.post("/admin/plans", json={
            "name": "Gold", "monthlyRate": "12.00", "minDeposit": "1000", "maxDeposit": "9999",
            "durationDays": 60,
        })
        assert response.status_code == 201
        plan_id = response.get_json()["plan"]["id"]

        toggled = client.post(f"/admin/plans/{plan_id}/toggle").get_json()["plan"]
        assert toggled["isActive"] is False
        assert client.get("/api/plans").get_json()["plans"] == []

    def test_approve_deposit(self, client, login, make_user, wallet_balance):
        user = make_user()
        login(user)
        deposit_id = client.post(
            "/api/payments/deposits", json={"amount": "100.00", "proof": "0xabc"}
        ).get_json()["deposit"]["id"]
        client.post("/api/logout")

        login(make_user(role="admin"))
        response = client.post(f"/admin/deposits/{deposit_id}/approve", json={})
        assert response.status_code == 200
        assert wallet_balance(user) == Decimal("100.00")

        assert client.post(f"/admin/deposits/{deposit_id}/approve", json={}).status_code == 409

    def test_reject_withdrawal(self, client, login, make_user, wallet_balance):
        user = make_user(balance="100.00")
        login(user)
        withdrawal_id = client.post(
            "/api/user/withdrawals", json={"amount": "30.00", "destination": "TAddr"}
        ).get_json()["withdrawal"]["id"]
        client.post("/api/logout")

        login(make_user(role="admin"))
        response = client.post(f"/admin/withdrawals/{withdrawal_id}/reject", json={"notes": "bad"})
        assert response.status_code == 200
        assert wallet_balance(user) == Decimal("100.00")
        assert db.session.get(Transaction, withdrawal_id).status == TransactionStatus.CANCELLED.value

    def test_terminate_and_process_matured(self, client, login, make_user, make_investment):
        owner = make_user()
        active = make_investment(owner)
        due = make_investment(owner, start=utcnow() - timedelta(days=40), days=30)
        login(make_user(role="admin"))

        response = client.post(f"/admin/investments/{active.id}/terminate", json={"reason": "chargeback"})
        assert response.status_code == 200
        assert response.get_json()["investment"]["status"] == InvestmentStatus.TERMINATED.value

        again = client.post(f"/admin/investments/{active.id}/terminate", json={"reason": "again"})
        assert again.status_code == 409

        matured = client.post("/admin/investments/process-matured").get_json()
        assert matured["completed"] == [due.id]
        assert db.session.get(Investment, due.id).status == InvestmentStatus.COMPLETED.value

    def test_list_users(self, client, login, make_user):
        make_user(username="alice")
        make_user(username="bob")
        login(make_user(role="admin"))

        body = client.get("/admin/users").get_json()
        assert body["total"] == 3
        assert all("passwordHash" not in u and "password_hash" not in u for u in body["users"])

        found = client.get("/admin/users?search=ali").get_json()
        assert [u["username"] for u in found["users"]] == ["alice"]

    def test_toggle_user_status(self, app, client, login, make_user):
        member = make_user()
        member_client = app.test_client()
        member_client.post("/api/login", json={"username": member.username, "password": "secret123"})
        admin = make_user(role="admin")
        login(admin)

        response = client.put(f"/admin/users/{member.id}/toggle-status", json={"active": False})
        assert response.status_code == 200
        assert response.get_json()["user"]["isActive"] is False

        assert member_client.get("/api/user/dashboard").status_code == 403
        assert member_client.post(
            "/api/login", json={"username": member.username, "password": "secret123"}
        ).status_code == 403

        signup = client.post("/api/signup", json={
            "username": "recruit", "firstName": "R", "lastName": "T", "email": "recruit@example.com",
            "password": "secret123", "referralCode": member.referral_code,
        })
        assert signup.status_code == 400
        assert signup.get_json()["error"] == "Sponsor account is inactive"

        assert client.put(f"/admin/users/{member.id}/toggle-status", json={"active": "no"}).status_code == 400
        assert client.put(f"/admin/users/{admin.id}/toggle-status", json={"active": False}).status_code == 409
        assert client.put("/admin/users/999/toggle-status", json={"active": True}).status_code == 404

        assert client.put(f"/admin/users/{member.id}/toggle-status", json={"active": True}).status_code == 200
        assert db.session.get(User, member.id).is_active is True

    def test_update_plan(self, client, login, make_user, make_investment, plan):
        owner = make_user()
        running = make_investment(owner)
        login(make_user(role="admin"))

        response = client.put(f"/admin/plans/{plan.id}", json={"monthlyRate": "10.00", "maxDeposit": "8000"})
        assert response.status_code == 200
        updated = response.get_json()["plan"]
        assert updated["monthlyRate"] == "10.00"
        assert updated["maxDeposit"] == "8000.00"
        assert Decimal(str(db.session.get(Investment, running.id).monthly_rate)) == Decimal("8.00")

        assert client.put(f"/admin/plans/{plan.id}", json={"minDeposit": "9000"}).status_code == 400
        assert client.put(f"/admin/plans/{plan.id}", json={"durationDays": 0}).status_code == 400
        assert client.put("/admin/plans/999", json={"name": "Ghost"}).status_code == 404
        assert Decimal(str(db.session.get(Plan, plan.id).min_deposit)) == Decimal("100.00")

    def test_list_transactions(self, client, login, make_user):
        user = make_user(balance="100.00")
        login(user)
        client.post("/api/payments/deposits", json={"amount": "50.00", "proof": "0xabc"})
        client.post("/api/user/withdrawals", json={"amount": "20.00", "destination": "TAddr"})
        client.post("/api/logout")
        login(make_user(role="admin"))

        everything = client.get("/admin/transactions").get_json()["transactions"]
        assert {tx["type"] for tx in everything} == {"deposit", "withdrawal"}

        deposits = client.get("/admin/transactions/deposit?status=pending").get_json()["transactions"]
        assert [tx["amount"] for tx in deposits] == ["50.00"]

        assert client.get("/admin/transactions/bogus").status_code == 400
