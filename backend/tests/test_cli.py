"""CLI command tests (flask system / users / commission / escrow)."""

from rentpay.extensions import db
from rentpay.models import SessionToken, User
from rentpay.states import PaymentKind

from conftest import backdate_escrow


def test_system_init_seeds_rate(app):
    result = app.test_cli_runner().invoke(args=["system", "init"])
    assert result.exit_code == 0
    assert "PASS Commission rate: 0.1" in result.output
    assert "DONE" in result.output


def test_users_create_and_token(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["users", "create", "--email", "Boss@RentPay.test", "--role", "admin"])
    assert result.exit_code == 0
    user = db.session.query(User).filter_by(email="boss@rentpay.test").one()
    assert user.role == "admin"

    result = runner.invoke(args=["users", "create", "--email", "boss@rentpay.test", "--role", "admin"])
    assert "FAIL" in result.output

    result = runner.invoke(args=["users", "token", "--email", "boss@rentpay.test"])
    assert result.exit_code == 0
    assert db.session.query(SessionToken).filter_by(user_id=user.id).count() == 1


def test_commission_set_requires_admin(app, admin, landlord):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "commission", "set", "--rate", "0.07", "--reason", "x", "--actor-email", landlord.email,
    ])
    assert "FAIL" in result.output

    result = runner.invoke(args=[
        "commission", "set", "--rate", "0.07", "--reason", "Q4", "--actor-email", admin.email,
    ])
    assert "PASS Commission rate is now 0.07" in result.output

    result = runner.invoke(args=["commission", "history"])
    assert "-> 0.070000" in result.output


def test_escrow_overdue(app, record_payment):
    assert "No overdue escrow" in app.test_cli_runner().invoke(args=["escrow", "overdue"]).output

    entry = backdate_escrow(record_payment(kind=PaymentKind.RENT), days=12)
    result = app.test_cli_runner().invoke(args=["escrow", "overdue"])
    assert f"Payment {entry.id}" in result.output
    assert "held 12d" in result.output
