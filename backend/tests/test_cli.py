# Overview: Pytest coverage for the bootstrap CLI commands.

from poscore.models import Account, Business, Till, User


class TestSystemInit:

    def test_init_creates_trading_business(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["system", "init", "--business", "Cli Shop", "--store", "High St"])
        assert result.exit_code == 0, result.output
        assert "DONE poscore initialized" in result.output

        db_session.expire_all()
        business = db_session.query(Business).filter_by(name="Cli Shop").one()
        assert db_session.query(Account).filter_by(business_id=business.id).count() > 0
        users = {u.username: u.role for u in db_session.query(User).filter_by(business_id=business.id)}
        assert users == {"owner": "OWNER", "manager": "MANAGER", "cashier": "CASHIER"}
        assert db_session.query(Till).count() == 1

    def test_init_is_repeatable(self, app, db_session):
        runner = app.test_cli_runner()
        runner.invoke(args=["system", "init", "--business", "Cli Shop"])
        result = runner.invoke(args=["system", "init", "--business", "Cli Shop"])
        assert result.exit_code == 0, result.output
        assert "Using existing business" in result.output
        db_session.expire_all()
        assert db_session.query(Business).filter_by(name="Cli Shop").count() == 1
        assert db_session.query(Till).count() == 1


class TestUserCommands:

    def test_create_and_list(self, app, db_session, business):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create", "--business-id", str(business.id), "--username", "nina",
            "--password", "Password123!", "--role", "manager", "--pin", "4321",
        ])
        assert result.exit_code == 0, result.output

        listed = runner.invoke(args=["users", "list", "--business-id", str(business.id)])
        assert "nina" in listed.output
