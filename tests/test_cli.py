"""
Unit tests for the operator CLI entry point and exit codes.
"""
import json

from grantkeeper import cli
from grantkeeper.errors import GrantNotFoundError, ProviderError
from grantkeeper.models.grant import Grant, GrantStatus


def test_definition_prints_state_machine(capsys):
    code = cli.main(["definition", "--function-arn", "arn:aws:lambda:us-east-1:123456789012:function:grants"])

    assert code == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out)["StartAt"] == "Wait for Window Start"


def test_definition_rejects_non_lambda_arn():
    code = cli.main(["definition", "--function-arn", "arn:aws:states:us-east-1:123456789012:stateMachine:x"])

    assert code == cli.EXIT_INVALID


class _FakeGranter:
    def __init__(self, error=None):
        self.error = error

    def describe_grant(self, ctx, grant_id):
        if self.error:
            raise self.error
        return Grant(id=grant_id, provider="vault", subject="alice@example.com", status=GrantStatus.ACTIVE)

    def revoke_grant(self, ctx, grant_id, revoker):
        if self.error:
            raise self.error
        return Grant(id=grant_id, provider="vault", subject="alice@example.com", status=GrantStatus.REVOKED)


def _patch_stack(monkeypatch, tmp_path, granter):
    config_file = tmp_path / "grantkeeper.yaml"
    config_file.write_text("providers:\n  vault:\n    uses: testvault\n    with:\n      apiUrl: https://vault.example.com\n")
    monkeypatch.setattr(cli, "_granter", lambda config, registry: granter)
    return str(config_file)


def test_describe_prints_grant(monkeypatch, tmp_path, capsys):
    config = _patch_stack(monkeypatch, tmp_path, _FakeGranter())

    code = cli.main(["--config", config, "describe", "gra_abc"])

    assert code == cli.EXIT_OK
    out = capsys.readouterr().out
    assert "gra_abc" in out
    assert "ACTIVE" in out


def test_revoke_missing_grant_is_invalid(monkeypatch, tmp_path):
    config = _patch_stack(monkeypatch, tmp_path, _FakeGranter(error=GrantNotFoundError("gra_abc")))

    assert cli.main(["--config", config, "revoke", "gra_abc", "--revoker", "ops"]) == cli.EXIT_INVALID


def test_provider_failure_is_infra_error(monkeypatch, tmp_path):
    config = _patch_stack(monkeypatch, tmp_path, _FakeGranter(error=ProviderError("AccessDenied")))

    assert cli.main(["--config", config, "revoke", "gra_abc", "--revoker", "ops"]) == cli.EXIT_INFRA


def test_invalid_grant_id(monkeypatch, tmp_path):
    config = _patch_stack(monkeypatch, tmp_path, _FakeGranter())

    assert cli.main(["--config", config, "describe", "gra/../x"]) == cli.EXIT_INVALID


def test_options_for_provider_without_options(monkeypatch, tmp_path):
    config = _patch_stack(monkeypatch, tmp_path, _FakeGranter())

    assert cli.main(["--config", config, "options", "vault", "vault"]) == cli.EXIT_INVALID
