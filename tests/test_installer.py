"""Tests for AlertingInstaller workflows."""

import copy

from alertstack import ReconcileAction, ReconcileStatus, ResourceKind
from alertstack import builders
from alertstack.installer import format_summary


class TestInstall:
    """End-to-end install scenarios against the in-memory control plane."""

    def test_fresh_cluster(self, installer, control_plane, settings):
        """Secret, deployment and wiring are applied; the probe times out and is removed."""
        summary = installer.install()

        assert summary.exit_code == 0
        secret, deployment, wiring, probe = summary.results
        ns = settings.metrics_namespace

        assert secret.action == ReconcileAction.CREATE
        assert secret.status == ReconcileStatus.APPLIED
        assert settings.secrets_file.exists()

        assert deployment.action == ReconcileAction.CREATE
        assert control_plane.get(ResourceKind.DEPLOYMENT, ns, settings.alertmanager_name)["spec"]["replicas"] == 2
        assert control_plane.has(ResourceKind.SERVICE, ns, settings.alertmanager_name)

        assert wiring.action == ReconcileAction.PATCH
        assert wiring.status == ReconcileStatus.APPLIED

        assert probe.status == ReconcileStatus.TIMED_OUT
        assert not control_plane.has(ResourceKind.CUSTOM_RULE, ns, settings.probe_rule_name)

    def test_existing_secret_is_skipped(self, installer, control_plane, settings):
        ns = settings.metrics_namespace
        control_plane.add(ResourceKind.SECRET, ns, settings.secret_name, {"data": {"smtp-password": "cmVhbA=="}})

        summary = installer.install()

        secret, deployment = summary.results[:2]
        assert secret.action == ReconcileAction.SKIP
        assert deployment.action == ReconcileAction.CREATE
        assert control_plane.get(ResourceKind.SECRET, ns, settings.secret_name) == {
            "data": {"smtp-password": "cmVhbA=="}
        }
        assert not settings.secrets_file.exists()

    def test_idempotent(self, installer, control_plane):
        installer.install()
        first_state = copy.deepcopy(control_plane.objects)

        summary = installer.install()

        assert control_plane.objects == first_state
        for result in summary.flattened():
            if result.resource.kind == ResourceKind.CUSTOM_RULE and result.resource.name == installer.settings.probe_rule_name:
                continue
            assert result.action == ReconcileAction.SKIP, str(result.resource)

    def test_unreachable_control_plane_makes_no_writes(self, installer, control_plane):
        control_plane.reachable = False

        summary = installer.install()

        assert summary.exit_code == 1
        assert "Unable to connect" in summary.fatal_error
        assert summary.results == []
        assert control_plane.writes == []

    def test_missing_prometheus_is_fatal(self, installer, control_plane, settings):
        control_plane.objects.pop(
            (ResourceKind.DEPLOYMENT.value, settings.metrics_namespace, settings.prometheus_deployment)
        )

        summary = installer.install()

        assert summary.exit_code == 1
        assert control_plane.writes == []

    def test_step_failure_does_not_abort(self, installer, control_plane, settings):
        control_plane.failing.add(
            (ResourceKind.SECRET.value, settings.metrics_namespace, settings.secret_name)
        )

        summary = installer.install()

        assert summary.exit_code == 0
        assert summary.results[0].status == ReconcileStatus.FAILED
        assert len(summary.results) == 4
        assert summary.failures[0].resource.name == settings.secret_name


class TestApplySecrets:
    """Test cases for apply-secrets."""

    def test_missing_template(self, installer, control_plane):
        summary = installer.apply_secrets()

        assert summary.exit_code == 1
        assert "not found" in summary.fatal_error
        assert control_plane.writes == []

    def test_overwrites_and_restarts(self, installer, control_plane, settings):
        installer.install()
        settings.secrets_file.write_text('SMTP_PASSWORD="s3cret"\n', encoding="utf-8")

        summary = installer.apply_secrets()

        assert summary.exit_code == 0
        secret = control_plane.get(ResourceKind.SECRET, settings.metrics_namespace, settings.secret_name)
        assert secret["data"]["smtp-password"] == "czNjcmV0"
        assert (ResourceKind.DEPLOYMENT.value, settings.metrics_namespace, settings.alertmanager_name) in control_plane.ops("restart")

    def test_install_does_not_overwrite_applied_secret(self, installer, control_plane, settings):
        installer.install()
        settings.secrets_file.write_text('SMTP_PASSWORD="s3cret"\n', encoding="utf-8")
        installer.apply_secrets()

        installer.install()

        secret = control_plane.get(ResourceKind.SECRET, settings.metrics_namespace, settings.secret_name)
        assert secret["data"]["smtp-password"] == "czNjcmV0"

    def test_restart_failure_is_reported(self, installer, control_plane, settings):
        settings.secrets_file.write_text('SMTP_PASSWORD="s3cret"\n', encoding="utf-8")

        summary = installer.apply_secrets()

        assert summary.exit_code == 1
        assert summary.results[-1].status == ReconcileStatus.FAILED


class TestTestAndUninstall:
    """Test cases for the test and uninstall commands."""

    def test_probe_only(self, installer, control_plane, settings):
        summary = installer.test()

        assert summary.exit_code == 0
        assert len(summary.results) == 1
        assert summary.results[0].status == ReconcileStatus.TIMED_OUT
        assert not control_plane.has(ResourceKind.CUSTOM_RULE, settings.metrics_namespace, settings.probe_rule_name)

    def test_uninstall_twice(self, installer, control_plane, settings):
        installer.install()

        assert installer.uninstall().exit_code == 0
        for resource in builders.managed_resources(settings):
            assert resource.key not in control_plane.objects
        assert not settings.secrets_file.exists()

        assert installer.uninstall().exit_code == 0

    def test_uninstall_keeps_prometheus(self, installer, control_plane, settings):
        installer.install()
        installer.uninstall()

        assert control_plane.has(ResourceKind.DEPLOYMENT, settings.metrics_namespace, settings.prometheus_deployment)


def test_format_summary(installer):
    summary = installer.install()

    text = format_summary(summary)

    assert "install summary" in text
    assert "Deployment istio-system/alertmanager" in text
    assert "timed_out" in text
