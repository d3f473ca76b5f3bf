"""Provisioning run implementation.

This module implements the `f2b setup` command which:
- Detects (and if needed enables) the host firewall front-end
- Installs fail2ban and the packages the chosen policy needs
- Asks the operator for the ban policy
- Writes jail.local, jail.d overrides and blocklist artifacts
- Restarts the daemon and verifies that a simulated attacker is banned
"""

import os
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from f2b.core.audit import AuditEventType, get_audit_logger
from f2b.core.context import ExecutionContext
from f2b.core.exceptions import (
    ConfigWriteError,
    ExecutionError,
    F2BError,
    FirewallAbsent,
    PrivilegeError,
    ServiceError,
    ValidationError,
    VerificationInconclusive,
)
from f2b.core.executor import CommandExecutor
from f2b.core.lock import RunLock
from f2b.policy.generator import SSH_JAIL, BLOCKLIST_JAIL, PolicyGenerator
from f2b.policy.models import (
    Backend,
    EffectivePolicy,
    FirewallState,
    OperatorAnswers,
)
from f2b.policy.resolver import OverrideResolver
from f2b.services.discovery import DiscoveredServices, ServiceDiscovery
from f2b.services.fail2ban import FAIL2BAN_SERVICE, Fail2banClient
from f2b.services.firewall import FirewallDetector
from f2b.services.systemd import SystemdService
from f2b.services.verification import VerificationResult, VerificationRunner
from f2b.services.writer import ConfigWriter, WrittenPaths
from f2b.commands.prompts import InteractiveAnswerProvider


@dataclass
class ProvisionReport:
    """Outcome of a run, shown in the final summary."""
    firewall: FirewallState = FirewallState.NONE
    policy: Optional[EffectivePolicy] = None
    written: WrittenPaths = field(default_factory=WrittenPaths)
    verification: VerificationResult = VerificationResult.SKIPPED
    remediations: int = 0
    warnings: list[str] = field(default_factory=list)


def require_root(ctx: ExecutionContext) -> None:
    """Raise PrivilegeError unless running as root (dry-run is exempt)."""
    if os.geteuid() != 0 and not ctx.dry_run:
        raise PrivilegeError(
            "This operation requires root privileges",
            hint="Run with: sudo f2b setup",
        )


BASE_PACKAGES = ["fail2ban"]


def extra_packages(policy: EffectivePolicy) -> list[str]:
    """Packages the resolved policy depends on beyond fail2ban itself."""
    packages = []
    if policy.defaults.persist_path is not None:
        packages.append("sqlite3")
    backends = {policy.defaults.backend} | {jail.backend for jail in policy.jails}
    if Backend.EVENT_DRIVEN in backends:
        packages.append("python3-pyinotify")
    return packages


class Provisioner:
    """Runs the provisioning steps in order.

    Collaborators are created from the context but can be replaced,
    which is how the tests drive a run without touching the host.
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        answers: Optional[InteractiveAnswerProvider] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.ctx = ctx
        self.config = ctx.config
        self.executor = CommandExecutor(ctx)
        self.systemd = SystemdService(ctx, self.executor)
        self.detector = FirewallDetector(ctx, self.executor, self.systemd)
        self.discovery = ServiceDiscovery(self.executor, self.systemd)
        self.client = Fail2banClient(ctx, self.executor, self.systemd)
        self.generator = PolicyGenerator(self.config.fail2ban_dir)
        self.resolver = OverrideResolver()
        self.writer = ConfigWriter(ctx, self.config.fail2ban_dir)
        self.answers = answers
        self.sleep = sleep
        self.runner: Optional[VerificationRunner] = None
        self.audit = get_audit_logger()

    # =========================================================================
    # Steps
    # =========================================================================

    def prepare_firewall(self) -> FirewallState:
        """Detect the firewall, offering to install ufw when there is none.

        Raises:
            FirewallAbsent: If the operator declines both install and continue
        """
        self.ctx.console.section("Firewall")
        state = self.detector.detect()

        if self.detector.activated:
            self.audit.log_success(
                AuditEventType.FIREWALL_ENABLE, "firewall", state.value,
            )

        if state is FirewallState.NONE:
            provider = self._answer_provider(DiscoveredServices())
            if provider.ask_install_firewall():
                self.executor.apt_update()
                state = self.detector.install_ufw()
                self.audit.log_success(
                    AuditEventType.FIREWALL_ENABLE, "firewall", state.value,
                    message="ufw installed",
                )
            elif not provider.ask_continue_without_firewall():
                raise FirewallAbsent(
                    "Installation aborted: no firewall available",
                    hint="Install ufw or firewalld and run again",
                )

        self.audit.log_success(AuditEventType.FIREWALL_DETECT, "firewall", state.value)
        return state

    def install_packages(self, packages: list[str], *, update: bool = True) -> None:
        """Install packages, aborting the run on failure.

        Raises:
            PackageInstallError: If apt fails
        """
        if update:
            self.executor.apt_update()
        self.executor.apt_install(packages)
        self.audit.log_success(
            AuditEventType.PACKAGE_INSTALL, "packages", ",".join(packages),
        )

    def build_policy(self, state: FirewallState, answers: OperatorAnswers) -> EffectivePolicy:
        """Generate, layer and resolve the policy."""
        defaults, jails = self.generator.generate(state, answers)
        overrides = self.config.overrides
        layers = self.generator.override_layers(
            answers,
            local=overrides.local,
            jails=overrides.jails,
        )
        return self.resolver.resolve(
            defaults, jails, layers, blocklist=self.generator.blocklist(answers),
        )

    def activate(self) -> None:
        """Enable fail2ban at boot and restart it with the new policy."""
        self.ctx.console.section("Activating fail2ban")
        self.systemd.enable(FAIL2BAN_SERVICE, description="Enabling fail2ban at boot")
        self.systemd.restart(FAIL2BAN_SERVICE, description="Restarting fail2ban")
        self.audit.log_success(AuditEventType.SERVICE_RESTART, "service", FAIL2BAN_SERVICE)

    def seed_blocklist(self, policy: EffectivePolicy) -> list[str]:
        """Ban every blocklist entry right away.

        The blocklist jail's filter only sees single addresses, so ranges
        are enforced through banip. Returns entries the daemon refused.
        """
        failed: list[str] = []
        if not policy.blocklist or self.ctx.dry_run:
            return failed

        for entry in policy.blocklist:
            try:
                self.client.ban(BLOCKLIST_JAIL, entry.address)
            except ExecutionError as e:
                self.ctx.console.warn(f"Could not ban {entry.address}: {e.message}")
                failed.append(entry.address)

        self.audit.log_success(
            AuditEventType.BLOCKLIST_SEED, "jail", BLOCKLIST_JAIL,
            parameters={"entries": len(policy.blocklist), "failed": failed},
        )
        return failed

    def verify(self, policy: EffectivePolicy, probe_address: Optional[str]) -> VerificationResult:
        """Run the verification loop against the SSH jail.

        Raises:
            VerificationInconclusive: If the probe is still not banned
                after one remediation, or if a daemon, package or write
                error stopped the loop
        """
        self.ctx.console.section("Verification")
        if self.ctx.dry_run:
            self.ctx.console.dry_run_msg("probe the SSH jail with a simulated attack")
            return VerificationResult.SKIPPED
        if not probe_address:
            self.ctx.console.info("Verification skipped")
            return VerificationResult.SKIPPED

        runner = self.runner = VerificationRunner(
            self.ctx,
            self.client,
            self.writer,
            self.resolver,
            self.executor,
            settings=self.config.verification,
            sleep=self.sleep,
        )
        try:
            result = runner.verify(policy, SSH_JAIL, probe_address)
        except (ServiceError, ExecutionError, ConfigWriteError, ValidationError) as e:
            self.audit.log_failure(
                AuditEventType.VERIFY_PROBE, "jail", SSH_JAIL, e.message,
            )
            raise runner.interrupted(SSH_JAIL, probe_address, e) from e
        if result is VerificationResult.NOT_BANNED:
            raise runner.inconclusive(SSH_JAIL, probe_address)
        return result

    def show_rules(self, state: FirewallState) -> None:
        if self.ctx.dry_run:
            return
        rules = self.detector.show_rules(state)
        if rules:
            self.ctx.console.code(rules, language="text", title="Firewall rules")

    # =========================================================================
    # Run
    # =========================================================================

    def run(self) -> ProvisionReport:
        """Execute every step in order.

        Raises:
            F2BError: Any fatal error; VerificationInconclusive is turned
                into a warning on the report instead
        """
        report = ProvisionReport()

        report.firewall = self.prepare_firewall()

        self.ctx.console.section("Packages")
        self.install_packages(BASE_PACKAGES)

        services = self.discovery.discover()
        provider = self._answer_provider(services)
        answers = provider.gather()

        policy = self.build_policy(report.firewall, answers)
        extras = extra_packages(policy)
        if extras:
            self.install_packages(extras, update=False)
        report.policy = policy

        self.ctx.console.section("Writing configuration")
        report.written = self.writer.write(policy)

        self.activate()

        for address in self.seed_blocklist(policy):
            report.warnings.append(f"Blocklist entry not banned: {address}")

        try:
            report.verification = self.verify(policy, answers.probe_address)
        except VerificationInconclusive as e:
            self.ctx.console.warn(e.message)
            for detail in e.details:
                self.ctx.console.print(f"  [dim]{detail}[/dim]")
            if e.hint:
                self.ctx.console.hint(e.hint)
            report.verification = VerificationResult.NOT_BANNED
            report.warnings.append(e.message)

        if self.runner is not None:
            report.remediations = self.runner.remediations
            report.policy = self.runner.policy or policy

        self.show_rules(report.firewall)
        return report

    def _answer_provider(self, services: DiscoveredServices) -> InteractiveAnswerProvider:
        if self.answers is None:
            self.answers = InteractiveAnswerProvider(
                self.ctx.console, services, ssh_port=self.detector.ssh_port,
            )
        else:
            self.answers.services = services
        return self.answers


def print_summary(ctx: ExecutionContext, report: ProvisionReport) -> None:
    policy = report.policy
    ctx.console.print()
    if ctx.dry_run:
        ctx.console.info("Dry run complete. No changes were made.")
    else:
        ctx.console.success("fail2ban installation and configuration completed")
    ctx.console.print()

    items: dict[str, object] = {"Firewall": report.firewall.display_name}
    if policy is not None:
        items["Jails"] = ", ".join(jail.name for jail in policy.enabled_jails)
        items["Ban time"] = str(policy.defaults.ban_time)
        ssh = policy.jail(SSH_JAIL)
        if ssh is not None and ssh.ban_time not in (None, policy.defaults.ban_time):
            ban_time = ssh.ban_time
            items[f"Ban time ({SSH_JAIL})"] = "permanent" if ban_time.is_permanent else str(ban_time)
        items["Ban action"] = policy.defaults.ban_action.action_name(report.firewall)
        items["Ignored"] = " ".join(policy.defaults.ignore_list)
        if policy.blocklist:
            items["Blocklist"] = f"{len(policy.blocklist)} entries"
    if report.written.written:
        items["Files written"] = len(report.written.written)
    if report.written.backups:
        items["Backups"] = len(report.written.backups)
    items["Verification"] = report.verification.value
    if report.remediations:
        items["Remediations"] = report.remediations

    ctx.console.summary("fail2ban policy", items)

    ctx.console.print()
    ctx.console.print("Useful commands:")
    ctx.console.print("  systemctl status fail2ban")
    ctx.console.print("  fail2ban-client status")
    ctx.console.print("  fail2ban-client status <jail>")
    ctx.console.print("  fail2ban-client set <jail> banip <ip>")
    ctx.console.print("  fail2ban-client set <jail> unbanip <ip>")


def run_setup(
    ctx: ExecutionContext,
    answers: Optional[InteractiveAnswerProvider] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ProvisionReport:
    """Run a full provisioning pass under the host run lock.

    Args:
        ctx: Execution context
        answers: Answer provider (interactive by default)
        sleep: Wait function used by verification

    Returns:
        ProvisionReport for the summary

    Raises:
        PrivilegeError: If not running as root
        RunLockError: If another run holds the lock
        F2BError: Any other fatal error
    """
    require_root(ctx)
    audit = get_audit_logger()
    audit.log_session_start("setup", {"dry_run": ctx.dry_run})

    exit_code = 1
    try:
        if ctx.dry_run:
            report = Provisioner(ctx, answers, sleep).run()
        else:
            with RunLock(ctx.config.lock_path):
                report = Provisioner(ctx, answers, sleep).run()
        exit_code = 0
    except F2BError as e:
        exit_code = e.exit_code
        raise
    finally:
        audit.log_session_end(exit_code)

    print_summary(ctx, report)
    return report
