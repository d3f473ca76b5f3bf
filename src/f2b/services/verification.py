"""Post-install verification of the ban policy.

Simulates a brute-force attempt by appending sshd-style failure records
for a probe address to the jail's log, then asks the daemon whether the
address got banned. On failure the policy is tightened once and the
probe repeated.

State machine:
    IDLE -> RESTARTED -> PROBING -> {BANNED | NOT_BANNED}
    NOT_BANNED -> REMEDIATED -> PROBING -> {BANNED | NOT_BANNED}
    -> DONE
"""

import os
import socket
import time
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from f2b.core.audit import AuditEventType, AuditLogger, get_audit_logger
from f2b.core.config import VerificationConfig
from f2b.core.context import ExecutionContext
from f2b.core.exceptions import F2BError, ValidationError, VerificationInconclusive
from f2b.core.executor import CommandExecutor
from f2b.core.validation import validate_address
from f2b.policy.models import (
    DEFAULT_SECTION,
    Backend,
    Duration,
    EffectivePolicy,
    JailDefinition,
    LayerRank,
    OverrideLayer,
)
from f2b.policy.resolver import OverrideResolver, changed_fields
from f2b.services.fail2ban import Fail2banClient
from f2b.services.writer import ConfigWriter


PROBE_USER = "f2bprobe"
PROBE_BASE_PORT = 40000
MIN_FIND_TIME = 60
GLOB_CHARS = "*?["


class VerificationState(Enum):
    IDLE = "idle"
    RESTARTED = "restarted"
    PROBING = "probing"
    BANNED = "banned"
    NOT_BANNED = "not_banned"
    REMEDIATED = "remediated"
    DONE = "done"


class VerificationResult(Enum):
    BANNED = "banned"
    NOT_BANNED = "not_banned"
    SKIPPED = "skipped"


def probe_line(address: str, when: datetime, hostname: str, pid: int, port: int) -> str:
    """One sshd 'Failed password' record in syslog format."""
    return (
        f"{when.strftime('%b %d %H:%M:%S')} {hostname} sshd[{pid}]: "
        f"Failed password for invalid user {PROBE_USER} from {address} "
        f"port {port} ssh2"
    )


class VerificationRunner:
    """Probes a jail and tightens the policy once if the probe is not banned.

    Example:
        runner = VerificationRunner(ctx, client, writer, resolver, executor, settings)
        result = runner.verify(policy, "sshd", "203.0.113.7")
        if result is VerificationResult.NOT_BANNED:
            raise runner.inconclusive("sshd", "203.0.113.7")
    """

    def __init__(
        self,
        ctx: ExecutionContext,
        client: Fail2banClient,
        writer: ConfigWriter,
        resolver: OverrideResolver,
        executor: CommandExecutor,
        settings: Optional[VerificationConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], datetime] = datetime.now,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self.ctx = ctx
        self.client = client
        self.writer = writer
        self.resolver = resolver
        self.executor = executor
        self.settings = settings or VerificationConfig()
        self.sleep = sleep
        self.now = now
        self.audit = audit or get_audit_logger()

        self.state = VerificationState.IDLE
        self.transitions: list[VerificationState] = [VerificationState.IDLE]
        self.remediations = 0
        self.policy: Optional[EffectivePolicy] = None

    def verify(
        self,
        policy: EffectivePolicy,
        jail_name: str,
        probe_address: Optional[str],
    ) -> VerificationResult:
        """Run the verification loop for one jail.

        Args:
            policy: Policy currently written to disk
            jail_name: Jail to probe
            probe_address: Address to impersonate; None skips verification

        Returns:
            BANNED, NOT_BANNED (after one remediation) or SKIPPED

        Raises:
            ValidationError: If the address is malformed or the jail has no log
            ServiceError: If the daemon cannot be restarted or queried
            ConfigWriteError: If the remediated policy cannot be written
        """
        self.policy = policy

        if not probe_address or self.ctx.dry_run:
            return VerificationResult.SKIPPED

        address = validate_address(probe_address)
        jail = policy.jail(jail_name)
        if jail is None or not jail.log_paths:
            raise ValidationError(
                f"Jail '{jail_name}' has no log path to probe",
                hint="Verification needs an enabled jail with a logpath",
            )

        self._restart(jail)
        result = self._probe(jail, address)

        if result is VerificationResult.NOT_BANNED and self.remediations == 0:
            policy = self._remediate(policy, jail_name)
            self._restart(policy.jail(jail_name) or jail)
            result = self._probe(policy.jail(jail_name) or jail, address)

        if result is VerificationResult.BANNED:
            self.client.unban(jail_name, address)

        self._transition(VerificationState.DONE)
        return result

    def remediation_layer(self, policy: EffectivePolicy, jail_name: str) -> OverrideLayer:
        """Tightening applied after a failed probe.

        Lowers maxretry by retry_step (floor 1), halves findtime (floor
        60s) and switches the backend to the event-driven one. The backend
        is set on the jail as well, since a jail-level backend from a
        distribution jail.d file overrides [DEFAULT].
        """
        jail = policy.jail(jail_name) or JailDefinition(name=jail_name)
        defaults = policy.defaults

        max_retry = jail.max_retry if jail.max_retry is not None else defaults.max_retry
        find_time = jail.find_time or defaults.find_time
        seconds = find_time.seconds or MIN_FIND_TIME

        return (
            OverrideLayer(rank=LayerRank.REMEDIATION, name="verification-remediation")
            .add(
                jail_name,
                max_retry=max(1, max_retry - self.settings.retry_step),
                find_time=Duration.from_seconds(max(MIN_FIND_TIME, seconds // 2)),
                backend=Backend.EVENT_DRIVEN,
            )
            .add(DEFAULT_SECTION, backend=Backend.EVENT_DRIVEN)
        )

    def inconclusive(self, jail_name: str, address: str) -> VerificationInconclusive:
        """Warning raised when the probe is still not banned after remediation."""
        log_path = None
        if self.policy is not None:
            jail = self.policy.jail(jail_name)
            if jail is not None and jail.log_paths:
                log_path = jail.log_paths[0]

        details = [f"Probe address: {address}"]
        if log_path is not None:
            details.append(f"Probe records written to: {log_path}")
        if self.remediations:
            details.append("The policy was tightened once and probed again")

        return VerificationInconclusive(
            f"Verification of jail '{jail_name}' was inconclusive",
            jail=jail_name,
            address=address,
            details=details,
            hint=(
                f"Check 'fail2ban-client status {jail_name}' and "
                "'journalctl -u fail2ban'. The daemon may read the journal "
                "instead of the log file, or the address may be in ignoreip"
            ),
        )

    def interrupted(self, jail_name: str, address: str, error: F2BError) -> VerificationInconclusive:
        """Warning raised when an error stops the loop before it finishes.

        The policy on disk is already active at this point, so the error
        is reported without failing the run.
        """
        details = [f"Probe address: {address}", f"Stopped in state: {self.state.value}"]
        details.extend(error.details)
        if self.remediations:
            details.append("The tightened policy was written before the error")

        return VerificationInconclusive(
            f"Verification of jail '{jail_name}' could not complete: {error.message}",
            jail=jail_name,
            address=address,
            details=details,
            hint=error.hint or (
                "Check 'systemctl status fail2ban' and "
                f"'fail2ban-client status {jail_name}', then run f2b setup again"
            ),
        )

    def _transition(self, state: VerificationState) -> None:
        self.ctx.console.debug(f"Verification: {self.state.value} -> {state.value}")
        self.state = state
        self.transitions.append(state)

    def _restart(self, jail: JailDefinition) -> None:
        self._ensure_log_source(jail.log_paths[0])
        self.client.reload()
        self._transition(VerificationState.RESTARTED)
        self.sleep(self.settings.restart_settle)

    def _ensure_log_source(self, path: Path) -> None:
        if any(ch in str(path) for ch in GLOB_CHARS):
            return
        if not path.exists():
            self.ctx.console.verbose(f"Creating log file {path}")
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch(mode=0o640)

    def _probe(self, jail: JailDefinition, address: str) -> VerificationResult:
        self._transition(VerificationState.PROBING)
        log_path = jail.log_paths[0]
        hostname = socket.gethostname()
        pid = os.getpid()

        self.ctx.console.step(
            f"Simulating {self.settings.probe_count} failed logins from {address}"
        )
        for i in range(self.settings.probe_count):
            line = probe_line(address, self.now(), hostname, pid, PROBE_BASE_PORT + i)
            with open(log_path, "a") as f:
                f.write(line + "\n")
            if i < self.settings.probe_count - 1:
                self.sleep(self.settings.record_delay)

        self.sleep(self.settings.probe_settle)

        banned = address in self.client.banned_ips(jail.name)
        if banned:
            self._transition(VerificationState.BANNED)
            self.ctx.console.success(f"{address} was banned by jail '{jail.name}'")
            self.audit.log_success(
                AuditEventType.VERIFY_PROBE, "jail", jail.name,
                parameters={"address": address, "banned": True},
            )
            return VerificationResult.BANNED

        self._transition(VerificationState.NOT_BANNED)
        self.ctx.console.warn(f"{address} was not banned by jail '{jail.name}'")
        self.audit.log_warning(
            AuditEventType.VERIFY_PROBE, "jail", jail.name,
            f"{address} not banned",
        )
        return VerificationResult.NOT_BANNED

    def _remediate(self, policy: EffectivePolicy, jail_name: str) -> EffectivePolicy:
        self.ctx.console.step(f"Tightening jail '{jail_name}' and probing again")

        jail = policy.jail(jail_name)
        current = (jail.backend if jail else None) or policy.defaults.backend
        if current is not Backend.EVENT_DRIVEN:
            self.executor.apt_install(
                ["python3-pyinotify"],
                description="Installing python3-pyinotify for the event-driven backend",
            )

        layer = self.remediation_layer(policy, jail_name)
        tightened = self.resolver.extend(policy, [layer])
        changes = changed_fields(policy, tightened)
        policy = tightened
        self.writer.write(policy)

        self.remediations += 1
        self.policy = policy
        self._transition(VerificationState.REMEDIATED)

        jail = policy.jail(jail_name)
        self.audit.log_success(
            AuditEventType.VERIFY_REMEDIATE, "jail", jail_name,
            parameters={
                "maxretry": jail.max_retry if jail else None,
                "findtime": str(jail.find_time) if jail and jail.find_time else None,
                "backend": (jail.backend or policy.defaults.backend).value if jail else None,
                "changed": [f"{target}.{attr}" for target, attr in changes],
            },
        )
        return policy
