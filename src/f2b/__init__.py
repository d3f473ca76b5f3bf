"""
f2b - fail2ban provisioning tool.

Detects the host firewall, generates a layered fail2ban ban policy from
operator answers and verifies it by simulating a brute-force attack.
"""

__version__ = "1.0.0"
