# lanwatch/utils.py
import logging
import re
from typing import Optional

import paramiko

logger = logging.getLogger(__name__)

MAC_PATTERN = re.compile(r"(?<![0-9a-fA-F:-])((?:[0-9a-fA-F]{1,2}[:-]){5}[0-9a-fA-F]{1,2})(?![0-9a-fA-F:-])")
_EMPTY_MACS = {"00:00:00:00:00:00", "ff:ff:ff:ff:ff:ff"}


def format_mac(mac: str) -> str:
    """Formats a MAC address to lowercase, colon-separated, zero-padded octets."""
    parts = mac.strip().lower().replace("-", ":").split(":")
    if len(parts) != 6:
        return mac.lower().replace("-", ":")
    return ":".join(part.zfill(2) for part in parts)


def find_mac(text: str) -> Optional[str]:
    """Returns the first usable MAC address in command output, formatted."""
    for match in MAC_PATTERN.finditer(text):
        mac = format_mac(match.group(1))
        if mac not in _EMPTY_MACS:
            return mac
    return None


def is_valid_ipv4(ip: str) -> bool:
    """Checks if a string is a valid IPv4 address."""
    pattern = r"^(\d{1,3}\.){3}\d{1,3}$"
    if re.match(pattern, ip):
        parts = ip.split('.')
        return all(0 <= int(part) <= 255 for part in parts)
    return False


class SSHClient:
    """Runs commands on a remote host; used to read a router's ARP table."""

    def __init__(self, hostname: str, username: str, password: Optional[str] = None,
                 timeout: int = 10):
        self.hostname = hostname
        self.username = username
        self.password = password
        self.timeout = timeout
        self.client: Optional[paramiko.SSHClient] = None

    def connect(self) -> bool:
        """Connects with the password if one is set, else with keys and the agent.

        Never prompts: the scanner runs unattended.
        """
        self.client = paramiko.SSHClient()
        self.client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            if self.password:
                self.client.connect(hostname=self.hostname, username=self.username,
                                    password=self.password, timeout=self.timeout)
            else:
                self.client.connect(hostname=self.hostname, username=self.username,
                                    timeout=self.timeout, look_for_keys=True, allow_agent=True)
            return True
        except (paramiko.SSHException, OSError) as e:
            logger.error("Error connecting to %s: %s", self.hostname, e)
            self.close()
            return False

    def execute_command(self, command: str) -> str:
        """Executes a command on the connected host and returns its stdout."""
        if not self.client:
            raise RuntimeError("SSH client not connected. Call connect() first.")
        try:
            _, stdout, stderr = self.client.exec_command(command, timeout=self.timeout)
            error = stderr.read().decode(errors="ignore").strip()
            output = stdout.read().decode(errors="ignore")
            if error:
                logger.warning("Command '%s' returned error: %s", command, error)
            return output
        except (paramiko.SSHException, OSError) as e:
            logger.error("Error executing command '%s': %s", command, e)
            return ""

    def close(self):
        if self.client:
            self.client.close()
            self.client = None
