"""Tunnel-related exception classes."""


class TunnelError(Exception):
    """Base exception for tunnel operations."""

    pass


class ConfigError(TunnelError):
    """Invalid configuration value."""

    def __init__(self, message: str, setting: str):
        self.setting = setting
        super().__init__(f"Invalid {setting}: {message}")


class CredentialError(TunnelError):
    """Private key could not be read or parsed."""

    def __init__(self, message: str, path: str):
        self.path = path
        super().__init__(f"Cannot load SSH private key {path}: {message}")


class TransportError(TunnelError):
    """SSH session to the relay host failed or was lost."""

    def __init__(self, message: str, address: str):
        self.address = address
        super().__init__(f"{message} ({address})")


class ListenError(TunnelError):
    """Relay host refused to open the remote listener."""

    def __init__(self, message: str, address: str):
        self.address = address
        super().__init__(f"Listen open port ON remote server {address} failed: {message}")


class LocalDialError(TunnelError):
    """Local service could not be reached."""

    def __init__(self, message: str, address: str):
        self.address = address
        super().__init__(f"Dial INTO local service {address} failed: {message}")
