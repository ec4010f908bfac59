class NetPulseError(Exception):
    """Base class for agent errors."""


class NetworkEnvironmentError(NetPulseError):
    """The host network (local address, subnet) could not be determined."""


class DeviceNotFoundError(NetPulseError):
    def __init__(self, device_id: str):
        super().__init__(f"Device {device_id} not found")
        self.device_id = device_id
