"""
ST-900 configuration commands.

Renders the device's SMS command strings and tracks their lifecycle in
storage. Delivery through an SMS carrier happens elsewhere; this module only
records that a command was sent or answered.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from database.schemas import CommandCreate, CommandResponse, CommandStatus

logger = logging.getLogger(__name__)

COMMAND_TEMPLATES: Dict[str, Callable[..., str]] = {
    'setServer': lambda ip, port: f"8040000 {ip} {port}",
    'setInterval': lambda seconds: f"8090000 {seconds}",
    'getStatus': lambda: "8030000",
    'reset': lambda: "8050000",
    'setAPN': lambda apn: f"8020000 {apn}",
    'setPassword': lambda password: f"8010000 {password}",
    'enableGPS': lambda: "8060000 1",
    'disableGPS': lambda: "8060000 0",
}

# Parameters and descriptions offered to operators picking a command
COMMAND_CATALOG: Dict[str, Dict[str, Any]] = {
    'setServer': {
        'description': 'Set GPS server IP and port',
        'parameters': ['ip', 'port'],
        'example': {'ip': '192.168.1.100', 'port': '8091'},
    },
    'setInterval': {
        'description': 'Set GPS reporting interval in seconds',
        'parameters': ['seconds'],
        'example': {'seconds': '30'},
    },
    'getStatus': {'description': 'Request device status', 'parameters': [], 'example': {}},
    'reset': {'description': 'Factory reset device', 'parameters': [], 'example': {}},
    'setAPN': {
        'description': 'Set mobile data APN',
        'parameters': ['apn'],
        'example': {'apn': 'internet'},
    },
    'setPassword': {
        'description': 'Change device password',
        'parameters': ['password'],
        'example': {'password': '123456'},
    },
    'enableGPS': {'description': 'Enable GPS tracking', 'parameters': [], 'example': {}},
    'disableGPS': {'description': 'Disable GPS tracking', 'parameters': [], 'example': {}},
}

# Status may only move forward
STATUS_ORDER = [CommandStatus.PENDING, CommandStatus.SENT, CommandStatus.COMPLETED]


class CommandError(ValueError):
    pass


def render_command(command_type: str, parameters: Optional[Dict[str, Any]] = None) -> str:
    template = COMMAND_TEMPLATES.get(command_type)
    if template is None:
        raise CommandError(f"Unknown command type: {command_type}")
    try:
        return template(**(parameters or {}))
    except TypeError as e:
        raise CommandError(f"Bad parameters for {command_type}: {e}")


class DeviceCommandService:
    """Queue commands for devices and advance their status"""

    def __init__(self, store):
        self.store = store

    def queue_command(self, device_id: str, command_type: str,
                      parameters: Optional[Dict[str, Any]] = None) -> int:
        command_text = render_command(command_type, parameters)
        command_id = self.store.insert_command(CommandCreate(
            device_id=device_id,
            command_type=command_type,
            command_text=command_text,
        ))
        logger.info(f"Queued {command_type} for {device_id}: {command_text} (ID: {command_id})")
        return command_id

    def _advance(self, command_id: int, status: CommandStatus, response_data: Optional[str] = None):
        command = self.store.get_command(command_id)
        if command is None:
            raise CommandError(f"Command {command_id} not found")
        if STATUS_ORDER.index(status) <= STATUS_ORDER.index(command.status):
            raise CommandError(f"Command {command_id} is already {command.status.value}")
        self.store.update_command_status(command_id, status, response_data)
        logger.info(f"Command {command_id} for {command.device_id} is now {status.value}")

    def mark_sent(self, command_id: int):
        self._advance(command_id, CommandStatus.SENT)

    def mark_completed(self, command_id: int, response_data: Optional[str] = None):
        self._advance(command_id, CommandStatus.COMPLETED, response_data)

    def pending_for(self, device_id: Optional[str] = None) -> List[CommandResponse]:
        return self.store.get_pending_commands(device_id)

    @staticmethod
    def available_commands() -> Dict[str, Dict[str, Any]]:
        return {name: dict(entry) for name, entry in COMMAND_CATALOG.items()}

    def process_response(self, phone_number: str, body: str) -> Dict[str, Any]:
        """
        Match an SMS reply to the sending device's oldest pending command.

        Returns:
            dict with success flag, device_id, the completed command_id (None
            when nothing was pending) and the reply body
        """
        logger.info(f"Received SMS from {phone_number}: {body}")

        device = self.store.lookup_device_by(phone_number)
        if device is None:
            logger.warning(f"Unknown device phone number: {phone_number}")
            return {'success': False, 'message': 'Unknown device'}

        command_id = None
        pending = self.store.get_pending_commands(device.device_id)
        if pending:
            command_id = pending[0].id
            self.mark_completed(command_id, body)
        else:
            logger.info(f"No pending command for {device.device_id}, reply not matched")

        return {
            'success': True,
            'device_id': device.device_id,
            'command_id': command_id,
            'response': body,
        }
