from enum import Enum

from kontainers_proxy.controller import ControllerState
from kontainers_proxy.rules.models import ProxyProtocol


class UIStyle(str, Enum):
    BLUE = "blue"
    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"
    CYAN = "cyan"
    MAGENTA = "magenta"
    DIM = "dim"
    WHITE = "white"


PROTOCOL_STYLE = {
    ProxyProtocol.HTTP: UIStyle.CYAN.value,
    ProxyProtocol.HTTPS: UIStyle.GREEN.value,
    ProxyProtocol.TCP: UIStyle.MAGENTA.value,
    ProxyProtocol.UDP: UIStyle.YELLOW.value,
}

STATE_STYLE = {
    ControllerState.IDLE: UIStyle.DIM.value,
    ControllerState.WRITING: UIStyle.CYAN.value,
    ControllerState.TESTING: UIStyle.BLUE.value,
    ControllerState.APPLYING: UIStyle.GREEN.value,
    ControllerState.ROLLING_BACK: UIStyle.RED.value,
}
