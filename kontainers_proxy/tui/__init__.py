from kontainers_proxy.tui.renderers import ProxyConsoleUI

__all__ = ["ProxyConsoleUI"]
