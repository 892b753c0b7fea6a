from typing import Optional

from rich.console import RenderableType
from rich.markup import escape
from rich.panel import Panel

from kontainers_proxy.tui.enums import UIStyle


class UISection:
    @staticmethod
    def wrap(
        title: str,
        body: RenderableType,
        style: str = UIStyle.BLUE.value,
        subtitle: Optional[str] = None,
    ) -> Panel:
        return Panel(
            body, title=title, subtitle=subtitle, border_style=style, padding=(0, 1)
        )

    @staticmethod
    def note(title: str, body: str, style: str = UIStyle.DIM.value) -> Panel:
        return Panel(body, title=title, border_style=style, padding=(0, 1))

    @staticmethod
    def diagnostic(title: str, output: str, ok: bool = False) -> Panel:
        """Raw Nginx output; brackets such as ``[emerg]`` are kept literally."""
        style = UIStyle.GREEN.value if ok else UIStyle.RED.value
        return UISection.note(title, escape(output.strip()) or title, style=style)
