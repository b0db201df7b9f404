"""
Rich console display of dispatcher responses and stream events.
"""
import json
from typing import Dict, Any, AsyncIterator, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from .tool_calls import summarize_tool_calls
from .types import ResponseEnvelope

TERMINAL_EVENTS = ("done", "aborted", "error")

_BORDER_STYLES = {
    "done": "green",
    "aborted": "yellow",
    "error": "red",
}

_FINAL_TITLES = {
    "done": "Final Response",
    "aborted": "Aborted",
    "error": "Error",
}


def _metadata_panel(meta: Dict[str, Any]) -> Panel:
    metadata_display = Syntax(
        json.dumps(meta, indent=2, default=str),
        "json",
        theme="lightbulb",
        background_color="default",
    )
    return Panel(metadata_display, title="[bold]Metadata[/bold]", border_style="dim")


class RichStreamPrinter:
    """
    Displays `LLMDispatcher.astream` events live using rich.

    Attributes:
        title: Title for the display panel
        show_metadata: Whether to show metadata at the end
        code_theme: Theme for code blocks
        inline_code_theme: Theme for inline code
        refresh_rate: Refresh rate for Live display
        show_provider_info: Whether to show the wire format in the title
        border_style: Border style while streaming
    """

    def __init__(
        self,
        title: str = "Streaming Response",
        show_metadata: bool = True,
        code_theme: str = "coffee",
        inline_code_theme: str = "monokai",
        refresh_rate: int = 30,
        show_provider_info: bool = True,
        border_style: str = "blue",
        console: Optional[Console] = None,
    ):
        self.title = title
        self.show_metadata = show_metadata
        self.code_theme = code_theme
        self.inline_code_theme = inline_code_theme
        self.refresh_rate = refresh_rate
        self.show_provider_info = show_provider_info
        self.border_style = border_style
        self.console = console or Console()
        self._full_text = ""
        self._final_event: Optional[Dict[str, Any]] = None
        self._provider: Optional[str] = None

    async def print_stream(self, event_stream: AsyncIterator[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Process and display streaming events.

        Args:
            event_stream: Async iterator yielding event dictionaries

        Returns:
            The terminal event (done, aborted or error)
        """
        self._full_text = ""
        self._final_event = None
        self._provider = None

        with Live(Panel("", border_style=self.border_style), refresh_per_second=self.refresh_rate,
                  console=self.console) as live:
            async for event in event_stream:
                self._process_event(event, live)

        return self._final_event or {}

    def _process_event(self, event: Dict[str, Any], live: Live) -> None:
        if self._provider is None and event.get("provider"):
            self._provider = event["provider"]

        if event["type"] == "token":
            self._full_text += event["text"]
            self._update_display(live)
        elif event["type"] in TERMINAL_EVENTS:
            self._final_event = event
            if event["type"] == "error":
                self._full_text = event.get("text", "")
            self._update_display(live)

    def _update_display(self, live: Live) -> None:
        kind = self._final_event["type"] if self._final_event else None
        live.update(
            Panel(
                self._build_content(),
                title=self._build_title(kind),
                border_style=_BORDER_STYLES.get(kind, self.border_style),
                padding=(1, 2),
            )
        )

    def _build_title(self, kind: Optional[str]) -> str:
        title_parts = [f"[bold]{_FINAL_TITLES.get(kind, self.title)}[/bold]"]
        if self.show_provider_info and self._provider:
            title_parts.append(f"[dim]({self._provider})[/dim]")
        return " ".join(title_parts)

    def _build_content(self) -> Any:
        if not self._full_text.strip():
            return Text("(waiting for response...)", style="dim italic")

        markdown = Markdown(
            self._full_text,
            code_theme=self.code_theme,
            inline_code_theme=self.inline_code_theme,
        )
        if self._final_event and self.show_metadata and self._final_event.get("meta"):
            return Group(markdown, _metadata_panel(self._final_event["meta"]))
        return markdown

    def get_full_text(self) -> str:
        return self._full_text

    def get_final_event(self) -> Optional[Dict[str, Any]]:
        return self._final_event


class RichPrinter:
    """
    Displays a ResponseEnvelope from `LLMDispatcher.call`.
    """

    def __init__(
        self,
        title: str = "Response",
        show_metadata: bool = True,
        code_theme: str = "coffee",
        inline_code_theme: str = "monokai",
        border_style: str = "green",
        console: Optional[Console] = None,
    ):
        self.title = title
        self.show_metadata = show_metadata
        self.code_theme = code_theme
        self.inline_code_theme = inline_code_theme
        self.border_style = border_style
        self.console = console or Console()
        self._response: Optional[ResponseEnvelope] = None

    def print_response(self, response: ResponseEnvelope, provider: Optional[str] = None) -> ResponseEnvelope:
        """
        Print a response panel (red for errors, yellow for aborted calls).

        Returns:
            The same envelope for chaining
        """
        self._response = response

        title_parts = [f"[bold]{self.title}[/bold]"]
        if provider:
            title_parts.append(f"[dim]({provider})[/dim]")
        border = "red" if response.is_error else "yellow" if response.aborted else self.border_style

        self.console.print(
            Panel(
                self._build_content(response),
                title=" ".join(title_parts),
                border_style=border,
                padding=(1, 2),
            )
        )
        return response

    def _build_content(self, response: ResponseEnvelope) -> Any:
        text = response.content
        if response.tool_calls:
            text = f"{text}\n\n_{summarize_tool_calls(response.tool_calls)}_" if text else summarize_tool_calls(response.tool_calls)
        if not text.strip():
            return Text("(empty response)", style="dim italic")

        markdown = Markdown(text, code_theme=self.code_theme, inline_code_theme=self.inline_code_theme)
        meta = {
            key: value for key, value in (
                ("finish_reason", response.finish_reason),
                ("usage", response.usage),
                ("aborted", response.aborted or None),
            ) if value is not None
        }
        if self.show_metadata and meta:
            return Group(markdown, _metadata_panel(meta))
        return markdown

    def get_response(self) -> Optional[ResponseEnvelope]:
        return self._response
