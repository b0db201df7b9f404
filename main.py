"""
Demo: compare wire formats, stream a reply, and run a tool-calling loop.

Set OPENAI_API_KEY and/or GEMINI_API_KEY (a .env file works too).
"""
import asyncio
import sys

from rich.console import Console

from llmrelay import (
    CallOptions,
    LLMDispatcher,
    LLMRequest,
    RichPrinter,
    RichStreamPrinter,
    Settings,
    api_key_for,
    setup_logging,
)

console = Console()

MODELS = [
    ("openai_compatible", "gpt-4o-mini"),
    ("gemini_official", "gemini-2.5-flash"),
]

WEATHER_TOOL = {
    "type": "function",
    "function": {
        "name": "get_weather",
        "description": "Get the current weather for a city",
        "parameters": {
            "type": "object",
            "properties": {"city": {"type": "string", "description": "City name"}},
            "required": ["city"],
        },
    },
}


def get_weather(arguments: dict) -> dict:
    """Mock weather lookup."""
    return {"city": arguments.get("city"), "temperature": 18, "condition": "Partly cloudy"}


async def compare_formats(dispatcher: LLMDispatcher) -> None:
    printer = RichPrinter(show_metadata=True)
    messages = [{"role": "user", "content": "What is the capital of France?"}]

    for api_format, model in MODELS:
        api_key = api_key_for(api_format)
        if not api_key:
            console.print(f"[dim]Skipping {api_format}: no API key[/dim]")
            continue
        response = await dispatcher.call(LLMRequest(
            messages=messages, api_format=api_format, api_key=api_key, model=model,
        ))
        printer.print_response(response, provider=f"{api_format} / {model}")


async def stream_demo(dispatcher: LLMDispatcher, api_format: str, model: str) -> None:
    request = LLMRequest(
        messages=[
            {"role": "system", "content": "You are a concise assistant."},
            {"role": "user", "content": "Introduce yourself in one sentence using markdown."},
        ],
        api_format=api_format,
        api_key=api_key_for(api_format),
        model=model,
        options=CallOptions(temperature=0.7, max_tokens=500, timeout=60),
        conversation_id="demo-stream",
    )
    printer = RichStreamPrinter(title="Streaming", code_theme="dracula", refresh_rate=40)
    await printer.print_stream(dispatcher.astream(request))


async def tools_demo(dispatcher: LLMDispatcher, api_format: str, model: str) -> None:
    request = LLMRequest(
        messages=[{"role": "user", "content": "What's the weather in Paris?"}],
        api_format=api_format,
        api_key=api_key_for(api_format),
        model=model,
        options=CallOptions(tools=[WEATHER_TOOL]),
    )
    response, history = await dispatcher.call_with_tools(request, {"get_weather": get_weather})
    RichPrinter(title="Tool Loop").print_response(response, provider=api_format)
    console.print(f"[dim]{len(history)} messages to persist[/dim]")


async def main():
    settings = Settings.from_env()
    setup_logging(settings.log_level)

    available = [(fmt, model) for fmt, model in MODELS if api_key_for(fmt)]
    if not available:
        console.print("[bold red]Set OPENAI_API_KEY or GEMINI_API_KEY to run the demo.[/bold red]")
        sys.exit(1)

    async with LLMDispatcher(settings=settings) as dispatcher:
        await compare_formats(dispatcher)
        api_format, model = available[0]
        await stream_demo(dispatcher, api_format, model)
        await tools_demo(dispatcher, api_format, model)


if __name__ == "__main__":
    asyncio.run(main())
