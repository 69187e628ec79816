"""
Playground commands: compile and run Rust code on play.rust-lang.org.

    ?play [mode=] [channel=] [edition=] [warn=] ```code```    Run a program.
    ?eval [mode=] [channel=] [edition=] [warn=] `expr`        Print one expression.

Options may be quoted (``edition="2021"``). Invalid option values are
reported above the output and the default is used instead.
"""

from __future__ import annotations

import re
from typing import Dict, Optional, Tuple

from modsbot.bot.bot_state import BotServices
from modsbot.bot.router import CommandContext, CommandDefinition, CommandRouter
from modsbot.http.platform_api import MAX_MESSAGE_LENGTH
from modsbot.services.playground_client import PlaygroundClient, PlaygroundRequest
from modsbot.util.logger import get_logger

logger = get_logger("playground_commands")

MAX_OUTPUT_LINES = 45
# Room for the code fence around the output
MAX_OUTPUT_LENGTH = MAX_MESSAGE_LENGTH - 7

CHANNELS = ("stable", "beta", "nightly")
MODES = ("debug", "release")
EDITIONS = ("2015", "2018", "2021", "2024")
OPTION_NAMES = ("mode", "channel", "edition", "warn")

RUNNING_REPLY = "*Running code on playground...*"
PLAY_MISSING_CODE_REPLY = (
    "Missing code block. Please use the following markdown:\n"
    "\\`\\`\\`rust\n"
    "    code here\n"
    "\\`\\`\\`"
)
EVAL_MISSING_CODE_REPLY = (
    "Missing code block. Please use the following markdown:\n"
    "    \\`code here\\`\n"
    "    or\n"
    "    \\`\\`\\`rust\n"
    "        code here\n"
    "    \\`\\`\\`"
)

_OPTION_RE = re.compile(r'(\w+)=(?:"([^"]*)"|([^\s"`]+))')
# ```lang\ncode``` ; the language tag is optional
_FENCED_BLOCK_RE = re.compile(r"```[^`\s]*\n(.*?)```", re.DOTALL)
_INLINE_FENCE_RE = re.compile(r"```(.+?)```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")


def parse_options(tail: str) -> Tuple[Dict[str, str], str]:
    """Consume leading ``key=value`` options; return them and the rest of the tail."""
    options: Dict[str, str] = {}
    rest = tail.lstrip()
    while True:
        match = _OPTION_RE.match(rest)
        if match is None or match.group(1) not in OPTION_NAMES:
            return options, rest
        name = match.group(1)
        options[name] = match.group(2) if match.group(2) is not None else match.group(3)
        rest = rest[match.end():].lstrip()


def extract_code(text: str, allow_inline: bool = False) -> Optional[str]:
    """Code of the block at the start of ``text``; text after the block is ignored."""
    patterns = [_FENCED_BLOCK_RE]
    if allow_inline:
        patterns += [_INLINE_FENCE_RE, _INLINE_CODE_RE]
    for pattern in patterns:
        match = pattern.match(text)
        if match is not None:
            return match.group(1)
    return None


def build_request(code: str, options: Dict[str, str]) -> Tuple[PlaygroundRequest, str]:
    """Validate ``options`` against the playground's choices; return the request and any complaints."""
    errors = ""
    channel = options.get("channel", "nightly")
    if channel not in CHANNELS:
        errors += f"invalid release channel `{channel}`\n"
        channel = "nightly"
    mode = options.get("mode", "debug")
    if mode not in MODES:
        errors += f"invalid compilation mode `{mode}`\n"
        mode = "debug"
    edition = options.get("edition", "2024")
    if edition not in EDITIONS:
        errors += f"invalid edition `{edition}`\n"
        edition = "2024"

    request = PlaygroundRequest(
        code=code,
        channel=channel,
        edition=edition,
        mode=mode,
        crate_type="bin" if "fn main" in code else "lib",
    )
    return request, errors


def wrap_expression(expression: str) -> str:
    return f'fn main(){{ println!("{{:?}}",{{ {expression} \n}}); }}'


class PlaygroundCommands:
    def __init__(self, client: PlaygroundClient) -> None:
        self.client = client

    async def run_code(self, ctx: CommandContext, code: str, options: Dict[str, str]) -> str:
        request, errors = build_request(code, options)
        await ctx.reply(RUNNING_REPLY)

        result = await self.client.execute(request)
        if options.get("warn") == "true":
            output = f"{result.stderr}\n{result.stdout}"
        elif result.success:
            output = result.stdout
        else:
            output = result.stderr

        if len(output) + len(errors) > MAX_OUTPUT_LENGTH or len(output.splitlines()) > MAX_OUTPUT_LINES:
            link = await self.client.create_gist(request)
            return f"{errors}Output too large. Playground link: {link}"
        if not output:
            return f"{errors}compilation succeeded."
        return f"{errors}```\n{output}```"

    async def play(self, ctx: CommandContext, tail: str) -> None:
        options, rest = parse_options(tail)
        code = extract_code(rest)
        if code is None:
            await ctx.reply(PLAY_MISSING_CODE_REPLY)
            return
        await ctx.reply(await self.run_code(ctx, code, options))

    async def eval(self, ctx: CommandContext, tail: str) -> None:
        options, rest = parse_options(tail)
        code = extract_code(rest, allow_inline=True)
        if code is None:
            await ctx.reply(EVAL_MISSING_CODE_REPLY)
            return
        if "fn main" in code:
            await ctx.reply(f"code passed to {ctx.prefix}eval should not contain `fn main`")
            return
        await ctx.reply(await self.run_code(ctx, wrap_expression(code), options))


def setup(router: CommandRouter, services: BotServices) -> None:
    commands = PlaygroundCommands(services.playground)
    # One execute call plus a possible gist upload
    timeout = services.playground.timeout_seconds * 2 + 5
    router.register(CommandDefinition(
        name="play",
        handler=commands.play,
        usage="play mode={} channel={} edition={} warn={} ``\u200b`code``\u200b`",
        description="Compile and run rust code in a playground",
        timeout=timeout,
    ))
    router.register(CommandDefinition(
        name="eval",
        handler=commands.eval,
        usage="eval mode={} channel={} edition={} warn={} `code`",
        description="Evaluate a single rust expression",
        timeout=timeout,
    ))
    logger.info("Playground commands loaded")
