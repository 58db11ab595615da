"""
Main CLI entry point for ShakBot.

Provides a terminal chat REPL plus commands to inspect stored sessions and
long-term memory.
"""

import asyncio
import mimetypes
from pathlib import Path
from typing import Dict, Optional

import click

from ..conversation.models import ImageAttachment, ModelMessage, VoiceState
from ..conversation.state import StoreEvent, StoreEventKind
from ..core.config import Config
from ..core.exceptions import ConfigurationError, ShakbotError
from ..core.logging import configure_logging
from ..core.persistence import JSONPersistenceService
from ..engine import ConversationEngine

HELP_TEXT = """Commands:
  /new                    start a new conversation
  /sessions               list conversations
  /switch <n>             switch to conversation n
  /delete <n>             delete conversation n
  /model <variant>        choose the model variant
  /image <path> <prompt>  edit an image
  /imagine <prompt>       generate an image
  /voice                  toggle voice input
  /speak                  read the last reply aloud
  /memory                 show long-term memory
  /quit                   exit
An empty line sends the text captured by voice input."""


class StreamPrinter:
    """Echoes streamed reply text as it grows."""

    def __init__(self, engine: ConversationEngine):
        self.engine = engine
        self._printed: Dict[str, int] = {}

    def __call__(self, event: StoreEvent) -> None:
        if event.kind is not StoreEventKind.MESSAGE_UPDATED or event.message_id is None:
            return
        message = self.engine.find_message(event.message_id)
        if not isinstance(message, ModelMessage):
            return
        printed = self._printed.get(message.id, 0)
        if len(message.text) < printed:
            # Retried attempt restarted the reply
            click.echo()
            printed = 0
        click.echo(message.text[printed:], nl=False)
        self._printed[message.id] = len(message.text)


def load_config(config_path: Optional[str], debug: bool) -> Config:
    config = Config.from_file(config_path) if config_path else Config.from_env()
    if debug:
        config.debug = True
        config.monitoring.log_level = "DEBUG"
    return config


@click.group()
@click.version_option(version="1.0.0")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output")
@click.option(
    "--config", "config_path", type=click.Path(exists=True, dir_okay=False),
    help="YAML configuration file",
)
@click.pass_context
def cli(ctx: click.Context, debug: bool, config_path: Optional[str]) -> None:
    """
    ShakBot CLI

    A conversational assistant with streaming replies, long-term memory,
    voice input and speech output.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path, debug)
    except ConfigurationError as e:
        click.echo(f"Error loading configuration: {e}", err=True)
        raise click.Abort()
    configure_logging(config.monitoring.log_level, json_format=config.monitoring.json_logs)
    ctx.obj["config"] = config


def _session_line(index: int, title: str, count: int, current: bool) -> str:
    marker = "*" if current else " "
    return f"{marker} {index:>2}. {title} ({count} messages)"


def _save_image(config: Config, message_id: str, image: ImageAttachment) -> Path:
    extension = mimetypes.guess_extension(image.mime_type) or ".png"
    path = config.persistence.data_dir / "images" / f"{message_id}{extension}"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(image.data)
    return path


class ChatREPL:
    """Interactive terminal chat."""

    def __init__(self, engine: ConversationEngine):
        self.engine = engine

    def _session_ids(self) -> list:
        return list(self.engine.store.state.sessions)

    def _pick_session(self, arg: str) -> Optional[str]:
        ids = self._session_ids()
        try:
            index = int(arg)
        except ValueError:
            click.echo("Expected a conversation number")
            return None
        if not 1 <= index <= len(ids):
            click.echo(f"No conversation {index}")
            return None
        return ids[index - 1]

    def list_sessions(self) -> None:
        state = self.engine.store.state
        if not state.sessions:
            click.echo("No conversations yet")
            return
        for i, session in enumerate(state.sessions.values(), start=1):
            click.echo(
                _session_line(
                    i, session.title, len(session.messages),
                    session.id == state.current_session_id,
                )
            )

    def _last_reply_id(self) -> Optional[str]:
        session = self.engine.store.current_session()
        if session is None:
            return None
        for message in reversed(session.messages):
            if isinstance(message, ModelMessage) and message.text.strip():
                return message.id
        return None

    async def send(
        self,
        text: Optional[str],
        attachment: Optional[ImageAttachment] = None,
        generate_image: bool = False,
    ) -> None:
        outcome = await self.engine.submit(text, attachment, generate_image)
        if outcome is None:
            return
        if not outcome.success:
            session = self.engine.store.current_session()
            if session is not None and session.messages:
                click.echo(f"\n{session.messages[-1].text}")
            return
        reply = (
            self.engine.find_message(outcome.reply_message_id)
            if outcome.reply_message_id
            else None
        )
        if reply is not None and reply.attachment is not None:
            click.echo(reply.text)
            path = _save_image(self.engine.config, reply.id, reply.attachment)
            click.echo(f"[image saved to {path}]")
        elif attachment is not None or generate_image:
            click.echo(outcome.text)
        else:
            click.echo()

    async def handle_command(self, line: str) -> bool:
        """Run a slash command; False when the REPL should exit."""
        command, _, arg = line.partition(" ")
        arg = arg.strip()

        if command == "/quit":
            return False
        if command == "/help":
            click.echo(HELP_TEXT)
        elif command == "/new":
            self.engine.new_session()
            click.echo("Started a new conversation")
        elif command == "/sessions":
            self.list_sessions()
        elif command == "/switch":
            session_id = self._pick_session(arg)
            if session_id is not None:
                self.engine.select_session(session_id)
                session = self.engine.store.current_session()
                click.echo(f"Switched to '{session.title if session else session_id}'")
        elif command == "/delete":
            session_id = self._pick_session(arg)
            if session_id is not None:
                await self.engine.delete_session(session_id)
                click.echo("Conversation deleted")
        elif command == "/model":
            try:
                self.engine.set_model_variant(arg)
                click.echo(f"Model set to {arg}")
            except ShakbotError as e:
                click.echo(str(e))
        elif command == "/image":
            path_arg, _, prompt = arg.partition(" ")
            path = Path(path_arg).expanduser()
            if not path.is_file():
                click.echo(f"No such file: {path_arg}")
                return True
            mime_type = mimetypes.guess_type(path.name)[0] or "image/png"
            attachment = ImageAttachment(data=path.read_bytes(), mime_type=mime_type)
            await self.send(prompt, attachment=attachment)
        elif command == "/imagine":
            await self.send(arg, generate_image=True)
        elif command == "/voice":
            try:
                state = self.engine.toggle_voice()
            except ShakbotError as e:
                click.echo(str(e))
                return True
            if state is VoiceState.LISTENING:
                click.echo("Listening... (/voice to stop, empty line to send)")
            else:
                click.echo(f"Voice input off. Pending: {self.engine.store.state.pending_input!r}")
        elif command == "/speak":
            message_id = self._last_reply_id()
            if message_id is None:
                click.echo("Nothing to read")
                return True
            handle = await self.engine.speak(message_id)
            if handle is None:
                click.echo("No audio was generated")
            else:
                await handle.wait()
        elif command == "/memory":
            click.echo(self.engine.store.state.memory or "(empty)")
        else:
            click.echo(f"Unknown command {command}. Try /help")
        return True

    async def run(self) -> None:
        click.echo("ShakBot ready. /help lists commands.")
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, input, "> ")
            line = line.strip()
            if line.startswith("/"):
                if not await self.handle_command(line):
                    break
                continue
            # Empty line sends whatever voice input captured
            await self.send(line or None)


async def _run_chat(config: Config, user_id: str) -> None:
    engine = ConversationEngine.from_config(config)
    engine.on_notice = click.echo
    if engine.voice is not None:
        engine.voice.on_notice = click.echo
    engine.store.subscribe(StreamPrinter(engine))
    await engine.load_user(user_id)
    try:
        await ChatREPL(engine).run()
    except (EOFError, KeyboardInterrupt):
        click.echo()
    finally:
        await engine.shutdown()


@cli.command()
@click.option("--user", "user_id", required=True, help="User identifier")
@click.pass_context
def chat(ctx: click.Context, user_id: str) -> None:
    """Start an interactive chat."""
    asyncio.run(_run_chat(ctx.obj["config"], user_id))


@cli.command()
@click.option("--user", "user_id", required=True, help="User identifier")
@click.pass_context
def sessions(ctx: click.Context, user_id: str) -> None:
    """List stored conversations."""
    persistence = JSONPersistenceService(ctx.obj["config"].persistence)
    stored = asyncio.run(persistence.fetch_sessions(user_id))
    if not stored:
        click.echo("No stored conversations")
        return
    for i, session in enumerate(stored, start=1):
        click.echo(_session_line(i, session.title, len(session.messages), False))


@cli.command()
@click.option("--user", "user_id", required=True, help="User identifier")
@click.pass_context
def memory(ctx: click.Context, user_id: str) -> None:
    """Show stored long-term memory."""
    persistence = JSONPersistenceService(ctx.obj["config"].persistence)
    text = asyncio.run(persistence.fetch_memory(user_id))
    click.echo(text or "(empty)")


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
