from __future__ import annotations

import asyncio

import click

from groundchat.bootstrap import BootstrapResolver, Location, UrlLocation
from groundchat.config import Config, get_config
from groundchat.errors import InvalidShareToken, NotFound
from groundchat.llms.gemini import GeminiAnswerService
from groundchat.log import logger
from groundchat.models import AppState
from groundchat.persistence import PersistenceAdapter, SqlSnapshotSlot
from groundchat.reconciler import StreamReconciler
from groundchat.session import ChatSession
from groundchat.share import ShareLinkCodec, extract_token
from groundchat.store import ConversationStore


def open_store(config: Config, location: Location | None = None) -> ConversationStore:
    persistence = PersistenceAdapter(SqlSnapshotSlot.from_config(config))
    codec = ShareLinkCodec(config.imported_title_prefix)
    resolver = BootstrapResolver(persistence, codec, config.default_title)
    store = ConversationStore(
        persistence,
        default_title=config.default_title,
        title_word_count=config.title_word_count,
    )
    store.install(resolver.resolve(location))
    return store


def open_session(config: Config, store: ConversationStore, streaming: bool = True) -> ChatSession:
    producer = GeminiAnswerService.from_config(config)
    return ChatSession(
        store,
        StreamReconciler(store, producer),
        codec=ShareLinkCodec(config.imported_title_prefix),
        streaming=streaming,
    )


@click.group()
def cli():
    """Grounded chat assistant."""


@cli.command()
@click.option("--url", default="", help="URL the app was opened with; a #share= fragment imports a conversation.")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=7860, show_default=True, type=int)
def ui(url: str, host: str, port: int):
    """Run the web UI."""
    from groundchat.ui.app import create_ui

    config = get_config()
    location = UrlLocation(url)
    store = open_store(config, location)
    session = open_session(config, store)
    app = create_ui(session, config.share_base_url)
    logger.info(f"Starting UI on {host}:{port}")
    app.launch(server_name=host, server_port=port, inbrowser=True)


@cli.command(name="list")
def list_conversations():
    """List saved conversations."""
    config = get_config()
    state = PersistenceAdapter(SqlSnapshotSlot.from_config(config)).load()
    if state is None:
        click.echo("No conversations.")
        return
    _echo_state(state)


@cli.command()
@click.argument("question")
@click.option("--file", "files", multiple=True, type=click.Path(exists=True, dir_okay=False), help="Attach a file.")
@click.option("--new", "new_conversation", is_flag=True, help="Ask in a new conversation.")
@click.option("--no-stream", is_flag=True, help="Wait for the complete answer instead of streaming it.")
def ask(question: str, files: tuple[str, ...], new_conversation: bool, no_stream: bool):
    """Ask a question in the active conversation."""
    config = get_config()
    store = open_store(config)
    session = open_session(config, store, streaming=not no_stream)
    if new_conversation:
        session.new_conversation()
    session.add_files(files)

    progress = {"message_id": None, "printed": 0}

    def echo_progress(state: AppState) -> None:
        conversation = state.active_conversation
        if conversation is None or not conversation.messages:
            return
        message = conversation.messages[-1]
        if message.pending and message.id != progress["message_id"]:
            progress.update(message_id=message.id, printed=0)
        if message.id != progress["message_id"]:
            return
        click.echo(message.content[progress["printed"] :], nl=False)
        progress["printed"] = len(message.content)

    async def run() -> bool:
        try:
            return await session.send(question)
        finally:
            await session.reconciler.producer.close()

    unsubscribe = store.subscribe(echo_progress)
    try:
        ok = asyncio.run(run())
    finally:
        unsubscribe()

    if not ok:
        raise click.ClickException(session.error or "Nothing to send.")

    click.echo()
    answer = store.active_conversation.messages[-1]
    if answer.sources:
        click.echo("\nSources:")
        for source in answer.sources:
            click.echo(f"- {source.title}: {source.uri}")


@cli.command()
@click.argument("conversation_id", required=False)
@click.option("--base-url", default=None, help="Base URL of the share link.")
def export(conversation_id: str | None, base_url: str | None):
    """Print a share link for a conversation (the active one by default)."""
    config = get_config()
    store = open_store(config)
    codec = ShareLinkCodec(config.imported_title_prefix)
    try:
        conversation = store.get_conversation(conversation_id or store.state.active_conversation_id)
    except NotFound as e:
        raise click.ClickException(str(e)) from e
    click.echo(codec.share_url(conversation, base_url or config.share_base_url))


@cli.command(name="import")
@click.argument("link")
def import_conversation(link: str):
    """Import a conversation from a share link."""
    config = get_config()
    store = open_store(config)
    codec = ShareLinkCodec(config.imported_title_prefix)
    try:
        conversation = codec.decode(extract_token(link) or link.strip())
    except InvalidShareToken as e:
        raise click.ClickException(f"Invalid share link: {e}") from e
    store.import_conversation(conversation)
    click.echo(f"Imported {conversation.title} ({len(conversation.messages)} messages)")


@cli.command()
@click.confirmation_option(prompt="Delete all saved conversations?")
def clear():
    """Delete the saved conversations."""
    config = get_config()
    PersistenceAdapter(SqlSnapshotSlot.from_config(config)).clear()
    click.echo("Chat history cleared.")


def _echo_state(state: AppState) -> None:
    for conversation in state.conversations:
        marker = "*" if conversation.id == state.active_conversation_id else " "
        click.echo(f"{marker} {conversation.id}  {conversation.title}  ({len(conversation.messages)} messages)")


if __name__ == "__main__":
    cli()
