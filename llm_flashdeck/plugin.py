import asyncio
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from . import db
from .config import Settings, configure_logging
from .errors import FlashdeckError
from .factory import Services, build_services

try:
    import llm  # type: ignore
    hookimpl = llm.hookimpl  # type: ignore
except ImportError:
    import pluggy
    hookimpl = pluggy.HookimplMarker("llm")

RATING_CHOICES = ["again", "hard", "good", "easy"]


@contextmanager
def _services(with_ai: bool = True) -> Iterator[Services]:
    """Build services for one command, report application errors as CLI errors
    and release the database engine afterwards."""
    import click

    services: Optional[Services] = None
    try:
        settings = Settings.from_env()
        if settings.debug:
            configure_logging(debug=True)
        services = build_services(settings, with_ai=with_ai)
        yield services
    except FlashdeckError as e:
        raise click.ClickException(e.message) from e
    finally:
        if services is not None:
            services.dispose()


async def _run_study(services: Services, deck_id: int, limit: Optional[int]) -> None:
    import click
    from .session import SessionState

    def warn(exc: Exception) -> None:
        click.echo(f"⚠️  {exc}", err=True)

    session = services.new_session(deck_id, session_limit=limit, on_error=warn)
    state = await session.load()
    if state is SessionState.EMPTY:
        click.echo("🎉 No cards to review! Come back later or add new cards.")
        return

    while session.current_card is not None:
        card = session.current_card
        click.echo(f"\n[{session.completed_count}/{session.total_session_cards}] {card.front}")
        click.prompt("Press Enter to show the answer", default="", show_default=False)
        click.echo(f"→ {card.back}")
        choice = click.prompt("Rating", type=click.Choice(RATING_CHOICES, case_sensitive=False))
        session.rate(choice)
        # Let the background recording make progress between prompts.
        await asyncio.sleep(0)

    await session.drain()
    await session.wait_finished()
    click.echo(f"\n🎉 Congratulations! You've finished this session ({len(session.history)} ratings).")
    if session.errors:
        click.echo(f"⚠️  {len(session.errors)} review(s) could not be saved.", err=True)


async def _speak(services: Services, card_id: int, side: str) -> str:
    from .stores import SqlAudioContentCache

    if services.synthesizer is None:
        raise FlashdeckError("Speech synthesis requires OPENAI_API_KEY.")
    settings = services.settings
    card = services.repository.get_card(card_id)
    if side == "front":
        content_type, language, text = db.AiContentType.AUDIO_PRIMARY, settings.front_language, card.front
    else:
        content_type, language, text = db.AiContentType.AUDIO_SECONDARY, settings.back_language, card.back

    cache = SqlAudioContentCache(services.repository)
    reference = await cache.lookup(card.id, content_type, language)
    if reference is None:
        reference = await services.synthesizer.synthesize(text, language)
        await cache.store(card.id, content_type, language, reference)
    return str(services.synthesizer.resolve(reference))


@hookimpl  # type: ignore[misc]
def register_commands(cli: Any) -> None:
    import click

    @cli.command("fd-init-db")  # type: ignore[misc]
    def init_db() -> None:
        """Initialize the flashcard database."""
        with _services(with_ai=False) as services:
            db.init_db(services.engine)
        click.echo("Database initialized.")

    @cli.command("fd-add-deck")  # type: ignore[misc]
    @click.argument("name")
    @click.option("--description", default=None, help="Deck description")
    def add_deck(name: str, description: Optional[str]) -> None:
        """Create a new deck."""
        with _services(with_ai=False) as services:
            deck = services.repository.create_deck(name, description)
        click.echo(f"Deck '{deck.name}' created (ID {deck.id}).")

    @cli.command("fd-decks")  # type: ignore[misc]
    def list_decks() -> None:
        """List decks with card and due counts."""
        with _services(with_ai=False) as services:
            decks = services.repository.list_decks()
        if not decks:
            click.echo("No decks yet. Create one with 'llm fd-add-deck NAME'.")
            return
        for deck in decks:
            click.echo(f"{deck.id:>4}  {deck.name}  ({deck.card_count} cards, {deck.due_count} due)")

    @cli.command("fd-delete-deck")  # type: ignore[misc]
    @click.argument("deck_id", type=int)
    def delete_deck(deck_id: int) -> None:
        """Delete a deck and all of its cards."""
        with _services(with_ai=False) as services:
            services.repository.delete_deck(deck_id)
        click.echo(f"Deck {deck_id} deleted.")

    @cli.command("fd-add-card")  # type: ignore[misc]
    @click.argument("deck_id", type=int)
    @click.argument("front")
    @click.argument("back")
    @click.option("--no-ai", is_flag=True, help="Skip AI explanation and translation")
    def add_card(deck_id: int, front: str, back: str, no_ai: bool) -> None:
        """Add a card to a deck, generating AI content when an API key is set."""
        with _services(with_ai=not no_ai) as services:
            card = services.repository.add_card(deck_id, front, back, model=services.model)
        click.echo(f"Card {card.id} added to deck {deck_id}.")

    @cli.command("fd-cards")  # type: ignore[misc]
    @click.argument("deck_id", type=int)
    @click.option("--limit", default=50, help="Maximum number of cards to show")
    @click.option("--offset", default=0, help="Number of cards to skip")
    def list_cards(deck_id: int, limit: int, offset: int) -> None:
        """List the cards of a deck."""
        with _services(with_ai=False) as services:
            cards, total = services.repository.get_cards(deck_id, limit=limit, offset=offset)
        for card in cards:
            click.echo(f"{card.id:>5}  {card.front} → {card.back}  (interval {card.interval}d, ease {card.ease_factor:.2f})")
        click.echo(f"Showing {len(cards)} of {total} cards.")

    @cli.command("fd-edit-card")  # type: ignore[misc]
    @click.argument("card_id", type=int)
    @click.option("--front", default=None, help="New front text")
    @click.option("--back", default=None, help="New back text")
    def edit_card(card_id: int, front: Optional[str], back: Optional[str]) -> None:
        """Edit the front and/or back of a card."""
        with _services(with_ai=False) as services:
            services.repository.update_card(card_id, front=front, back=back)
        click.echo(f"Card {card_id} updated.")

    @cli.command("fd-delete-card")  # type: ignore[misc]
    @click.argument("card_id", type=int)
    def delete_card(card_id: int) -> None:
        """Delete a card."""
        with _services(with_ai=False) as services:
            services.repository.delete_card(card_id)
        click.echo(f"Card {card_id} deleted.")

    @cli.command("fd-import-csv")  # type: ignore[misc]
    @click.argument("deck_id", type=int)
    @click.argument("csv_path", type=click.Path(exists=True, dir_okay=False))
    def import_csv(deck_id: int, csv_path: str) -> None:
        """Import cards from a CSV file with 'front' and 'back' columns."""
        with _services(with_ai=False) as services:
            count = services.repository.import_cards_csv(deck_id, csv_path)
        if count == 0:
            click.echo("All cards already imported (0 new).")
        else:
            click.echo(f"Imported {count} cards into deck {deck_id}.")

    @cli.command("fd-study")  # type: ignore[misc]
    @click.argument("deck_id", type=int)
    @click.option("--limit", type=int, default=None, help="Maximum number of due cards in this session")
    def study(deck_id: int, limit: Optional[int]) -> None:
        """Run an acquisition session over the due cards of a deck."""
        with _services(with_ai=False) as services:
            asyncio.run(_run_study(services, deck_id, limit))

    @cli.command("fd-stats")  # type: ignore[misc]
    @click.argument("deck_id", type=int)
    def stats(deck_id: int) -> None:
        """Show review counts for a deck."""
        with _services(with_ai=False) as services:
            data = services.repository.get_review_stats(deck_id)
        click.echo(f"Total reviews: {data['total_reviews']}")
        for rating, count in data["by_rating"].items():
            click.echo(f"  {rating.title()}: {count}")

    @cli.command("fd-speak")  # type: ignore[misc]
    @click.argument("card_id", type=int)
    @click.option("--side", type=click.Choice(["front", "back"]), default="back", help="Card side to speak")
    def speak(card_id: int, side: str) -> None:
        """Synthesize (or reuse) audio for one side of a card and print its path."""
        with _services() as services:
            path = asyncio.run(_speak(services, card_id, side))
        click.echo(path)
